"""
In-process publish/subscribe for row changes.

The store publishes after each commit, synchronously and in commit order, so every subscriber
observes the updates of one room row in the order they were written.
"""

import logging
import threading
from dataclasses import dataclass
from itertools import count
from typing import Callable, Iterable
from uuid import UUID

from chessrooms.core.models import MoveModel, RoomModel
from chessrooms.core.shared_types import ChangeKind, Table

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    table: Table
    kind: ChangeKind
    room_id: UUID
    record: RoomModel | MoveModel


Listener = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe(). unsubscribe() releases it (safe to call twice)."""

    def __init__(self, feed: "ChangeFeed", key: int) -> None:
        self._feed = feed
        self._key = key
        self.active = True

    def unsubscribe(self) -> None:
        if self.active:
            self._feed._remove(self._key)
            self.active = False


@dataclass(frozen=True)
class _Registration:
    table: Table
    room_id: UUID
    kinds: frozenset[ChangeKind]
    listener: Listener


class ChangeFeed:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._keys = count(1)
        self._registrations: dict[int, _Registration] = {}

    def subscribe(
        self,
        table: Table,
        room_id: UUID,
        kinds: Iterable[ChangeKind],
        listener: Listener,
    ) -> Subscription:
        with self._lock:
            key = next(self._keys)
            self._registrations[key] = _Registration(
                table, room_id, frozenset(kinds), listener
            )
        logger.debug("Subscribed #%s to %s of room %s", key, table, room_id)
        return Subscription(self, key)

    def publish(self, event: ChangeEvent) -> None:
        """Deliver to every matching listener. A failing listener does not stop delivery to the others."""
        with self._lock:
            targets = [
                reg.listener
                for reg in self._registrations.values()
                if reg.table == event.table
                and reg.room_id == event.room_id
                and event.kind in reg.kinds
            ]
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Listener failed on %s %s of room %s",
                    event.kind,
                    event.table,
                    event.room_id,
                )

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._registrations)

    def _remove(self, key: int) -> None:
        with self._lock:
            self._registrations.pop(key, None)
        logger.debug("Unsubscribed #%s", key)
