"""Protocol for the session store: durable room/move records plus change notifications."""

from typing import Any, Iterable, Mapping, Protocol
from uuid import UUID

from chessrooms.core.models import MoveModel, RoomModel
from chessrooms.core.shared_types import ChangeKind, Table
from chessrooms.db.feed import Listener, Subscription


class SessionStore(Protocol):
    """Persistence and broadcast substrate used by the services."""

    def create_room(self, room: RoomModel) -> RoomModel:
        """Insert a new room. Raises DuplicateCodeError when the code is taken, PersistenceError otherwise."""
        ...

    def get_room(self, room_id: UUID) -> RoomModel | None:
        """Get room by ID, if record exists."""
        ...

    def get_room_by_code(self, code: str) -> RoomModel | None:
        """Get room by its (already normalized) join code, if record exists."""
        ...

    def update_room(
        self,
        room_id: UUID,
        patch: Mapping[str, Any],
        condition: Mapping[str, Any] | None = None,
    ) -> RoomModel | None:
        """
        Apply patch only if every column in condition still holds the given value at write time.

        Returns None for an unknown room, raises ConditionFailedError when the condition no longer holds.
        """
        ...

    def commit_move(
        self,
        room_id: UUID,
        patch: Mapping[str, Any],
        condition: Mapping[str, Any],
        move: MoveModel,
    ) -> tuple[RoomModel, MoveModel]:
        """Conditional room update and move insert, committed together."""
        ...

    def list_moves(self, room_id: UUID, after: int = 0) -> list[MoveModel]:
        """Move log of a room ordered by move number, starting after the given number."""
        ...

    def subscribe(
        self,
        table: Table,
        room_id: UUID,
        kinds: Iterable[ChangeKind],
        listener: Listener,
    ) -> Subscription:
        """Register for change events on one room's rows."""
        ...
