"""Room creation, join-code lookup and seat assignment."""

import logging
import secrets
from typing import Callable, Optional
from uuid import UUID, uuid4

from chessrooms.core.config import Settings, get_settings
from chessrooms.core.exceptions import (
    ConditionFailedError,
    DuplicateCodeError,
    PersistenceError,
)
from chessrooms.core.models import JoinResult, ParticipantToken, RoomModel, RoomResult
from chessrooms.core.shared_types import Color, Failure, Status
from chessrooms.db.repository import SessionStore
from chessrooms.rules.engine import STARTING_POSITION

logger = logging.getLogger(__name__)

CodeFactory = Callable[[], str]


def generate_room_code(settings: Settings | None = None) -> str:
    settings = settings or get_settings()
    return "".join(
        secrets.choice(settings.room_code_alphabet)
        for _ in range(settings.room_code_length)
    )


def normalize_room_code(code: str) -> str:
    """Lookups are case-insensitive: codes are stored uppercase and users may type either."""
    return code.strip().upper()


class RoomLifecycleManager:
    """Owns room creation, code lookup and seat assignment."""

    def __init__(
        self,
        store: SessionStore,
        settings: Settings | None = None,
        code_factory: Optional[CodeFactory] = None,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.code_factory = code_factory or (lambda: generate_room_code(self.settings))

    def create_room(self) -> RoomResult:
        """
        Create a room in 'waiting' with both seats empty.
        ----

        rooms.code is unique in the store. When a generated code is already taken, a fresh one is drawn,
        up to settings.room_code_attempts times.
        """
        for attempt in range(1, self.settings.room_code_attempts + 1):
            room = RoomModel(
                id=uuid4(),
                code=normalize_room_code(self.code_factory()),
                white_seat=None,
                black_seat=None,
                current_turn=Color.WHITE,
                position=STARTING_POSITION,
                move_log="",
                status=Status.WAITING,
            )
            try:
                stored = self.store.create_room(room)
            except DuplicateCodeError:
                logger.info("Room code %s taken (attempt %s), drawing another", room.code, attempt)
                continue
            except PersistenceError as e:
                logger.warning("Could not create room: %s", e)
                return RoomResult(error=Failure.PERSISTENCE_ERROR, message=str(e))
            logger.info("Created room %s with code %s", stored.id, stored.code)
            return RoomResult(room=stored)

        return RoomResult(
            error=Failure.PERSISTENCE_ERROR,
            message=f"No free room code after {self.settings.room_code_attempts} attempts.",
        )

    def get_room_by_code(self, code: str) -> RoomResult:
        """Case-normalized lookup. An unknown code is a NOT_FOUND result, not an exception."""
        normalized = normalize_room_code(code)
        try:
            room = self.store.get_room_by_code(normalized)
        except PersistenceError as e:
            return RoomResult(error=Failure.PERSISTENCE_ERROR, message=str(e))
        if room is None:
            return RoomResult(error=Failure.NOT_FOUND, message=f"No room with code {normalized!r}.")
        return RoomResult(room=room)

    def join_room(self, room_id: UUID, token: ParticipantToken) -> JoinResult:
        """
        Idempotent seat claim.
        ----

        1. Unknown room --> NOT_FOUND
        2. Terminal room --> ROOM_UNAVAILABLE
        3. Token already seated --> that seat (reconnecting)
        4. White seat empty --> claim it, room stays 'waiting'
        5. Black seat empty --> claim it, room becomes 'in_progress'
        6. Otherwise --> ROOM_FULL

        NOTE the claims are conditional writes: they only succeed if the seat is still empty at write time.
        A participant losing that race gets CONDITION_FAILED and may simply try again.
        """
        try:
            room = self.store.get_room(room_id)
        except PersistenceError as e:
            return JoinResult(error=Failure.PERSISTENCE_ERROR, message=str(e))
        if room is None:
            return JoinResult(error=Failure.NOT_FOUND, message=f"Room with {room_id=} not found.")

        if room.is_terminal:
            return JoinResult(
                error=Failure.ROOM_UNAVAILABLE,
                message=f"Room {room.code} is over. status: {room.status}",
            )

        seat = room.seat_of(token)
        if seat is not None:
            return JoinResult(room=room, color=seat)

        if room.white_seat is None:
            return self._claim_seat(
                room,
                Color.WHITE,
                patch={"white_seat": token, "status": Status.WAITING},
                condition={"white_seat": None, "status": Status.WAITING},
            )

        if room.black_seat is None:
            return self._claim_seat(
                room,
                Color.BLACK,
                patch={"black_seat": token, "status": Status.IN_PROGRESS},
                condition={
                    "white_seat": room.white_seat,
                    "black_seat": None,
                    "status": Status.WAITING,
                },
            )

        return JoinResult(error=Failure.ROOM_FULL, message=f"Room {room.code} is full.")

    # -- Internal helpers --
    def _claim_seat(
        self, room: RoomModel, color: Color, patch: dict, condition: dict
    ) -> JoinResult:
        try:
            updated = self.store.update_room(room.id, patch, condition)
        except ConditionFailedError as e:
            logger.info("Lost the race for the %s seat of room %s", color, room.code)
            return JoinResult(error=Failure.CONDITION_FAILED, message=str(e))
        except PersistenceError as e:
            logger.warning("Could not claim %s seat of room %s: %s", color, room.code, e)
            return JoinResult(error=Failure.PERSISTENCE_ERROR, message=str(e))
        if updated is None:
            return JoinResult(error=Failure.NOT_FOUND, message=f"Room {room.id} disappeared.")
        logger.info("Seated %s in room %s (status: %s)", color, updated.code, updated.status)
        return JoinResult(room=updated, color=color)
