"""
Boundary layer data model(s).

These objects are used to communicate with the services.
Both the store (lower) and the session/renderer layers (higher) exchange the models defined here,
decoupling the SQL rows and the rules engine handles from what travels across boundaries.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional
from uuid import UUID

from chessrooms.core.shared_types import Color, Failure, SessionState, Status

# Type aliases to make the models easier to read
ParticipantToken = str
RoomCode = str


@dataclass(frozen=True)
class RoomModel:
    """Transport-safe snapshot of the authoritative room row."""

    id: UUID
    code: RoomCode
    white_seat: Optional[ParticipantToken]
    black_seat: Optional[ParticipantToken]
    current_turn: Color
    position: str
    move_log: str
    status: Status
    winner: Optional[Color] = None
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def seats_filled(self) -> bool:
        return self.white_seat is not None and self.black_seat is not None

    def seat_of(self, token: ParticipantToken) -> Optional[Color]:
        """Which color (if any) the participant already holds in this room."""
        if self.white_seat == token:
            return Color.WHITE
        if self.black_seat == token:
            return Color.BLACK
        return None

    def with_patch(self, **patch: object) -> "RoomModel":
        return replace(self, **patch)


@dataclass(frozen=True)
class MoveModel:
    """One committed entry of a room's append-only move log."""

    room_id: UUID
    move_number: int
    from_square: str
    to_square: str
    piece: str
    notation: str
    color: Color
    created_at: Optional[datetime] = None


# --- typed results returned by the services ---
@dataclass
class Result:
    error: Optional[Failure] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class RoomResult(Result):
    room: Optional[RoomModel] = None


@dataclass
class JoinResult(Result):
    room: Optional[RoomModel] = None
    color: Optional[Color] = None


@dataclass
class SubmitResult(Result):
    move: Optional[MoveModel] = None
    room: Optional[RoomModel] = None


@dataclass
class MoveRow:
    """Move history grouped per full move, for the move list display."""

    number: int
    white: str
    black: Optional[str] = None


@dataclass
class SessionSnapshot:
    """Everything a display needs after a session change."""

    state: SessionState
    room: Optional[RoomModel]
    color: Optional[Color]
    position: str
    in_check: bool = False
    moves: list[MoveModel] = field(default_factory=list)
