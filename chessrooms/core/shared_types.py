"""
Type definitions used across layers
"""

from enum import StrEnum


class Status(StrEnum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    CHECKMATE = "checkmate"
    STALEMATE = "stalemate"
    DRAW = "draw"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        """No further moves or seat changes once the room reaches one of these."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {Status.CHECKMATE, Status.STALEMATE, Status.DRAW, Status.ABANDONED}
)


class Color(StrEnum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Color":
        return Color.BLACK if self == Color.WHITE else Color.WHITE


class PieceType(StrEnum):
    PAWN = "pawn"
    KNIGHT = "knight"
    BISHOP = "bishop"
    ROOK = "rook"
    QUEEN = "queen"
    KING = "king"


class SessionState(StrEnum):
    """Client-local lifecycle of one synchronized session."""

    LOADING = "loading"
    JOINED = "joined"
    ACTIVE = "active"
    WAITING_FOR_OPPONENT = "waiting_for_opponent"
    TERMINAL = "terminal"


class ChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"


class Table(StrEnum):
    ROOMS = "rooms"
    MOVES = "moves"


class Failure(StrEnum):
    """Typed failure reasons returned across the session boundary."""

    NOT_FOUND = "not_found"
    ROOM_UNAVAILABLE = "room_unavailable"
    ROOM_FULL = "room_full"
    CONDITION_FAILED = "condition_failed"
    PERSISTENCE_ERROR = "persistence_error"
    ILLEGAL_MOVE = "illegal_move"
    SUBMISSION_FAILED = "submission_failed"
