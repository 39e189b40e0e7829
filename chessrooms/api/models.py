"""Models exchanged with the board renderer and the join screen."""

from typing import Optional

from pydantic import BaseModel, ValidationInfo, field_validator

from chessrooms.core.config import get_settings
from chessrooms.core.exceptions import InvalidRequestError
from chessrooms.core.shared_types import Color, PieceType


# --- INPUT MODELS ---
class JoinRoomRequest(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def validate_code(cls, value: str, info: ValidationInfo) -> str:
        """Case-normalize and check the code against the configured shape (settings from the validation context, else global)."""
        settings = (info.context or {}).get("settings") or get_settings()
        normalized = value.strip().upper()
        if len(normalized) != settings.room_code_length:
            raise InvalidRequestError(
                f"Room code must be {settings.room_code_length} characters, got {value!r}."
            )
        if any(char not in settings.room_code_alphabet for char in normalized):
            raise InvalidRequestError(f"Room code {value!r} contains invalid characters.")
        return normalized


class MoveAttempt(BaseModel):
    """A (from, to) drop reported by the board renderer."""

    from_square: str
    to_square: str
    promote_to: Optional[PieceType] = None

    @field_validator(*["from_square", "to_square"])
    @classmethod
    def validate_square(cls, value: str) -> str:
        def _is_algebraic_notation(value: str) -> bool:
            if len(value) != 2:
                return False

            file, rank = value[0], value[1]
            return file in "abcdefgh" and rank in "12345678"

        value = value.strip().lower()
        if not _is_algebraic_notation(value):
            raise InvalidRequestError(
                f"Cannot interpret {value!r} as a valid square name."
            )
        return value


# --- OUTPUT MODELS ---
class BoardView(BaseModel):
    """What the board renderer needs to draw: position, whether input is enabled, and orientation."""

    position: str
    input_enabled: bool
    orientation: Color
