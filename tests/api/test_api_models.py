"""Unit tests for chessrooms/api/models.py"""

from pathlib import Path

import pytest

from chessrooms.api.models import BoardView, JoinRoomRequest, MoveAttempt
from chessrooms.core.config import Settings
from chessrooms.core.exceptions import InvalidRequestError
from chessrooms.core.shared_types import Color, PieceType


# -- Validation - JoinRoomRequest --
@pytest.mark.parametrize("code", ["K3F9A2", "k3f9a2", "  k3F9a2 "])
def test_valid_room_codes_are_normalized(code: str) -> None:
    assert JoinRoomRequest(code=code).code == "K3F9A2"


@pytest.mark.parametrize(
    "code",
    [
        "K3F9A",  # too short
        "K3F9A22",  # too long
        "K3-9A2",  # not alphanumeric
        "",
    ],
)
def test_invalid_room_codes(code: str) -> None:
    with pytest.raises(InvalidRequestError):
        _ = JoinRoomRequest(code=code)


def test_room_code_shape_follows_context_settings(tmp_path: Path) -> None:
    settings = Settings(room_code_length=8, participant_token_path=tmp_path / "participant")
    context = {"settings": settings}

    request = JoinRoomRequest.model_validate({"code": "abcd1234"}, context=context)
    assert request.code == "ABCD1234"
    with pytest.raises(InvalidRequestError):
        JoinRoomRequest.model_validate({"code": "K3F9A2"}, context=context)


# -- Validation - MoveAttempt --
def test_valid_square_names() -> None:
    """Test that MoveAttempt accepts correctly written squares in algebraic notation."""
    attempt = MoveAttempt(from_square="e2", to_square="E4")
    assert attempt.from_square == "e2"
    assert attempt.to_square == "e4"
    assert attempt.promote_to is None


@pytest.mark.parametrize("square", ["e9", "i1", "e", "e22", "22", ""])
def test_invalid_square_names(square: str) -> None:
    with pytest.raises(InvalidRequestError):
        _ = MoveAttempt(from_square=square, to_square="e4")


def test_promotion_choice() -> None:
    attempt = MoveAttempt(from_square="a7", to_square="a8", promote_to="knight")
    assert attempt.promote_to == PieceType.KNIGHT


# -- BoardView --
def test_board_view() -> None:
    view = BoardView(position="8/8/8/8/8/8/8/8 w - - 0 1", input_enabled=False, orientation="black")
    assert view.orientation == Color.BLACK
