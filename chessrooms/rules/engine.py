"""
Rules engine contract consumed by the session layer, and its python-chess implementation.

The session layer never looks inside a handle: it loads one from the serialized room state, asks for
moves to be applied to it, and serializes the result back.
"""

import io
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import chess
import chess.pgn

from chessrooms.core.exceptions import RulesEngineError
from chessrooms.core.shared_types import Color, PieceType

logger = logging.getLogger(__name__)

STARTING_POSITION = chess.STARTING_FEN

PROMOTION_PIECES: dict[PieceType, chess.PieceType] = {
    PieceType.QUEEN: chess.QUEEN,
    PieceType.ROOK: chess.ROOK,
    PieceType.BISHOP: chess.BISHOP,
    PieceType.KNIGHT: chess.KNIGHT,
}

# Handles are python-chess boards, kept opaque to the callers
Handle = chess.Board


def extend_movetext(movetext: str, move_number: int, notation: str) -> str:
    """
    Append one SAN move to numbered movetext, e.g. '1. e4 e5 2. Nf3'.

    NOTE move_number counts half-moves from 1, so odd numbers are white moves.
    """
    full_move = (move_number + 1) // 2
    if move_number % 2 == 1:
        token = f"{full_move}. {notation}"
    elif movetext:
        token = notation
    else:
        token = f"{full_move}... {notation}"
    return f"{movetext} {token}".strip()


@dataclass(frozen=True)
class MoveApplication:
    """Result of trying a move on a handle. The original handle is never modified."""

    legal: bool
    resulting: Optional[Handle] = None
    notation: Optional[str] = None
    piece: Optional[str] = None


class RulesEngine(Protocol):
    def load_position(self, serialized: str, history: str = "") -> Handle: ...

    def apply_move(
        self,
        handle: Handle,
        from_square: str,
        to_square: str,
        promotion: Optional[PieceType] = None,
    ) -> MoveApplication: ...

    def is_check(self, handle: Handle) -> bool: ...

    def is_checkmate(self, handle: Handle) -> bool: ...

    def is_stalemate(self, handle: Handle) -> bool: ...

    def is_draw(self, handle: Handle) -> bool: ...

    def serialize(self, handle: Handle) -> str: ...

    def replay(self, notations: Iterable[str], start: str = STARTING_POSITION) -> Handle: ...

    def ply(self, handle: Handle) -> int: ...

    def side_to_move(self, handle: Handle) -> Color: ...

    def color_at(self, handle: Handle, square: str) -> Optional[Color]: ...


class ChessRulesEngine:
    """RulesEngine backed by python-chess."""

    def load_position(self, serialized: str, history: str = "") -> Handle:
        """
        Build a handle from a FEN string.
        ---

        When the movetext history replays to exactly the same position, the replayed board is returned instead,
        so repetition draws can be detected. Otherwise the FEN alone is used.
        """
        try:
            board = chess.Board(serialized)
        except ValueError as e:
            raise RulesEngineError(f"Cannot read position {serialized!r}.") from e

        if not history.strip():
            return board

        replayed = self._replay_movetext(history)
        if replayed is not None and replayed.fen() == board.fen():
            return replayed
        logger.warning("Move log does not reproduce position %r, using FEN only.", serialized)
        return board

    def apply_move(
        self,
        handle: Handle,
        from_square: str,
        to_square: str,
        promotion: Optional[PieceType] = None,
    ) -> MoveApplication:
        """
        Try a move on a copy of the handle.
        ---

        A pawn reaching the last rank promotes to a queen unless another piece type is requested.
        """
        try:
            origin = chess.parse_square(from_square)
            target = chess.parse_square(to_square)
        except ValueError:
            return MoveApplication(legal=False)

        piece = handle.piece_at(origin)
        if piece is None:
            return MoveApplication(legal=False)

        promote_to = None
        if piece.piece_type == chess.PAWN and chess.square_rank(target) in (0, 7):
            promote_to = PROMOTION_PIECES.get(promotion or PieceType.QUEEN)
            if promote_to is None:
                return MoveApplication(legal=False)

        move = chess.Move(origin, target, promotion=promote_to)
        if not handle.is_legal(move):
            return MoveApplication(legal=False)

        notation = handle.san(move)
        resulting = handle.copy()
        resulting.push(move)
        return MoveApplication(
            legal=True,
            resulting=resulting,
            notation=notation,
            piece=piece.symbol().lower(),
        )

    def is_check(self, handle: Handle) -> bool:
        return handle.is_check()

    def is_checkmate(self, handle: Handle) -> bool:
        return handle.is_checkmate()

    def is_stalemate(self, handle: Handle) -> bool:
        return handle.is_stalemate()

    def is_draw(self, handle: Handle) -> bool:
        """Draw by insufficient material, the fifty-move rule or threefold repetition."""
        return (
            handle.is_insufficient_material()
            or handle.is_fifty_moves()
            or handle.is_repetition(3)
        )

    def serialize(self, handle: Handle) -> str:
        return handle.fen()

    def ply(self, handle: Handle) -> int:
        """Half-moves played since the start of the game, as implied by the position."""
        return handle.ply()

    def side_to_move(self, handle: Handle) -> Color:
        return Color.WHITE if handle.turn == chess.WHITE else Color.BLACK

    def color_at(self, handle: Handle, square: str) -> Optional[Color]:
        try:
            piece = handle.piece_at(chess.parse_square(square))
        except ValueError:
            return None
        if piece is None:
            return None
        return Color.WHITE if piece.color == chess.WHITE else Color.BLACK

    def replay(
        self, notations: Iterable[str], start: str = STARTING_POSITION
    ) -> Handle:
        """Replay SAN notations from a starting position (used to check a move log against a position)."""
        board = self.load_position(start)
        for notation in notations:
            try:
                board.push_san(notation)
            except ValueError as e:
                raise RulesEngineError(
                    f"Cannot replay {notation!r} after {board.fen()!r}."
                ) from e
        return board

    def _replay_movetext(self, movetext: str) -> Handle | None:
        game = chess.pgn.read_game(io.StringIO(movetext))
        if game is None or game.errors:
            return None
        return game.end().board()
