"""
Client-side synchronization of one room session.

Keeps the local view of a room and its move log consistent with the authoritative rows in the store,
and submits locally-initiated moves. The room row is the single source of truth: local speculative
state lives in a disposable copy and is replaced wholesale whenever a newer row arrives.
"""

import logging
from typing import Callable, Optional

from chessrooms.api.models import BoardView, JoinRoomRequest, MoveAttempt
from chessrooms.core.config import Settings, get_settings
from chessrooms.core.exceptions import (
    ConditionFailedError,
    InvalidRequestError,
    RepositoryError,
    RulesEngineError,
)
from chessrooms.core.models import (
    JoinResult,
    MoveModel,
    MoveRow,
    ParticipantToken,
    Result,
    RoomModel,
    SessionSnapshot,
    SubmitResult,
)
from chessrooms.core.shared_types import (
    ChangeKind,
    Color,
    Failure,
    PieceType,
    SessionState,
    Status,
    Table,
)
from chessrooms.db.feed import ChangeEvent, Subscription
from chessrooms.db.repository import SessionStore
from chessrooms.rules.engine import Handle, RulesEngine, extend_movetext
from chessrooms.services.room_service import RoomLifecycleManager

logger = logging.getLogger(__name__)

SessionListener = Callable[[SessionSnapshot], None]


class SessionSynchronizer:
    """
    One participant's view of one room.
    ----

    Loading --> Joined --> (Active <--> WaitingForOpponent) --> Terminal

    All work happens on notification / response boundaries. Nothing here runs concurrently with itself.
    """

    def __init__(
        self,
        rooms: RoomLifecycleManager,
        engine: RulesEngine,
        token: ParticipantToken,
        settings: Settings | None = None,
    ) -> None:
        self.rooms = rooms
        self.store: SessionStore = rooms.store
        self.engine = engine
        self.token = token
        self.settings = settings or get_settings()

        self.state = SessionState.LOADING
        self.room: Optional[RoomModel] = None
        self.color: Optional[Color] = None

        self._handle: Optional[Handle] = None
        # speculative (handle, position) while a submission is waiting on the store
        self._speculative: Optional[tuple[Handle, str]] = None
        self._moves: dict[int, MoveModel] = {}
        self._pending_moves: dict[int, MoveModel] = {}
        self._subscriptions: list[Subscription] = []
        self._listeners: list[SessionListener] = []
        self._closed = False

    # --- LIFECYCLE ---
    def open(self, code: str) -> JoinResult:
        """
        Look up the room, take a seat, load the log and start listening.
        ----

        A lost seat race is retried (settings.join_attempts in total), since a fresh read may show
        another free seat or our own. On failure the session stays in Loading.
        Opening again drops everything held for the previous room first.
        """
        self.close()
        self._reset()
        self._closed = False
        try:
            code = JoinRoomRequest.model_validate(
                {"code": code}, context={"settings": self.settings}
            ).code
        except InvalidRequestError as e:
            return JoinResult(error=Failure.NOT_FOUND, message=str(e))

        lookup = self.rooms.get_room_by_code(code)
        if not lookup.ok or lookup.room is None:
            return JoinResult(error=lookup.error, message=lookup.message)

        joined = JoinResult(error=Failure.CONDITION_FAILED)
        for _ in range(max(1, self.settings.join_attempts)):
            joined = self.rooms.join_room(lookup.room.id, self.token)
            if joined.error != Failure.CONDITION_FAILED:
                break
        if not joined.ok or joined.room is None:
            return joined

        self.color = joined.color
        self._subscribe(joined.room)
        try:
            # a write may have landed between the join and the subscription
            latest = self.store.get_room(joined.room.id) or joined.room
            self._adopt_room(joined.room)
            self._adopt_room(latest)
            self.state = SessionState.JOINED
            self._load_moves()
        except RepositoryError as e:
            logger.warning("Could not load room %s: %s", joined.room.code, e)
            self.close()
            self.state = SessionState.LOADING
            return JoinResult(error=Failure.PERSISTENCE_ERROR, message=str(e))

        self._settle()
        logger.info("Joined room %s as %s (%s)", self.room.code, self.color, self.state)
        self._notify()
        return JoinResult(room=self.room, color=self.color)

    def close(self) -> None:
        """Release every open feed. Notifications arriving afterwards are ignored."""
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions.clear()
        self._closed = True

    def resync(self) -> Result:
        """Refetch the room row and any missing log entries from the store."""
        if self.room is None:
            return Result(error=Failure.NOT_FOUND, message="Session has no room yet.")
        try:
            latest = self.store.get_room(self.room.id)
            if latest is not None:
                self._adopt_room(latest)
            self._load_moves()
        except RepositoryError as e:
            return Result(error=Failure.PERSISTENCE_ERROR, message=str(e))
        self._settle()
        self._notify()
        return Result()

    # --- VIEW ---
    @property
    def position(self) -> str:
        if self._speculative is not None:
            return self._speculative[1]
        return self.room.position if self.room else ""

    @property
    def moves(self) -> list[MoveModel]:
        return [self._moves[number] for number in sorted(self._moves)]

    @property
    def can_move(self) -> bool:
        """Local input is enabled only for the side to move in a running game."""
        return (
            not self._closed
            and self.state == SessionState.ACTIVE
            and self._speculative is None
            and self.room is not None
            and self.room.status == Status.IN_PROGRESS
            and self.room.current_turn == self.color
        )

    def board_view(self) -> BoardView:
        return BoardView(
            position=self.position,
            input_enabled=self.can_move,
            orientation=self.color or Color.WHITE,
        )

    def move_rows(self) -> list[MoveRow]:
        """Move history grouped into numbered white/black pairs."""
        rows: list[MoveRow] = []
        for move in self.moves:
            number = (move.move_number + 1) // 2
            if move.color == Color.WHITE:
                rows.append(MoveRow(number=number, white=move.notation))
            elif rows and rows[-1].number == number and rows[-1].black is None:
                rows[-1].black = move.notation
            else:
                rows.append(MoveRow(number=number, white="...", black=move.notation))
        return rows

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self.state,
            room=self.room,
            color=self.color,
            position=self.position,
            in_check=self._in_check(),
            moves=self.moves,
        )

    def watch(self, listener: SessionListener) -> Callable[[], None]:
        """Call listener after every local change. Returns a function removing it again."""
        self._listeners.append(listener)

        def _unwatch() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unwatch

    # --- MOVES ---
    def attempt_move(self, from_square: str, to_square: str) -> bool:
        """Board renderer callback: was the dropped piece accepted?"""
        return self.submit_move(from_square, to_square).ok

    def submit_move(
        self,
        from_square: str,
        to_square: str,
        promotion: Optional[PieceType] = None,
    ) -> SubmitResult:
        """
        Move submission pipeline.
        ----

        1. Reject locally (no store call) if the game is over, it is not our turn, the piece is not ours or the move is illegal.
        2. Apply the move to a private copy of the cached position (new position, side to move, terminal flags).
        3. Show the result right away, then commit room update + move row, gated on the turn still being ours.
        4. On failure drop the speculative copy and fall back to the last authoritative room. No automatic retry.
        """
        if self.room is not None and self.room.is_terminal:
            return SubmitResult(
                error=Failure.ROOM_UNAVAILABLE,
                message=f"Game is over. status: {self.room.status}",
            )
        if not self.can_move or self.room is None or self.color is None or self._handle is None:
            return self._illegal(from_square, to_square, "not your turn")

        try:
            attempt = MoveAttempt(
                from_square=from_square, to_square=to_square, promote_to=promotion
            )
        except (InvalidRequestError, ValueError) as e:
            return self._illegal(from_square, to_square, str(e))

        if self.engine.color_at(self._handle, attempt.from_square) != self.color:
            return self._illegal(from_square, to_square, "not your piece")

        application = self.engine.apply_move(
            self._handle, attempt.from_square, attempt.to_square, attempt.promote_to
        )
        if not application.legal or application.resulting is None:
            return self._illegal(from_square, to_square, "rejected by rules engine")

        resulting = application.resulting
        status, winner = self._status_after(resulting)
        move_number = self.engine.ply(self._handle) + 1
        new_position = self.engine.serialize(resulting)
        patch: dict = {
            "position": new_position,
            "move_log": extend_movetext(
                self.room.move_log, move_number, application.notation or ""
            ),
            "current_turn": self.engine.side_to_move(resulting),
            "status": status,
        }
        if status.is_terminal:
            patch["winner"] = winner
        condition = {
            "current_turn": self.color,
            "status": Status.IN_PROGRESS,
            "version": self.room.version,
        }
        move = MoveModel(
            room_id=self.room.id,
            move_number=move_number,
            from_square=attempt.from_square,
            to_square=attempt.to_square,
            piece=application.piece or "",
            notation=application.notation or "",
            color=self.color,
        )

        self._speculative = (resulting, new_position)
        self._notify()

        try:
            stored_room, stored_move = self.store.commit_move(
                self.room.id, patch, condition, move
            )
        except ConditionFailedError as e:
            logger.warning("Move %s rejected by the store: %s", move.notation, e)
            self._rollback()
            self.resync()
            return SubmitResult(error=Failure.SUBMISSION_FAILED, message=str(e))
        except RepositoryError as e:
            logger.warning("Could not submit move %s: %s", move.notation, e)
            self._rollback()
            return SubmitResult(error=Failure.SUBMISSION_FAILED, message=str(e))

        self._speculative = None
        self._adopt_room(stored_room)
        self._record_move(stored_move)
        self._settle()
        self._notify()
        return SubmitResult(move=stored_move, room=self.room)

    # --- RECONCILIATION ---
    def on_room_changed(self, event: ChangeEvent) -> None:
        """Replace the local room wholesale with a newer authoritative row."""
        if self._closed or not isinstance(event.record, RoomModel):
            return
        if self._adopt_room(event.record):
            self._settle()
            self._notify()

    def on_move_inserted(self, event: ChangeEvent) -> None:
        """Append a committed move to the local log view, ignoring numbers already present."""
        if self._closed or not isinstance(event.record, MoveModel):
            return
        if self._record_move(event.record):
            self._notify()

    # --- Internal helpers ---
    def _subscribe(self, room: RoomModel) -> None:
        self._subscriptions.append(
            self.store.subscribe(
                Table.ROOMS, room.id, [ChangeKind.UPDATE], self.on_room_changed
            )
        )
        self._subscriptions.append(
            self.store.subscribe(
                Table.MOVES, room.id, [ChangeKind.INSERT], self.on_move_inserted
            )
        )

    def _reset(self) -> None:
        self.state = SessionState.LOADING
        self.room = None
        self.color = None
        self._handle = None
        self._speculative = None
        self._moves = {}
        self._pending_moves = {}

    def _adopt_room(self, room: RoomModel) -> bool:
        """Take over a room row unless we already hold the same or a newer version of it."""
        held = self.room
        if held is not None and room.id == held.id and room.version <= held.version:
            logger.debug("Ignoring room %s version %s (have %s)", room.code, room.version, held.version)
            return False
        self.room = room
        self._speculative = None
        try:
            self._handle = self.engine.load_position(room.position, room.move_log)
        except RulesEngineError as e:
            logger.error("Room %s holds an unreadable position: %s", room.code, e)
            self._handle = None
        return True

    def _load_moves(self) -> None:
        if self.room is None:
            raise RepositoryError("No room to load moves for.")
        for move in self.store.list_moves(self.room.id, after=len(self._moves)):
            self._record_move(move)

    def _record_move(self, move: MoveModel) -> bool:
        """
        Add a move to the local log view.
        ----

        Duplicates (same move number) are dropped: our own move arrives both from the submission and as broadcast echo.
        A move arriving ahead of a missing predecessor waits until the gap is filled.
        """
        number = move.move_number
        if number in self._moves or number in self._pending_moves:
            logger.debug("Ignoring duplicate move %s of room %s", number, move.room_id)
            return False

        self._pending_moves[number] = move
        next_number = len(self._moves) + 1
        while next_number in self._pending_moves:
            self._moves[next_number] = self._pending_moves.pop(next_number)
            next_number += 1
        return True

    def _status_after(self, handle: Handle) -> tuple[Status, Optional[Color]]:
        if self.engine.is_checkmate(handle):
            return Status.CHECKMATE, self.color
        if self.engine.is_stalemate(handle):
            return Status.STALEMATE, None
        if self.engine.is_draw(handle):
            return Status.DRAW, None
        return Status.IN_PROGRESS, None

    def _settle(self) -> None:
        """Pick the session state implied by the current room row."""
        if self.room is None or self.state == SessionState.LOADING:
            return
        if self.room.is_terminal:
            self.state = SessionState.TERMINAL
        elif self.room.status == Status.WAITING or not self.room.seats_filled:
            self.state = SessionState.WAITING_FOR_OPPONENT
        else:
            self.state = SessionState.ACTIVE

    def _in_check(self) -> bool:
        handle = self._speculative[0] if self._speculative is not None else self._handle
        return handle is not None and self.engine.is_check(handle)

    def _rollback(self) -> None:
        self._speculative = None
        self._notify()

    def _illegal(self, from_square: str, to_square: str, reason: str) -> SubmitResult:
        logger.debug("Ignoring move %s-%s: %s", from_square, to_square, reason)
        return SubmitResult(error=Failure.ILLEGAL_MOVE, message=reason)

    def _notify(self) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Session listener %r failed", listener)
