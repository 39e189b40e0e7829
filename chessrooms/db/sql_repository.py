"""Implementation of SessionStore using SQLAlchemy"""

import logging
import threading
from typing import Any, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import ColumnElement, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from chessrooms.core.exceptions import (
    ConditionFailedError,
    DuplicateCodeError,
    PersistenceError,
    RepositoryError,
)
from chessrooms.core.models import MoveModel, RoomModel
from chessrooms.core.shared_types import ChangeKind, Color, Status, Table
from chessrooms.db.feed import ChangeEvent, ChangeFeed, Listener, Subscription
from chessrooms.db.schema import DBMove, DBRoom, utc_now

logger = logging.getLogger(__name__)

# columns a room update is allowed to touch
MUTABLE_ROOM_COLUMNS = frozenset(
    {
        "white_seat",
        "black_seat",
        "current_turn",
        "position",
        "move_log",
        "status",
        "winner",
    }
)
# a write may also be conditioned on the row version
CONDITION_COLUMNS = MUTABLE_ROOM_COLUMNS | {"version"}


class SQLSessionStore:
    """Data stored using SQL / methods implemented using SQLAlchemy. Changes are fanned out through a ChangeFeed."""

    def __init__(self, db_session: Session, feed: ChangeFeed | None = None) -> None:
        self.db = db_session
        self.feed = feed or ChangeFeed()
        # serializes commit + publish so listeners observe writes in commit order
        self._lock = threading.RLock()

    def create_room(self, room: RoomModel) -> RoomModel:
        """Store new room and return the stored data."""
        room_db = DBRoom(
            id=room.id,
            code=room.code,
            white_seat=room.white_seat,
            black_seat=room.black_seat,
            current_turn=room.current_turn.value,
            position=room.position,
            move_log=room.move_log,
            status=room.status.value,
            winner=room.winner.value if room.winner else None,
            version=room.version,
        )
        with self._lock:
            try:
                self.db.add(room_db)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise DuplicateCodeError(f"Room code {room.code!r} already in use.") from e
            except SQLAlchemyError as e:
                self.db.rollback()
                raise PersistenceError(f"Could not create room {room.code!r}.") from e
            self.db.refresh(room_db)
            stored = self._to_room(room_db)
            self._publish(Table.ROOMS, ChangeKind.INSERT, stored)
        return stored

    def get_room(self, room_id: UUID) -> RoomModel | None:
        """Get room by ID, if record exists."""
        room_db = self._fetch_room(DBRoom.id == room_id)
        if room_db:
            return self._to_room(room_db)
        return None

    def get_room_by_code(self, code: str) -> RoomModel | None:
        """Get room by join code, if record exists."""
        room_db = self._fetch_room(DBRoom.code == code)
        if room_db:
            return self._to_room(room_db)
        return None

    def update_room(
        self,
        room_id: UUID,
        patch: Mapping[str, Any],
        condition: Mapping[str, Any] | None = None,
    ) -> RoomModel | None:
        """Conditional update. None for an unknown room, ConditionFailedError when the condition no longer holds."""
        with self._lock:
            try:
                matched = self._conditional_update(room_id, patch, condition)
                if not matched:
                    self.db.rollback()
                    if self._fetch_room(DBRoom.id == room_id) is None:
                        return None
                    raise ConditionFailedError(
                        f"Room {room_id} no longer matches {dict(condition or {})}."
                    )
                self.db.commit()
            except SQLAlchemyError as e:
                self.db.rollback()
                raise PersistenceError(f"Could not update room {room_id}.") from e

            stored = self._reload_room(room_id)
            self._publish(Table.ROOMS, ChangeKind.UPDATE, stored)
        return stored

    def commit_move(
        self,
        room_id: UUID,
        patch: Mapping[str, Any],
        condition: Mapping[str, Any],
        move: MoveModel,
    ) -> tuple[RoomModel, MoveModel]:
        """Turn-gated room update and move insert in one transaction."""
        with self._lock:
            try:
                matched = self._conditional_update(room_id, patch, condition)
                if not matched:
                    self.db.rollback()
                    if self._fetch_room(DBRoom.id == room_id) is None:
                        raise RepositoryError(f"Room with {room_id=} not found.")
                    raise ConditionFailedError(
                        f"Move {move.move_number} rejected, room {room_id} no longer matches {dict(condition)}."
                    )
                move_db = DBMove(
                    id=uuid4(),
                    room_id=room_id,
                    move_number=move.move_number,
                    from_square=move.from_square,
                    to_square=move.to_square,
                    piece=move.piece,
                    notation=move.notation,
                    color=move.color.value,
                )
                self.db.add(move_db)
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                raise ConditionFailedError(
                    f"Move number {move.move_number} already recorded for room {room_id}."
                ) from e
            except SQLAlchemyError as e:
                self.db.rollback()
                raise PersistenceError(f"Could not commit move for room {room_id}.") from e

            self.db.refresh(move_db)
            stored_room = self._reload_room(room_id)
            stored_move = self._to_move(move_db)
            # room row first, move row second: subscribers may briefly see a position without its log entry
            self._publish(Table.ROOMS, ChangeKind.UPDATE, stored_room)
            self._publish(Table.MOVES, ChangeKind.INSERT, stored_move)
        logger.info(
            "Committed move %s (%s) in room %s",
            stored_move.move_number,
            stored_move.notation,
            room_id,
        )
        return stored_room, stored_move

    def list_moves(self, room_id: UUID, after: int = 0) -> list[MoveModel]:
        query = (
            select(DBMove)
            .where(DBMove.room_id == room_id, DBMove.move_number > after)
            .order_by(DBMove.move_number)
        )
        try:
            return [self._to_move(move_db) for move_db in self.db.scalars(query)]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read moves of room {room_id}.") from e

    def subscribe(
        self,
        table: Table,
        room_id: UUID,
        kinds: Iterable[ChangeKind],
        listener: Listener,
    ) -> Subscription:
        return self.feed.subscribe(table, room_id, kinds, listener)

    # -- Internal helpers --
    def _conditional_update(
        self,
        room_id: UUID,
        patch: Mapping[str, Any],
        condition: Mapping[str, Any] | None,
    ) -> bool:
        """UPDATE ... WHERE id = :id AND <condition>. Returns whether a row matched (not yet committed)."""
        self._check_columns(patch, MUTABLE_ROOM_COLUMNS)
        self._check_columns(condition or {}, CONDITION_COLUMNS)
        values = {key: self._to_column_value(value) for key, value in patch.items()}
        stmt = (
            update(DBRoom)
            .where(DBRoom.id == room_id, *self._conditions(condition or {}))
            .values(**values, version=DBRoom.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        return result.rowcount > 0

    def _conditions(self, condition: Mapping[str, Any]) -> list[ColumnElement[bool]]:
        clauses = []
        for key, expected in condition.items():
            column = getattr(DBRoom, key)
            if expected is None:
                clauses.append(column.is_(None))
            else:
                clauses.append(column == self._to_column_value(expected))
        return clauses

    def _check_columns(
        self, columns: Mapping[str, Any], allowed: frozenset[str]
    ) -> None:
        unknown = set(columns) - allowed
        if unknown:
            raise RepositoryError(f"Cannot write or condition on room column(s): {sorted(unknown)}")

    def _to_column_value(self, value: Any) -> Any:
        # StrEnum members are stored by value
        return value.value if isinstance(value, (Color, Status)) else value

    def _fetch_room(self, clause: ColumnElement[bool]) -> DBRoom | None:
        query = select(DBRoom).where(clause).execution_options(populate_existing=True)
        try:
            return self.db.scalar(query)
        except SQLAlchemyError as e:
            raise PersistenceError("Could not read room.") from e

    def _reload_room(self, room_id: UUID) -> RoomModel:
        room_db = self._fetch_room(DBRoom.id == room_id)
        if room_db is None:
            raise RepositoryError(f"Room with {room_id=} vanished after update.")
        return self._to_room(room_db)

    def _publish(self, table: Table, kind: ChangeKind, record: RoomModel | MoveModel) -> None:
        room_id = record.id if isinstance(record, RoomModel) else record.room_id
        self.feed.publish(ChangeEvent(table, kind, room_id, record))

    def _to_room(self, room_db: DBRoom) -> RoomModel:
        """Convert SQLAlchemy model to data transfer model."""
        return RoomModel(
            id=room_db.id,
            code=room_db.code,
            white_seat=room_db.white_seat,
            black_seat=room_db.black_seat,
            current_turn=Color(room_db.current_turn),
            position=room_db.position,
            move_log=room_db.move_log,
            status=Status(room_db.status),
            winner=Color(room_db.winner) if room_db.winner else None,
            version=room_db.version,
            created_at=room_db.created_at,
            updated_at=room_db.updated_at,
        )

    def _to_move(self, move_db: DBMove) -> MoveModel:
        return MoveModel(
            room_id=move_db.room_id,
            move_number=move_db.move_number,
            from_square=move_db.from_square,
            to_square=move_db.to_square,
            piece=move_db.piece,
            notation=move_db.notation,
            color=Color(move_db.color),
            created_at=move_db.created_at,
        )
