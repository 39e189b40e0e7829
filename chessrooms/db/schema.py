"""Database tables / schema"""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from chessrooms.core.shared_types import Color, Status


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class DBRoom(Base):
    __tablename__ = "rooms"
    id: Mapped[UUID] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(16), unique=True, index=True)
    white_seat: Mapped[Optional[str]]
    black_seat: Mapped[Optional[str]]
    current_turn: Mapped[str] = mapped_column(default=Color.WHITE.value)
    position: Mapped[str]
    move_log: Mapped[str] = mapped_column(default="")
    status: Mapped[str] = mapped_column(default=Status.WAITING.value)
    winner: Mapped[Optional[str]]
    # bumped on every write, lets subscribers drop stale deliveries
    version: Mapped[int] = mapped_column(default=1)
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, onupdate=utc_now)


class DBMove(Base):
    __tablename__ = "moves"
    __table_args__ = (UniqueConstraint("room_id", "move_number"),)
    id: Mapped[UUID] = mapped_column(primary_key=True)
    room_id: Mapped[UUID] = mapped_column(ForeignKey("rooms.id"), index=True)
    move_number: Mapped[int]
    from_square: Mapped[str] = mapped_column(String(2))
    to_square: Mapped[str] = mapped_column(String(2))
    piece: Mapped[str] = mapped_column(String(1))
    notation: Mapped[str]
    color: Mapped[str]
    created_at: Mapped[datetime] = mapped_column(default=utc_now)
