"""Unit tests for chessrooms/services/room_service.py"""

from typing import Any
from uuid import UUID, uuid4

import pytest

from chessrooms.core.config import Settings
from chessrooms.core.exceptions import PersistenceError
from chessrooms.core.models import RoomModel
from chessrooms.core.shared_types import Color, Failure, Status
from chessrooms.db.sql_repository import SQLSessionStore
from chessrooms.rules.engine import STARTING_POSITION
from chessrooms.services.room_service import (
    RoomLifecycleManager,
    generate_room_code,
    normalize_room_code,
)


class StaleReadStore:
    """Mock a client whose read of the room happened before somebody else's write."""

    def __init__(self, store: SQLSessionStore, stale: RoomModel) -> None:
        self._store = store
        self._stale = stale

    def get_room(self, room_id: UUID) -> RoomModel | None:
        return self._stale

    def __getattr__(self, name: str) -> Any:
        return getattr(self._store, name)


class UnreachableStore:
    """Every call fails as if the network were down."""

    def __getattr__(self, name: str) -> Any:
        def _fail(*args: Any, **kwargs: Any) -> Any:
            raise PersistenceError("store unreachable")

        return _fail


def assert_seat_invariants(room: RoomModel) -> None:
    if room.status == Status.IN_PROGRESS:
        assert room.white_seat is not None and room.black_seat is not None
    if room.status == Status.WAITING:
        assert room.white_seat is None or room.black_seat is None


# --- CODES ---
def test_generated_codes_follow_settings(settings: Settings) -> None:
    for _ in range(20):
        code = generate_room_code(settings)
        assert len(code) == 6
        assert all(char in settings.room_code_alphabet for char in code)


def test_normalize_room_code() -> None:
    assert normalize_room_code(" k3f9a2 ") == "K3F9A2"


# --- CREATE ROOM ---
def test_create_room(rooms: RoomLifecycleManager) -> None:
    result = rooms.create_room()

    assert result.ok
    assert result.room is not None
    assert result.room.code == "ROOM01"
    assert result.room.status == Status.WAITING
    assert result.room.position == STARTING_POSITION
    assert result.room.current_turn == Color.WHITE
    assert result.room.white_seat is None and result.room.black_seat is None


def test_create_room_retries_taken_code(
    store: SQLSessionStore, settings: Settings
) -> None:
    codes = iter(["TAKEN1", "TAKEN1", "FRESH1"])
    rooms = RoomLifecycleManager(store, settings, code_factory=lambda: next(codes))

    first = rooms.create_room()
    second = rooms.create_room()

    assert first.room is not None and first.room.code == "TAKEN1"
    assert second.room is not None and second.room.code == "FRESH1"


def test_create_room_gives_up_after_configured_attempts(
    store: SQLSessionStore, settings: Settings
) -> None:
    settings.room_code_attempts = 3
    rooms = RoomLifecycleManager(store, settings, code_factory=lambda: "SAME01")
    assert rooms.create_room().ok

    result = rooms.create_room()
    assert result.error == Failure.PERSISTENCE_ERROR
    assert result.room is None


def test_create_room_with_store_down(settings: Settings) -> None:
    rooms = RoomLifecycleManager(UnreachableStore(), settings)  # type: ignore[arg-type]
    result = rooms.create_room()
    assert result.error == Failure.PERSISTENCE_ERROR


# --- LOOKUP ---
def test_get_room_by_code_is_case_insensitive(
    store: SQLSessionStore, settings: Settings
) -> None:
    rooms = RoomLifecycleManager(store, settings, code_factory=lambda: "K3F9A2")
    created = rooms.create_room()

    found = rooms.get_room_by_code("k3f9a2")
    assert found.ok
    assert found.room == created.room


def test_get_unknown_code(rooms: RoomLifecycleManager) -> None:
    """Unknown codes are a result, not an exception."""
    result = rooms.get_room_by_code("ZZZZZZ")
    assert result.error == Failure.NOT_FOUND
    assert result.room is None


# --- JOIN ROOM ---
def test_two_players_join(store: SQLSessionStore, settings: Settings) -> None:
    """Room K3F9A2: A gets white and the room waits, B gets black and the game starts."""
    rooms = RoomLifecycleManager(store, settings, code_factory=lambda: "K3F9A2")
    created = rooms.create_room()
    assert created.room is not None

    joined_a = rooms.join_room(created.room.id, "player-a")
    assert joined_a.ok
    assert joined_a.color == Color.WHITE
    assert joined_a.room is not None
    assert joined_a.room.status == Status.WAITING
    assert_seat_invariants(joined_a.room)

    room_id = rooms.get_room_by_code("K3F9A2").room.id  # type: ignore[union-attr]
    joined_b = rooms.join_room(room_id, "player-b")
    assert joined_b.ok
    assert joined_b.color == Color.BLACK
    assert joined_b.room is not None
    assert joined_b.room.status == Status.IN_PROGRESS
    assert joined_b.room.white_seat == "player-a"
    assert joined_b.room.black_seat == "player-b"
    assert_seat_invariants(joined_b.room)


def test_rejoining_returns_same_seat(rooms: RoomLifecycleManager) -> None:
    room = rooms.create_room().room
    assert room is not None
    rooms.join_room(room.id, "player-a")
    rooms.join_room(room.id, "player-b")

    again_a = rooms.join_room(room.id, "player-a")
    again_b = rooms.join_room(room.id, "player-b")

    assert again_a.color == Color.WHITE
    assert again_b.color == Color.BLACK
    # reconnecting does not write anything
    assert again_b.room is not None and again_b.room.version == 3


def test_third_player_is_refused(rooms: RoomLifecycleManager) -> None:
    room = rooms.create_room().room
    assert room is not None
    rooms.join_room(room.id, "player-a")
    rooms.join_room(room.id, "player-b")

    result = rooms.join_room(room.id, "player-c")
    assert result.error == Failure.ROOM_FULL
    assert result.color is None


def test_join_unknown_room(rooms: RoomLifecycleManager) -> None:
    assert rooms.join_room(uuid4(), "player-a").error == Failure.NOT_FOUND


@pytest.mark.parametrize(
    "status", [Status.CHECKMATE, Status.STALEMATE, Status.DRAW, Status.ABANDONED]
)
def test_join_finished_room(
    rooms: RoomLifecycleManager, store: SQLSessionStore, status: Status
) -> None:
    room = rooms.create_room().room
    assert room is not None
    store.update_room(room.id, {"status": status})

    result = rooms.join_room(room.id, "player-a")
    assert result.error == Failure.ROOM_UNAVAILABLE


def test_seat_race_has_one_winner(
    rooms: RoomLifecycleManager, store: SQLSessionStore, settings: Settings
) -> None:
    """Both clients read an empty white seat. Only the first conditional write gets it."""
    room = rooms.create_room().room
    assert room is not None

    # B read the room before A claimed the seat
    slow_b = RoomLifecycleManager(StaleReadStore(store, room), settings)  # type: ignore[arg-type]

    assert rooms.join_room(room.id, "player-a").color == Color.WHITE
    lost = slow_b.join_room(room.id, "player-b")

    assert lost.error == Failure.CONDITION_FAILED
    stored = store.get_room(room.id)
    assert stored is not None
    assert stored.white_seat == "player-a"
    assert stored.black_seat is None

    # retrying with a fresh read gives B the black seat
    retry = rooms.join_room(room.id, "player-b")
    assert retry.color == Color.BLACK


def test_join_with_store_down(settings: Settings) -> None:
    rooms = RoomLifecycleManager(UnreachableStore(), settings)  # type: ignore[arg-type]
    assert rooms.join_room(uuid4(), "player-a").error == Failure.PERSISTENCE_ERROR
