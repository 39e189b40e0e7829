"""
Pytest will auto-discover / import this file called 'conftest.py'.
This file defines fixtures/variables required for testing multiple layers.
"""

from itertools import count
from pathlib import Path
from typing import Iterator

import pytest
from sqlalchemy import StaticPool, create_engine
from sqlalchemy.orm import Session, sessionmaker

from chessrooms.core.config import Settings
from chessrooms.db.feed import ChangeFeed
from chessrooms.db.schema import Base
from chessrooms.db.sql_repository import SQLSessionStore
from chessrooms.rules.engine import ChessRulesEngine
from chessrooms.services.room_service import RoomLifecycleManager

# Setup an in-memory SQLite database for testing
DATABASE_URL = "sqlite:///:memory:"
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db_session_repo() -> Iterator[Session]:
    """Connection to a test database. Tables are removed at teardown to make tests independent of each other."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=DATABASE_URL,
        participant_token_path=tmp_path / "participant",
    )


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def store(db_session_repo: Session, feed: ChangeFeed) -> SQLSessionStore:
    """The shared backend both clients talk to."""
    return SQLSessionStore(db_session_repo, feed)


@pytest.fixture
def rules() -> ChessRulesEngine:
    return ChessRulesEngine()


@pytest.fixture
def sequential_codes() -> Iterator[str]:
    """Deterministic, distinct room codes: ROOM01, ROOM02, ..."""
    return (f"ROOM{n:02d}" for n in count(1))


@pytest.fixture
def rooms(
    store: SQLSessionStore, settings: Settings, sequential_codes: Iterator[str]
) -> RoomLifecycleManager:
    return RoomLifecycleManager(
        store, settings, code_factory=lambda: next(sequential_codes)
    )
