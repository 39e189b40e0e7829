"""Wire the layers together for a client process."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from chessrooms.core.config import Settings, get_settings
from chessrooms.core.log import configure_logging
from chessrooms.core.models import ParticipantToken
from chessrooms.core.participant import ParticipantTokenStore
from chessrooms.db.database import make_engine, make_session_factory
from chessrooms.db.feed import ChangeFeed
from chessrooms.db.sql_repository import SQLSessionStore
from chessrooms.rules.engine import ChessRulesEngine
from chessrooms.services.room_service import RoomLifecycleManager
from chessrooms.services.session_sync import SessionSynchronizer

logger = logging.getLogger(__name__)


@contextmanager
def connect(settings: Settings | None = None) -> Iterator[RoomLifecycleManager]:
    """Open the store described by the settings and yield a room manager on top of it. The ORM session is closed on exit."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    engine = make_engine(settings)
    db = make_session_factory(engine)()
    logger.info("Connected to %s", engine.url.render_as_string(hide_password=True))
    try:
        yield RoomLifecycleManager(SQLSessionStore(db, ChangeFeed()), settings)
    finally:
        db.close()
        engine.dispose()


def start_session(
    rooms: RoomLifecycleManager, token: Optional[ParticipantToken] = None
) -> SessionSynchronizer:
    """New session for this device. Without an explicit token the locally persisted one is used."""
    if token is None:
        token = ParticipantTokenStore(rooms.settings.participant_token_path).load_or_create()
    return SessionSynchronizer(rooms, ChessRulesEngine(), token, rooms.settings)
