"""Anonymous participant token, generated once per device and persisted locally."""

import logging
from pathlib import Path
from uuid import UUID, uuid4

from chessrooms.core.models import ParticipantToken

logger = logging.getLogger(__name__)


class ParticipantTokenStore:
    """
    Keeps the token in a small file so reconnecting recognizes the same seat holder.

    NOTE the token only identifies a device across reconnects. It is never used to authenticate anyone.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load_or_create(self) -> ParticipantToken:
        token = self._read()
        if token is not None:
            return token

        token = str(uuid4())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token, encoding="utf-8")
        logger.info("Generated new participant token at %s", self.path)
        return token

    def _read(self) -> ParticipantToken | None:
        if not self.path.is_file():
            return None
        content = self.path.read_text(encoding="utf-8").strip()
        try:
            return str(UUID(content))
        except ValueError:
            logger.warning("Ignoring unreadable participant token in %s", self.path)
            return None
