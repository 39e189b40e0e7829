"""Application settings, read from the environment (prefix CHESSROOMS_) or a .env file."""

import string
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CHESSROOMS_", env_file=".env")

    database_url: str = "sqlite:///./chessrooms.db"
    echo_sql: bool = False

    room_code_length: int = 6
    room_code_alphabet: str = string.ascii_uppercase + string.digits
    # fresh codes to try when the unique constraint on rooms.code rejects one
    room_code_attempts: int = 5
    # seat claims to try when the conditional write loses a race
    join_attempts: int = 2

    participant_token_path: Path = Path.home() / ".chessrooms" / "participant"
    log_level: str = "INFO"

    @field_validator("room_code_alphabet")
    @classmethod
    def validate_alphabet(cls, value: str) -> str:
        if not value or not value.isalnum() or value != value.upper():
            raise ValueError("Room code alphabet must be non-empty uppercase alphanumerics.")
        return value


@lru_cache()
def get_settings() -> Settings:
    return Settings()
