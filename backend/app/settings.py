from __future__ import annotations

import hashlib
import logging
import os
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    secret_key: str = Field(default="CHANGE_ME", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    token_ttl_sec: int = Field(default=7 * 24 * 3600, alias="TOKEN_TTL_SEC")

    database_url: str = Field(default="sqlite+aiosqlite:///./ratings.db", alias="DATABASE_URL")
    origin: str = Field(default="", alias="ORIGIN")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    starting_rating: int = Field(default=1000, alias="STARTING_RATING")
    min_rating: int = Field(default=0, alias="MIN_RATING")
    winner_delta: int = Field(default=35, alias="WINNER_DELTA")
    loser_delta: int = Field(default=-35, alias="LOSER_DELTA")
    max_players: int = Field(default=4, ge=2, le=4, alias="MAX_PLAYERS")
    nickname_max_length: int = Field(default=20, ge=1, alias="NICKNAME_MAX_LENGTH")
    room_code_length: int = Field(default=6, ge=4, le=32, alias="ROOM_CODE_LENGTH")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore", populate_by_name=True)

    def allowed_origins(self) -> list[str]:
        """
        Splits ORIGIN on commas, e.g. "https://a.example, https://b.example".
        The local development client is always allowed.
        """
        return ["http://localhost:3000"] + [x.strip() for x in self.origin.split(",") if x.strip()]

    def masked_secret(self) -> str:
        if not self.secret_key:
            return "<empty>"
        if len(self.secret_key) <= 4:
            return "***"
        return f"{self.secret_key[:2]}***{self.secret_key[-2:]}"

    def log_status(self) -> None:
        env_name = os.getenv("ENV", "unknown")
        secret_hash = hashlib.sha256(self.secret_key.encode()).hexdigest()[:8]
        logger.info(
            "Settings: secret_key=%s (hash=%s), database=%s, env=%s",
            self.masked_secret(),
            secret_hash,
            self.database_url.split("://", 1)[0],
            env_name,
        )


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    settings.log_status()
    return settings


settings = get_settings()
