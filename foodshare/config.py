"""
Configuration and settings for the FoodShare backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

    # Database (Postgres expected; any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, validation_alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="FOODSHARE_USE_IN_MEMORY_BACKENDS"
    )

    # Real-time broadcast (Redis pub/sub when configured)
    redis_url: Optional[str] = Field(default=None, validation_alias="REDIS_URL")
    redis_channel: str = Field(
        default="foodshare:events", validation_alias="REDIS_CHANNEL"
    )

    # Auth
    jwt_secret: str = Field(
        default="dev_secret_change_me", validation_alias="JWT_SECRET"
    )
    jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
    token_expire_minutes: int = Field(
        default=60 * 24 * 30, validation_alias="TOKEN_EXPIRE_MINUTES"
    )

    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Whether a donor may reserve a listing they posted themselves.
    allow_self_reservation: bool = Field(
        default=True, validation_alias="ALLOW_SELF_RESERVATION"
    )

    # Expiry sweeper
    expiry_sweep_interval_seconds: float = Field(
        default=300.0, validation_alias="EXPIRY_SWEEP_INTERVAL_SECONDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
