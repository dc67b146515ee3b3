"""
Configuration and settings for the check-in backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (hosted Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Change notifications (Redis pub/sub)
    redis_url: Optional[str] = Field(default=None)
    redis_channel_prefix: str = Field(default="checkin:changes")

    # Sessions are issued elsewhere; we only verify them.
    session_secret: Optional[str] = Field(default=None)
    session_algorithm: str = Field(default="HS256")

    # Cache lifetimes, in milliseconds
    stats_cache_ttl_ms: int = Field(default=15_000)
    listing_cache_ttl_ms: int = Field(default=30_000)
    lookup_cache_ttl_ms: int = Field(default=60_000)
    identity_cache_ttl_ms: int = Field(default=300_000)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="CHECKIN_USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
