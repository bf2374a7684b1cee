"""Application settings loaded from environment variables.

Environment Configuration:
    MONGODB_URL: MongoDB connection string
    MONGODB_DB: Database name
    REDIS_URL: Redis connection string (optional; enables pub/sub fanout)

Summary synchronization:
    SUMMARY_SYNC_MAX_RETRIES: Attempts for a contended summary update
    SUMMARY_SYNC_RETRY_BACKOFF_MS: Linear backoff step between attempts
    PREVIEW_MAX_LENGTH: Max characters kept in last_message_text
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration."""

    mongodb_url: str = Field(default="mongodb://localhost:27017", alias="MONGODB_URL")
    mongodb_db: str = Field(default="chatsync", alias="MONGODB_DB")
    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    summary_sync_max_retries: int = Field(default=3, ge=1, alias="SUMMARY_SYNC_MAX_RETRIES")
    summary_sync_retry_backoff_ms: int = Field(
        default=50, ge=0, alias="SUMMARY_SYNC_RETRY_BACKOFF_MS"
    )
    preview_max_length: int = Field(default=200, ge=1, alias="PREVIEW_MAX_LENGTH")

    log_json: bool = Field(default=True, alias="LOG_JSON")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()
