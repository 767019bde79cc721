from __future__ import annotations
"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import Literal
from urllib.parse import quote_plus

from pydantic_settings import BaseSettings

from talkinghead.errors import ConfigurationError


class Settings(BaseSettings):
    """TalkingHead application settings.

    Loaded from environment variables or .env file.
    """

    # --- Application ---
    APP_NAME: str = "TalkingHead"
    DEBUG: bool = False

    # --- Database (MySQL 8.0+) ---
    DB_HOST: str = "localhost"
    DB_PORT: int = 3306
    DB_USER: str = "root"
    DB_PASSWORD: str = ""
    DB_NAME: str = "talkinghead"
    # Full async SQLAlchemy URL; overrides the DB_* fields when set
    DB_URL: str = ""
    # Run create_all at startup instead of relying on Alembic migrations
    DB_CREATE_TABLES: bool = False

    @property
    def DATABASE_URL(self) -> str:
        """Async connection string (asyncmy driver unless DB_URL is given)."""
        if self.DB_URL:
            return self.DB_URL
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"mysql+asyncmy://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            "?charset=utf8mb4"
        )

    # --- Redis (Celery broker + result backend) ---
    REDIS_URL: str = "redis://localhost:6379/0"

    # --- Media Volume (uploaded inputs) ---
    MEDIA_VOLUME: str = "media_volume"
    MAX_UPLOAD_BYTES: int = 50 * 1024 * 1024

    # --- VisionStory (avatar + talking-head video) ---
    VISIONSTORY_API_KEY: str = ""
    VISIONSTORY_API_BASE: str = "https://openapi.visionstory.ai"
    VISIONSTORY_TIMEOUT: float = 120.0

    # --- Generation policy (fixed per deployment, not per job) ---
    VIDEO_MODEL: str = "vs_talk_v1"
    VIDEO_EMOTION: str = "news"
    VIDEO_ASPECT_RATIO: str = "9:16"
    VIDEO_RESOLUTION: str = "720p"
    VIDEO_VOICE_CHANGE: bool = True
    VIDEO_DENOISE: bool = True

    # --- Polling profiles (seconds) ---
    INTERACTIVE_POLL_INTERVAL: float = 10
    INTERACTIVE_POLL_TIMEOUT: float = 3600
    WORKER_POLL_INTERVAL: float = 600
    WORKER_POLL_TIMEOUT: float = 216000  # 60 hours

    # --- Dispatch ---
    DISPATCH_MODE: Literal["inline", "queue"] = "inline"
    TASK_MAX_RETRIES: int = 3
    TASK_RETRY_DELAY: int = 60
    RECOVER_INTERRUPTED_JOBS: bool = True

    @property
    def api_configured(self) -> bool:
        return bool(self.VISIONSTORY_API_KEY)

    def require_api_key(self) -> str:
        """Return the provider key or fail fast when it is missing."""
        if not self.VISIONSTORY_API_KEY:
            raise ConfigurationError(
                "VisionStory API key is not configured. "
                "Please set VISIONSTORY_API_KEY environment variable."
            )
        return self.VISIONSTORY_API_KEY

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings singleton."""
    return Settings()
