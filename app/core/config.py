from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.constants import (
    FULL_ANALYSIS,
    INTERACTION_ANALYSIS,
    PROFILE_SEARCH,
    VIDEO_UPLOAD,
    VIEWER_DATA_FETCH,
)
from app.core.version import __version__


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    PORT: int = 8000
    APP_ENV: Literal["development", "production"] = "production"
    LOG_LEVEL: str = "INFO"

    REDIS_URL: str = "redis://localhost:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_RECORD_KEY: str = "peekaboo:record:"
    REDIS_ESCALATION_KEY: str = "peekaboo:escalation:"

    # Key material for the record codec. The placeholder is refused at encode time.
    RECORD_SECRET: str = "change-me"
    RECORD_TTL_SECONDS: int = 0  # 0 = never expire

    # Per-call deadlines in seconds
    SOURCE_TIMEOUT_SECONDS: float = 10.0
    TRANSFORM_TIMEOUT_SECONDS: float = 30.0
    SECURE_TIMEOUT_SECONDS: float = 5.0
    COMPLY_TIMEOUT_SECONDS: float = 5.0
    PERSIST_TIMEOUT_SECONDS: float = 5.0
    ESCALATE_TIMEOUT_SECONDS: float = 10.0

    # Infrastructure failures are retried at most once per stage
    PIPELINE_MAX_RETRIES: int = Field(default=1, ge=0, le=1)
    RETRY_BACKOFF_BASE_SECONDS: float = 0.5
    RETRY_BACKOFF_MAX_SECONDS: float = 4.0

    ESCALATION_DEDUP_WINDOW_SECONDS: int = 3600  # 1 hour
    ESCALATION_STORE: Literal["memory", "redis"] = "memory"
    # Live dedup markers kept by the memory store; claims beyond this are refused
    ESCALATION_MEMORY_MAX_ENTRIES: int = 10000

    # Source name -> URL template containing "{identifier}"
    SOURCE_URLS: dict[str, str] = Field(default_factory=dict)
    VISITOR_TRACKER_URL: str | None = None
    TRANSFORM_URL: str | None = None
    ALERT_WEBHOOK_URL: str | None = None
    DEPLOYMENT_WEBHOOK_URL: str | None = None

    COMPLIANCE_ALLOWED_OPERATIONS: list[str] = Field(
        default_factory=lambda: [
            PROFILE_SEARCH,
            VIDEO_UPLOAD,
            INTERACTION_ANALYSIS,
            VIEWER_DATA_FETCH,
            FULL_ANALYSIS,
        ]
    )


settings = Settings()

APP_VERSION = __version__
