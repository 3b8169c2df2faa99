"""Application configuration using pydantic-settings."""
import functools
import logging
import sys
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DB_PATH = str(Path.home() / ".rad_tutor" / "tutor.db")


class Settings(BaseSettings):
    """Settings loaded from RAD_TUTOR_* environment variables and .env."""

    model_config = SettingsConfigDict(
        env_prefix="RAD_TUTOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage
    db_path: str = Field(default=DEFAULT_DB_PATH)
    busy_timeout_seconds: float = Field(default=5.0)

    # Identity used by the terminal front end
    user_id: str = Field(default="local")
    device_id: str = Field(default="terminal")

    # Session sizing
    review_session_size: int = Field(default=20, ge=1)
    quick_session_size: int = Field(default=10, ge=1)
    daily_challenge_size: int = Field(default=5, ge=1)
    weakness_top_n: int = Field(default=10, ge=1)
    plan_batch_size: int = Field(default=10, ge=1)

    # Cross-device resumption
    active_session_ttl_minutes: int = Field(default=30, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)


@functools.lru_cache
def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


def configure_logging(settings: Settings) -> None:
    """Configure structlog: JSON lines for machines, console output otherwise."""
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    renderer = (
        structlog.processors.JSONRenderer()
        if settings.json_logs
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
