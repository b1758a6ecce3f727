"""Configuration management for cronloop."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# cronloop config directory
CRONLOOP_DIR = Path.home() / ".cronloop"
CRONLOOP_ENV_FILE = CRONLOOP_DIR / ".env"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CRONLOOP_",
        # Later files override earlier ones
        env_file=(str(CRONLOOP_ENV_FILE), ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Scheduler loop settings
    wait_density_ms: int = Field(
        default=100,
        ge=0,
        description="Extra margin added to each wait so the loop never wakes before a task is due",
    )
    throw_exceptions: bool = Field(
        default=False,
        description="Re-raise task errors and stop the loop instead of logging them",
    )
    wait_async_tasks: bool = Field(
        default=True,
        description="Await async tasks one by one; when false they run in the background",
    )

    # Expression settings
    include_seconds: bool = Field(
        default=False,
        description="Whether string expressions have a leading seconds field",
    )
    timezone: str | None = Field(
        default=None,
        description="IANA timezone used for the current time (default: local time)",
    )

    # Logging
    log_level: str = Field(
        default="WARNING",
        description="Log level used by the command-line interface",
    )


# Global settings instance
settings = Settings()
