"""Application configuration."""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    openrouter_api_key: str = Field(..., alias="OPENROUTER_API_KEY")
    openrouter_model: str = Field(..., alias="OPENROUTER_MODEL")
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        alias="OPENROUTER_BASE_URL",
    )
    database_path: Path = Field(default=Path("chatagent.db"), alias="DATABASE_PATH")
    memory_window_messages: int = Field(default=20, alias="MEMORY_WINDOW_MESSAGES")
    request_timeout_seconds: float = Field(default=30.0, alias="REQUEST_TIMEOUT_SECONDS")
    # Upper bound on how long the dispatch loop sleeps between index checks.
    scheduler_poll_interval_seconds: float = Field(default=30.0, alias="SCHEDULER_POLL_INTERVAL_SECONDS")
    schedule_past_tolerance_seconds: float = Field(default=5.0, alias="SCHEDULE_PAST_TOLERANCE_SECONDS")
    booking_api_base_url: str = Field(
        default="http://localhost:4004/catalog/BookingService",
        alias="BOOKING_API_BASE_URL",
    )
    booking_api_token: str = Field(default="", alias="BOOKING_API_TOKEN")
    booking_auth_header_name: str = Field(default="x-approuter-authorization", alias="BOOKING_AUTH_HEADER_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
