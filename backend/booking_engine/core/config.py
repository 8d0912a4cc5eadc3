# backend/booking_engine/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug(f"[CONFIG] Looking for .env at: {env_path} (exists={env_path.exists()})")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = "development"
    log_level: str = Field(default="INFO", description="Root log level for configure_logging()")

    # Persistence
    database_url: str = Field(
        default="sqlite+pysqlite:///./booking_engine.db",
        description="SQLAlchemy URL for the engine database",
    )
    db_retry_attempts: int = Field(default=3, ge=1, le=10)

    # Redis provider-day mutex
    redis_url: str = Field(default="redis://localhost:6379/0")
    lock_namespace: str = Field(default="booking-engine")
    booking_lock_enabled: bool = Field(
        default=True,
        description="Disable to skip the Redis mutex and rely on row locks only",
    )
    booking_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Scheduling policy
    session_duration_minutes: int = Field(default=60)
    penalty_window_hours: int = Field(default=24, ge=0)
    reschedule_notice_hours: int = Field(default=24, ge=0)
    require_availability: bool = Field(
        default=True,
        description="Reject bookings outside declared availability unless overridden",
    )
    max_sessions_per_schedule: int = Field(default=200, ge=1)
    flex_step_minutes: int = Field(default=15, ge=1, le=60)
    max_flex_minutes: int = Field(default=180, ge=0)
    max_resolve_days: int = Field(default=366, ge=1)
    default_timezone: str = Field(default="Australia/Melbourne")

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("session_duration_minutes")
    @classmethod
    def _positive_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("SESSION_DURATION_MINUTES must be positive")
        return value

    @field_validator("default_timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("booking_lock_enabled", "require_availability", mode="before")
    @classmethod
    def _coerce_bool(cls, value: object) -> bool | object:
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return value

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


settings = Settings()
