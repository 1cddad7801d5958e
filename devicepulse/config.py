"""
DevicePulse Configuration.

Pydantic Settings v2 — loads from .env, environment variables.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "DevicePulse"
    app_version: str = "0.1.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # ── Traffic simulation ───────────────────────────────────────────────
    traffic_mode: Literal["low", "high"] = Field(default="low", alias="TRAFFIC_MODE")
    device_count: int = Field(default=50, ge=1, alias="DEVICE_COUNT")
    tick_interval_seconds: float = Field(default=5.0, gt=0, alias="TICK_INTERVAL_SECONDS")
    # APScheduler applies jitter in whole seconds
    tick_jitter_seconds: int = Field(default=2, ge=0, alias="TICK_JITTER_SECONDS")
    burst_probability: float = Field(default=0.1, ge=0, le=1, alias="BURST_PROBABILITY")
    burst_max_ticks: int = Field(default=100, ge=0, alias="BURST_MAX_TICKS")

    # ── Orchestration ────────────────────────────────────────────────────
    join_timeout_seconds: Optional[float] = Field(default=30.0, alias="JOIN_TIMEOUT_SECONDS")
    join_timeout_policy: Literal["discard", "partial"] = Field(
        default="discard", alias="JOIN_TIMEOUT_POLICY",
    )
    deputy_concurrency: int = Field(default=1, ge=1, alias="DEPUTY_CONCURRENCY")
    run_history_size: int = Field(default=1000, ge=0, alias="RUN_HISTORY_SIZE")
    signal_history_size: int = Field(default=1000, ge=0, alias="SIGNAL_HISTORY_SIZE")

    # ── Analysis ─────────────────────────────────────────────────────────
    anomaly_window: int = Field(default=20, ge=1, alias="ANOMALY_WINDOW")
    prediction_history_limit: int = Field(default=10, ge=1, alias="PREDICTION_HISTORY_LIMIT")

    # ── Alerting ─────────────────────────────────────────────────────────
    alert_cooldown_minutes: int = Field(default=15, ge=0, alias="ALERT_COOLDOWN_MINUTES")

    # ── External Services ────────────────────────────────────────────────
    weather_api_key: str = Field(default="", alias="WEATHER_API_KEY")
    weather_base_url: str = Field(
        default="https://api.openweathermap.org", alias="WEATHER_BASE_URL",
    )
    weather_timeout_seconds: float = Field(default=5.0, gt=0, alias="WEATHER_TIMEOUT_SECONDS")
    fleet_latitude: float = Field(default=37.7749, alias="FLEET_LATITUDE")
    fleet_longitude: float = Field(default=-122.4194, alias="FLEET_LONGITUDE")

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(default="memory://", alias="DATABASE_URL")

    # ── Operational ──────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="console", alias="LOG_FORMAT")
    graceful_shutdown_seconds: float = Field(default=10.0, ge=0, alias="GRACEFUL_SHUTDOWN_SECONDS")

    @field_validator("join_timeout_seconds", mode="before")
    @classmethod
    def _blank_timeout_means_none(cls, value):
        if value in ("", "none", "None"):
            return None
        return value

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url

    @property
    def uses_memory_database(self) -> bool:
        return self.database_url.startswith("memory://")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
