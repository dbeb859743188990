"""
Game Analytics Core
Centralized Configuration Management

This module provides configuration management using Pydantic settings with
environment variable support, validation, and type safety.
"""

from functools import lru_cache
from typing import Optional
from pydantic import Field, field_validator, model_validator, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """PostgreSQL Database Configuration"""

    model_config = SettingsConfigDict(env_prefix="POSTGRES_")

    host: str = Field(default="localhost", description="Database host")
    port: int = Field(default=5432, description="Database port")
    db: str = Field(default="game_analytics", alias="database", description="Database name")
    user: str = Field(default="analytics", description="Database user")
    password: SecretStr = Field(default="secure_password", description="Database password")
    echo: bool = Field(default=False, description="Echo SQL queries")
    url: Optional[str] = Field(default=None, description="Full async URL (overrides host/port)")
    busy_timeout_seconds: float = Field(default=30.0, description="SQLite lock wait timeout")

    @property
    def async_url(self) -> str:
        """Async database URL - uses POSTGRES_URL if set, otherwise asyncpg"""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"


class RedisSettings(BaseSettings):
    """Redis Cache Configuration"""

    model_config = SettingsConfigDict(env_prefix="REDIS_")

    enabled: bool = Field(default=False, description="Serve rollup reads through Redis")
    host: str = Field(default="localhost", description="Redis host")
    port: int = Field(default=6379, description="Redis port")
    password: Optional[SecretStr] = Field(default=None, description="Redis password")
    db: int = Field(default=0, description="Redis database number")
    max_connections: int = Field(default=50, description="Max connections")
    socket_timeout: int = Field(default=5, description="Socket timeout in seconds")
    url: Optional[str] = Field(default=None, alias="REDIS_URL", description="Redis URL (overrides host/port)")

    def get_url(self) -> str:
        """Redis connection URL - uses REDIS_URL if set, otherwise builds from host/port"""
        if self.url:
            return self.url
        if self.password:
            return f"redis://:{self.password.get_secret_value()}@{self.host}:{self.port}/{self.db}"
        return f"redis://{self.host}:{self.port}/{self.db}"


class MonitoringSettings(BaseSettings):
    """Monitoring and Observability Configuration"""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL", description="Logging level")
    log_format: str = Field(default="json", alias="LOG_FORMAT", description="Log format: json or text")


class AnalyticsSettings(BaseSettings):
    """Event aggregation and rollup configuration"""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    # Rollups
    rollup_window_days: int = Field(default=90, description="Trailing window recomputed on every rollup run")
    rollup_interval_seconds: int = Field(default=300, description="Rollup scheduler cadence")
    rollup_lease_seconds: int = Field(default=1800, description="How long a rollup run holds the shared lease")
    cohort_min_size: int = Field(default=5, description="Cohorts smaller than this emit no row")
    high_engagement_threshold_seconds: int = Field(default=300, description="Session length counted as high engagement")
    retained_rollup_versions: int = Field(default=3, description="Published rollup versions kept for readers")

    # Event log
    event_retention_days: int = Field(default=90, description="Events older than this may be purged")
    scan_page_size: int = Field(default=1000, description="Rows fetched per event log page")
    max_scan_days: int = Field(default=400, description="Widest allowed event log scan")

    # Counter store
    counter_max_attempts: int = Field(default=5, description="Compare-and-swap attempts per upsert")
    counter_backoff_base_seconds: float = Field(default=0.01, description="First retry delay")
    counter_backoff_max_seconds: float = Field(default=0.2, description="Retry delay ceiling")

    # Aggregator consumer
    aggregator_workers: int = Field(default=4, description="Concurrent counter workers")
    aggregator_batch_size: int = Field(default=500, description="Events read per consumer poll")
    aggregator_poll_interval_seconds: float = Field(default=1.0, description="Idle poll delay")
    watermark_gap_grace_seconds: float = Field(default=5.0, description="How long an id gap may hold the watermark")
    watermark_gap_abandon_seconds: float = Field(
        default=3600.0, description="How long a skipped id is re-checked before it is given up"
    )

    run_background_tasks: bool = Field(default=False, description="Run consumer and scheduler inside the API process")

    @field_validator(
        "rollup_window_days",
        "rollup_interval_seconds",
        "rollup_lease_seconds",
        "cohort_min_size",
        "retained_rollup_versions",
        "event_retention_days",
        "scan_page_size",
        "max_scan_days",
        "counter_max_attempts",
        "aggregator_workers",
        "aggregator_batch_size",
    )
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Reject zero and negative sizes"""
        if v <= 0:
            raise ValueError("must be a positive integer")
        return v

    @field_validator("high_engagement_threshold_seconds")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        """Threshold may be zero but not negative"""
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @model_validator(mode="after")
    def validate_scan_covers_window(self) -> "AnalyticsSettings":
        """A rollup run scans window + 1 days and must fit the scan limit"""
        if self.rollup_window_days + 1 > self.max_scan_days:
            raise ValueError(
                f"rollup_window_days ({self.rollup_window_days}) + 1 exceeds max_scan_days ({self.max_scan_days})"
            )
        if self.watermark_gap_abandon_seconds < self.watermark_gap_grace_seconds:
            raise ValueError("watermark_gap_abandon_seconds must not be shorter than watermark_gap_grace_seconds")
        return self


class Settings(BaseSettings):
    """
    Main Application Settings

    Aggregates all configuration sections and provides a single entry point
    for accessing application configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="game-analytics", alias="APP_NAME", description="Application name")
    app_env: str = Field(default="development", alias="APP_ENV", description="Environment")
    debug: bool = Field(default=False, alias="DEBUG", description="Debug mode")

    # API Server
    api_host: str = Field(default="0.0.0.0", alias="API_HOST", description="API host")
    api_port: int = Field(default=8000, alias="API_PORT", description="API port")

    # Version
    version: str = Field(default="1.0.0", description="Application version")

    # Subsystem configurations
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    analytics: AnalyticsSettings = Field(default_factory=AnalyticsSettings)

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, v: str) -> str:
        """Validate environment value"""
        allowed = ["development", "staging", "production", "testing"]
        if v.lower() not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v.lower()

    @property
    def is_production(self) -> bool:
        """Check if running in production"""
        return self.app_env == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development"""
        return self.app_env == "development"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Uses LRU cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
