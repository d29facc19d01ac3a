"""
riskgate - Configuration Settings

Centralized configuration using Pydantic Settings for type-safe
environment variable handling with validation.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Example: FAIL_OPEN=false switches the engine to fail-closed mode.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application Settings
    # =========================================================================
    app_env: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Application environment"
    )
    app_debug: bool = Field(
        default=False,
        description="Enable debug mode (SQL echo)"
    )
    app_log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level"
    )

    # =========================================================================
    # Store Backend
    # =========================================================================
    store_backend: Literal["memory", "postgres"] = Field(
        default="memory",
        description="Where activities, alerts and blacklist entries live"
    )

    # =========================================================================
    # PostgreSQL Configuration
    # =========================================================================
    postgres_host: str = Field(
        default="localhost",
        description="PostgreSQL server hostname"
    )
    postgres_port: int = Field(
        default=5432,
        description="PostgreSQL server port"
    )
    postgres_db: str = Field(
        default="riskgate",
        description="PostgreSQL database name"
    )
    postgres_user: str = Field(
        default="riskgate",
        description="PostgreSQL username"
    )
    postgres_password: str = Field(
        default="",
        description="PostgreSQL password (set via POSTGRES_PASSWORD env var)"
    )
    postgres_statement_timeout_ms: int = Field(
        default=2000,
        description="Server-side statement timeout applied to every store call"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def postgres_url(self) -> str:
        """Construct PostgreSQL connection URL for asyncpg."""
        return (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # =========================================================================
    # Redis Configuration (per-user evaluation locks)
    # =========================================================================
    redis_host: str = Field(
        default="localhost",
        description="Redis server hostname"
    )
    redis_port: int = Field(
        default=6379,
        description="Redis server port"
    )
    redis_db: int = Field(
        default=0,
        description="Redis database number"
    )
    redis_key_prefix: str = Field(
        default="riskgate:",
        description="Prefix for all Redis keys to avoid conflicts"
    )
    redis_password: Optional[str] = Field(
        default=None,
        description="Redis password (optional)"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def redis_url(self) -> str:
        """Construct Redis connection URL."""
        auth = f":{self.redis_password}@" if self.redis_password else ""
        return f"redis://{auth}{self.redis_host}:{self.redis_port}/{self.redis_db}"

    user_lock_backend: Literal["none", "local", "redis"] = Field(
        default="none",
        description="Serialize evaluations per user (none keeps the unlocked behavior)"
    )
    user_lock_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Lock lease / acquisition timeout for per-user serialization"
    )

    # =========================================================================
    # API Configuration
    # =========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="API server bind address"
    )
    api_port: int = Field(
        default=8000,
        description="API server port"
    )
    api_token: Optional[str] = Field(
        default=None,
        description="API token for evaluation / payment endpoints (optional)"
    )
    admin_token: Optional[str] = Field(
        default=None,
        description="Admin token for blacklist and alert endpoints (optional)"
    )
    metrics_token: Optional[str] = Field(
        default=None,
        description="Token required to access /metrics (optional)"
    )
    trust_user_id_header: Optional[bool] = Field(
        default=None,
        description="Accept X-User-Id when upstream auth did not resolve a user "
                    "(defaults to true outside production)"
    )

    # =========================================================================
    # Failure Policy
    # =========================================================================
    fail_open: bool = Field(
        default=True,
        description="Let the guarded action proceed when scoring or audit writes fail"
    )
    check_timeout_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Per-check timeout; a timed out check counts as failed"
    )

    # =========================================================================
    # Risk Thresholds (0-100 scale)
    # =========================================================================
    risk_threshold_low: int = Field(default=30, ge=0, le=100)
    risk_threshold_medium: int = Field(default=60, ge=0, le=100)
    risk_threshold_high: int = Field(default=80, ge=0, le=100)
    risk_threshold_critical: int = Field(default=95, ge=0, le=100)

    # =========================================================================
    # Check Weights and Windows
    # =========================================================================
    blacklist_ip_score: int = Field(default=50, ge=0)
    blacklist_device_score: int = Field(default=40, ge=0)
    enforce_blacklist_expiry: bool = Field(
        default=False,
        description="Ignore blacklist entries whose expires_at is in the past"
    )

    velocity_score: int = Field(default=30, ge=0)
    velocity_limits_path: Optional[str] = Field(
        default="config/velocity_limits.yaml",
        description="YAML map of activity type to {count, window_minutes}"
    )

    location_score: int = Field(default=25, ge=0)
    location_lookback_records: int = Field(default=10, ge=1)
    location_travel_window_hours: float = Field(default=12.0, gt=0)

    new_device_score: int = Field(default=15, ge=0)
    new_user_agent_score: int = Field(default=10, ge=0)
    device_lookback_records: int = Field(default=20, ge=1)

    flagged_history_score: int = Field(default=5, ge=0)
    flagged_history_window_days: int = Field(default=7, ge=1)

    payment_mismatch_tolerance: float = Field(default=0.01, ge=0)
    payment_mismatch_risk_score: int = Field(default=75, ge=0, le=100)

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "Settings":
        """Thresholds must be strictly ascending."""
        ordered = [
            self.risk_threshold_low,
            self.risk_threshold_medium,
            self.risk_threshold_high,
            self.risk_threshold_critical,
        ]
        if any(a >= b for a, b in zip(ordered, ordered[1:])):
            raise ValueError(
                "Risk thresholds must be strictly ascending: "
                f"low={ordered[0]} medium={ordered[1]} high={ordered[2]} critical={ordered[3]}"
            )
        return self

    @model_validator(mode="after")
    def _validate_production_security(self) -> "Settings":
        """Enforce required security settings in production."""
        if self.app_env == "production":
            missing: list[str] = []
            if not self.api_token:
                missing.append("API_TOKEN")
            if not self.admin_token:
                missing.append("ADMIN_TOKEN")
            if missing:
                raise ValueError(
                    "Missing required settings for production: "
                    + ", ".join(missing)
                )
        return self

    @property
    def user_id_header_trusted(self) -> bool:
        if self.trust_user_id_header is not None:
            return self.trust_user_id_header
        return self.app_env != "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to avoid re-parsing environment on every call.
    """
    return Settings()


# Singleton settings instance for easy import
settings = get_settings()
