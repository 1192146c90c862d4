"""Application configuration."""
from functools import lru_cache

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # App
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_debug: bool = True
    log_level: str = "DEBUG"

    # Database - 필수 필드 (환경변수에서 반드시 읽어야 함)
    database_url: str = Field(
        ...,
        description="Database connection URL (required)",
    )
    db_pool_size: int = Field(
        default=20,
        description="DB connection pool size",
    )
    db_max_overflow: int = Field(
        default=10,
        description="Max overflow connections",
    )
    db_auto_create: bool = Field(
        default=False,
        description="Create tournament/clock tables on startup (dev only)",
    )

    # Redis - 필수 필드
    redis_url: str = Field(
        ...,
        description="Redis connection URL (required)",
    )
    redis_max_connections: int = Field(
        default=50,
        description="Redis max connections",
    )
    redis_socket_timeout: float = Field(
        default=5.0,
        description="Redis socket timeout in seconds",
    )
    redis_socket_connect_timeout: float = Field(
        default=5.0,
        description="Redis socket connect timeout in seconds",
    )

    # JWT - 토큰 발급은 외부 인증 서버 담당, 여기서는 검증만 수행
    jwt_secret_key: str = Field(
        ...,
        description="JWT secret key (required, minimum 32 characters)",
    )
    jwt_algorithm: str = "HS256"
    jwt_admin_claim: str = Field(
        default="is_admin",
        description="Boolean claim marking a tournament administrator",
    )

    # Internal API (cron / sync script 용 X-API-Key)
    internal_api_key: str = Field(
        ...,
        description="API key for internal endpoints (X-API-Key header, required)",
    )

    # Sentry Error Tracking
    sentry_dsn: str | None = Field(
        default=None,
        description="Sentry DSN for error tracking",
    )
    sentry_traces_sample_rate: float = Field(
        default=0.05,
        description="Sentry transaction sampling rate (0.0-1.0)",
    )

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Clock policy
    clock_default_level_duration_seconds: int = Field(
        default=1200,
        description="Level duration used when a level has no positive duration (20분)",
    )
    clock_min_reconcile_elapsed_seconds: int = Field(
        default=10,
        description="Minimum elapsed seconds before a reconcile pass persists",
    )
    clock_default_last_level_rebuy: int = Field(
        default=5,
        description="Last level at which rebuys are allowed when the tournament does not say",
    )
    clock_auto_finish_on_exhausted: bool = Field(
        default=False,
        description="Mark the tournament finished when the schedule runs out",
    )

    # Reconciliation driver
    clock_driver_enabled: bool = Field(
        default=True,
        description="Run the periodic reconciliation driver inside this process",
    )
    clock_sync_interval_seconds: float = Field(
        default=10.0,
        description="Main reconciliation interval",
    )
    clock_fast_sync_enabled: bool = Field(
        default=False,
        description="Enable the 1-second fast reconciliation path",
    )
    clock_fast_sync_interval_seconds: float = Field(
        default=1.0,
        description="Fast path interval (threshold follows the interval)",
    )
    clock_operation_timeout_seconds: float = Field(
        default=5.0,
        description="Per-tournament budget for one reconcile operation",
    )
    clock_write_retries: int = Field(
        default=3,
        description="Read-modify-write attempts on write conflict",
    )

    # WebSocket
    ws_heartbeat_interval: int = 15
    ws_max_connections: int = Field(
        default=1000,
        description="Maximum WebSocket connections per instance",
    )

    @field_validator("jwt_secret_key")
    @classmethod
    def validate_jwt_secret_key(cls, v: str) -> str:
        """Validate JWT secret key length."""
        if len(v) < 32:
            raise ValueError(
                "jwt_secret_key must be at least 32 characters long"
            )
        return v

    @field_validator("internal_api_key")
    @classmethod
    def validate_internal_api_key(cls, v: str) -> str:
        """Validate internal API key strength."""
        if len(v) < 16:
            raise ValueError(
                "internal_api_key must be at least 16 characters long"
            )
        return v

    @field_validator("clock_sync_interval_seconds", "clock_fast_sync_interval_seconds")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sync interval must be positive")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production environment."""
        if self.app_env == "production":
            if self.app_debug:
                raise ValueError(
                    "app_debug must be False in production environment"
                )

            origins = [o.strip() for o in self.cors_origins.split(",")]
            if "*" in origins:
                raise ValueError(
                    "CORS wildcard '*' is not allowed in production environment. "
                    "Specify explicit allowed origins."
                )

        return self

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
