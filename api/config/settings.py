from enum import Enum
from typing import Literal

from fastapi import Depends, Request
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthMode(str, Enum):
    NONE = "none"
    DEV = "dev"
    OIDC = "oidc"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Job Queue Service", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment")
    debug: bool = Field(default=True, description="Debug mode")

    # Authentication
    auth_mode: AuthMode = Field(
        default=AuthMode.NONE,
        description="Authentication mode; oidc rejects job routes until a token verifier is configured",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )

    # Server
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    workers: int = Field(default=1, description="Number of workers")

    # Database (durable queue store)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./jobs.db",
        description="Database connection URL",
    )
    db_pool_size: int = Field(default=10, description="Database connection pool size")
    db_max_overflow: int = Field(default=20, description="Database max overflow connections")
    db_pool_timeout: int = Field(default=30, description="Database pool timeout in seconds")
    db_pool_recycle: int = Field(default=3600, description="Database connection recycle time in seconds")
    db_auto_create: bool = Field(
        default=True, description="Create tables on startup instead of running migrations"
    )

    # Job queue
    queue_enabled: bool = Field(
        default=True, description="Accept job submissions (disable when the store is unavailable)"
    )
    queue_name: str = Field(default="default", description="Queue name used in logs")
    job_worker_enabled: bool = Field(
        default=True, description="Run the worker pool inside the API process"
    )
    job_concurrency: int = Field(default=5, ge=1, description="Concurrent jobs per process")
    job_poll_interval_ms: int = Field(default=1000, ge=1, description="Idle poll interval")
    job_max_attempts: int = Field(default=3, ge=1, description="Default attempts per job")
    job_default_priority: int = Field(
        default=5, ge=1, le=10, description="Default priority (1=highest, 10=lowest)"
    )
    job_backoff_base_ms: int = Field(default=1000, ge=0, description="Retry backoff base")
    job_max_backoff_s: int = Field(default=300, ge=0, description="Retry backoff cap")
    job_backoff_jitter: float = Field(
        default=0.0, ge=0.0, le=1.0, description="Random +/- ratio applied to backoff"
    )
    job_visibility_timeout_s: int = Field(
        default=300, ge=1, description="Heartbeat age after which a running job is recovered"
    )
    job_heartbeat_interval_s: int = Field(default=30, ge=1, description="Heartbeat period")
    job_maintenance_interval_s: int = Field(
        default=300, ge=1, description="Period of metrics trim and stuck job recovery"
    )
    job_cleanup_after_ms: int = Field(
        default=24 * 60 * 60 * 1000, ge=0, description="Default age for terminal job cleanup"
    )
    job_reject_unknown_types: bool = Field(
        default=True, description="Reject submissions for job types with no local processor"
    )

    # Metrics
    metrics_retention_ms: int = Field(
        default=24 * 60 * 60 * 1000, ge=0, description="Timing sample retention window"
    )
    metrics_max_samples: int = Field(
        default=10_000, ge=1, description="Maximum timing samples kept in memory"
    )

    # Notifications
    notification_webhook_url: str | None = Field(
        default=None, description="Webhook receiving job notifications"
    )
    notification_timeout_s: float = Field(default=10.0, description="Webhook timeout")
    progress_milestone_step: int = Field(
        default=25, ge=1, le=100, description="Progress notification granularity"
    )

    # Processors
    analysis_service_url: str | None = Field(
        default=None, description="Repository analysis service base URL"
    )
    export_source_url: str | None = Field(
        default=None, description="Export row source base URL"
    )
    batch_item_delay_ms: int = Field(
        default=1000, ge=0, description="Pause between batch analysis items"
    )

    # Development defaults
    dev_user_id: str = Field(
        default="DEV_USER", description="Default user ID in dev mode"
    )
    dev_org_id: str = Field(default="DEV_ORG", description="Default org ID in dev mode")

    def model_post_init(self, __context) -> None:
        """Validate settings after initialization."""
        # Prevent dev auth modes in production
        if self.environment == "production" and self.auth_mode in (
            AuthMode.NONE,
            AuthMode.DEV,
        ):
            raise ValueError(
                f"AUTH_MODE={self.auth_mode.value} is not allowed in production environment. "
                "Use AUTH_MODE=oidc for production deployments."
            )

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Process-wide settings, for entry points that build their own app."""
    return settings


def get_app_settings(request: Request) -> Settings:
    """Dependency injection function for the settings the app was built with."""
    return getattr(request.app.state, "settings", None) or settings


# Convenience type alias for dependency injection
SettingsDep = Depends(get_app_settings)
