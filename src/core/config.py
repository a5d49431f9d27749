"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    Required settings will raise validation errors if not provided.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="order-reconciler", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")
    max_request_body_size: int = Field(default=65536, description="Maximum accepted request body in bytes")

    # Supabase
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_secret_key: str = Field(..., description="Supabase secret key for backend operations")

    # Stripe
    stripe_webhook_secret: str = Field(default="", description="Stripe webhook signing secret")

    # Reconciliation
    default_currency: str = Field(default="ZAR", description="Currency used when an order carries none")
    payment_method: str = Field(default="STRIPE_CHECKOUT", description="Method recorded on payment ledger rows")

    # Outbox worker
    reconciliation_worker_enabled: bool = Field(default=True, description="Run the outbox drain loop")
    reconciliation_worker_interval_seconds: float = Field(default=10.0, description="Seconds between drain passes")
    reconciliation_job_batch_size: int = Field(default=25, description="Jobs claimed per drain pass")
    reconciliation_job_max_attempts: int = Field(default=8, description="Attempts before a job is marked dead")
    reconciliation_job_lease_seconds: int = Field(
        default=300,
        description="Seconds a claimed job may stay processing before it is requeued",
    )

    @field_validator("default_currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        """Store currency codes upper-cased."""
        return value.strip().upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
