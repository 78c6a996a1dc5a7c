"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared by the scheduler and its services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./courtbook.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements to the log")
    sqlite_busy_timeout: float = Field(
        default=30.0,
        description="Seconds a SQLite connection waits for the write lock before failing.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    availability_cache_ttl: int = Field(default=5, description="TTL (s) for cached availability answers")

    local_timezone: str = Field(
        default="UTC",
        description="IANA zone that court operating hours and stored booking times are expressed in.",
    )
    cancellation_grace_minutes: int = Field(
        default=30,
        description="Bookers cannot cancel once the start time is closer than this.",
    )
    trust_client_price: bool = Field(
        default=False,
        description="Store a caller-supplied price as given instead of checking it against the court rate.",
    )
    payment_capture_synchronous: bool = Field(
        default=False,
        description="Record new payment placeholders as SUCCEEDED instead of PENDING.",
    )
    payment_currency: str = Field(default="INR", description="Currency code stored on payment rows")

    event_backend: Literal["log", "memory", "rabbitmq"] = Field(
        default="log", description="Transport used for real-time booking events"
    )
    notification_backend: Literal["log", "rabbitmq"] = Field(
        default="log", description="Transport used for owner notifications"
    )
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ host for events and notifications")
    rabbitmq_exchange: str = Field(default="booking-events", description="Topic exchange for booking events")
    rabbitmq_notification_queue: str = Field(default="notifications", description="Durable notification queue")

    log_dir: str = Field(default="logs", description="Directory for per-service audit logs")
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
