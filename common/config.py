"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    environment: str = Field(default="development", description="development, test or production")
    site_url: str = Field(default="http://localhost:3000", description="Public base URL of the dashboard")

    database_url: str = Field(
        default="sqlite:///./hotelpms.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="Auth provider JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="60/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    unit_cache_ttl: int = Field(default=60, description="TTL (s) for cached unit occupancy results")
    log_dir: str = Field(default="logs", description="Directory for per-service audit logs")

    moyasar_secret_key: str = Field(default="", description="Payment gateway secret key (sk_live_/sk_test_)")
    moyasar_publishable_key: str = Field(default="", description="Payment gateway publishable key")
    moyasar_api_url: str = Field(default="", description="Gateway base URL; sandbox or live is picked when empty")
    moyasar_currency: str = Field(default="SAR", description="Default payment currency")
    moyasar_supported_networks: List[str] = Field(default_factory=lambda: ["mada", "visa", "mastercard"])
    moyasar_webhook_secret: str = Field(default="", description="Shared secret for webhook signatures")
    moyasar_timeout: float = Field(default=15.0, description="Outbound gateway request timeout in seconds")

    events_enabled: bool = Field(default=False, description="Publish booking/payment events to RabbitMQ")
    broker_host: str = Field(default="rabbitmq", description="RabbitMQ host for event publishing")

    users_service_port: int = 8001
    hotels_service_port: int = 8002
    bookings_service_port: int = 8003
    guests_service_port: int = 8004
    billing_service_port: int = 8005

    @property
    def gateway_base_url(self) -> str:
        if self.moyasar_api_url:
            return self.moyasar_api_url.rstrip("/") + "/"
        if self.environment in {"development", "test"}:
            return "https://api.sandbox.moyasar.com/v1/"
        return "https://api.moyasar.com/v1/"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def uses_test_gateway_key(self) -> bool:
        return self.moyasar_secret_key.startswith("sk_test_")


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
