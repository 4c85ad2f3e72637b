"""Centralized application configuration via environment variables."""

from enum import StrEnum
from functools import lru_cache
from pathlib import Path
from typing import Self

from pydantic import SecretStr, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(StrEnum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class CounterBackend(StrEnum):
    FILE = "file"
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Database URL is assembled from individual components to match
    the official PostgreSQL Docker image environment variables.
    Limits and windows default to the values the widget was
    originally deployed with (30 req/min per IP, 120 req/min per CID,
    5 minute timestamp freshness).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- App ---
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "DEBUG"
    log_mask_client_ips: bool = False
    # Surfaces registry error text in rejection bodies. Never in production.
    expose_error_detail: bool = False

    # --- PostgreSQL (storefront registry) ---
    postgres_user: str = "credit_gate"
    postgres_password: SecretStr = SecretStr("secret")
    postgres_db: str = "credit_gate"
    postgres_host: str = "localhost"
    postgres_port: int = 5432

    @computed_field  # type: ignore[prop-decorator]
    @property
    def database_url(self) -> str:
        """Assemble database URL from components.

        Uses psycopg v3 driver which supports both sync (create_engine)
        and async (create_async_engine) modes natively.
        """
        password = self.postgres_password.get_secret_value()
        return (
            f"postgresql+psycopg://{self.postgres_user}:{password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )

    # --- Registry ---
    registry_integration_type: int = 13
    registry_active_status: int = 1
    registry_timeout_seconds: float = 3.0
    platform_suffix: str = ".myshopify.com"

    # --- Rate limiting ---
    counter_backend: CounterBackend = CounterBackend.FILE
    counter_dir: Path = Path("var/ratelimit")
    counter_lock_timeout_seconds: float = 2.0
    counter_prune_interval_seconds: int = 3600
    redis_url: str = "redis://localhost:6379/0"
    ip_rate_limit: int = 30
    cid_rate_limit: int = 120
    rate_limit_window_seconds: int = 60
    retry_after_seconds: int = 60

    # --- Replay guard ---
    timestamp_window_seconds: int = 300

    # --- Geography ---
    allowed_country: str = "BG"
    # CSV of "network,country" rows. Unset means every IP is unknown (denied).
    geo_networks_file: Path | None = None

    # --- Proxy trust ---
    trust_forwarded_proto: bool = True
    trust_forwarded_for: bool = False

    # --- Framing ---
    frame_ancestors: str = "*"

    @model_validator(mode="after")
    def _no_error_detail_in_production(self) -> Self:
        if self.is_prod and self.expose_error_detail:
            raise ValueError("expose_error_detail must be disabled in production")
        return self

    # --- Convenience properties ---
    @property
    def is_dev(self) -> bool:
        return self.environment == Environment.DEVELOPMENT

    @property
    def is_prod(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_testing(self) -> bool:
        return self.environment == Environment.TESTING


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings singleton.

    Usage::

        from credit_gate.config import get_settings
        settings = get_settings()
    """
    return Settings()


settings = get_settings()
