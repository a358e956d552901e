"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. Settings are validated
once at startup. Money policy (commission, VAT, verified-provider advance)
lives here so the escrow breakdown and the quote cost lines agree.

Usage:
    from marketplace_deals.config import get_settings
    settings = get_settings()
    print(settings.database_url)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the marketplace deal coordinator."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://marketplace:marketplace_dev"
        "@localhost:5432/marketplace_deals"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Actor headers ---
    # Off on instances reachable through the public gateway.
    allow_system_role_header: bool = True

    # --- Notifications ---
    # "log" writes outcomes to the structured log, "redis" publishes them
    # on notification_channel for the realtime fan-out service.
    notification_backend: Literal["log", "redis"] = "log"
    notification_channel: str = "marketplace:notifications"

    # --- Escrow fee policy ---
    escrow_commission_percent: Decimal = Decimal("10")
    escrow_vat_rate: Decimal = Decimal("0.18")
    escrow_verified_advance_rate: Decimal = Decimal("0.5")

    # --- Quotes ---
    quote_validity_hours: int = 72

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
