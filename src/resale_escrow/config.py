"""Application configuration via pydantic-settings.

Reads from .env file or environment variables. All settings are validated
at startup; if a value is malformed the app fails fast with a clear error.

Usage:
    from resale_escrow.config import get_settings
    settings = get_settings()
    print(settings.platform_fee_rate)
"""

from __future__ import annotations

from decimal import Decimal
from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Central configuration for the resale escrow service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Application ---
    app_env: Literal["development", "staging", "production", "test"] = "development"
    app_debug: bool = True
    app_log_level: str = "DEBUG"
    app_host: str = "0.0.0.0"
    app_port: int = 8000

    # --- Database (PostgreSQL) ---
    database_url: str = (
        "postgresql+asyncpg://resale:resale_dev"
        "@localhost:5432/resale_escrow"
    )
    db_pool_size: int = 10
    db_max_overflow: int = 20
    db_pool_timeout: int = 30
    db_echo_sql: bool = False

    # --- Redis ---
    redis_url: str = "redis://localhost:6379/0"
    redis_idempotency_ttl_seconds: int = 86400  # 24 hours

    # --- Identity (bearer tokens issued by the identity provider) ---
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"

    # --- Pricing ---
    currency: str = "GBP"
    platform_fee_rate: Decimal = Decimal("0.10")
    buyer_protection_fee_rate: Decimal = Decimal("0.025")
    max_markup_rate: Decimal = Decimal("0.50")
    max_tickets_per_listing: int = 10

    # --- Deadlines ---
    seller_transfer_window_hours: int = 24
    buyer_confirmation_window_hours: int = 48
    dispute_response_window_hours: int = 48
    payment_window_minutes: int = 30
    listing_cutoff_hours: int = 2
    # Seller reminders, in hours before the transfer deadline
    transfer_reminder_hours: int = 12
    transfer_urgent_reminder_hours: int = 2

    # Buyer inaction defaults to the seller. Changing this has financial
    # consequences: with it off, the sweep opens a dispute instead.
    auto_confirm_on_buyer_inaction: bool = True

    # --- Deadline sweep ---
    sweep_enabled: bool = True
    sweep_interval_seconds: int = 60
    sweep_batch_size: int = 100

    # --- Fraud oracle ---
    fraud_oracle_type: Literal["rules", "http", "mock"] = "rules"
    fraud_oracle_url: str = ""
    fraud_oracle_timeout_seconds: float = 10.0
    fraud_blacklist_patterns: str = ""

    # --- Payment rails ---
    payment_simulate: bool = True
    payment_max_attempts: int = 3
    # HMAC-SHA256 key for X-Payment-Signature on processor callbacks
    payment_webhook_secret: str = "change-me-webhook"

    # --- Default seller limits (unverified tier) ---
    default_max_active_listings: int = 3
    default_max_ticket_value: Decimal = Decimal("200")
    default_trust_score: int = 50

    # --- Rate limiting (fixed window, per actor + action) ---
    rate_limit_enabled: bool = True
    rate_limit_window_seconds: int = 60
    rate_limit_default_max: int = 60
    rate_limit_create_max: int = 5
    rate_limit_purchase_max: int = 10
    rate_limit_upload_max: int = 10

    @property
    def is_development(self) -> bool:
        return self.app_env in ("development", "test")

    @property
    def fraud_blacklist(self) -> list[str]:
        """Parse comma-separated blacklist patterns into a list."""
        if not self.fraud_blacklist_patterns:
            return []
        return [p.strip() for p in self.fraud_blacklist_patterns.split(",") if p.strip()]

    @property
    def sync_database_url(self) -> str:
        """Synchronous database URL for Alembic migrations."""
        return self.database_url.replace("+asyncpg", "+psycopg2")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached singleton of the application settings."""
    return Settings()
