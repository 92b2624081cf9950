# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# Commission rates live here so they can change per deployment or per
# package tier without touching the calculator.

import json
from decimal import Decimal
from typing import Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./settlement.db or a
    # Postgres URL. Needed by SQLAlchemy to connect to the invoice store.
    DATABASE_URL: str

    # Secret key used for signing operator JWTs.
    # Must be kept private in production.
    SECRET_KEY: str

    # JWT algorithm to use. Default HS256 (symmetric HMAC-SHA256).
    ALGORITHM: str = "HS256"

    # How long issued operator tokens are valid, in minutes.
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # Deployment environment name ("development", "production", ...).
    ENVIRONMENT: str = "development"

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Store calls must never block forever: pool checkout timeout and a
    # per-statement timeout (Postgres only, ignored on SQLite).
    DB_POOL_TIMEOUT_SECONDS: int = Field(default=10, gt=0)
    DB_STATEMENT_TIMEOUT_MS: int = Field(default=5000, ge=0)

    # Commission split. PLATFORM_COMMISSION_RATE is a percent of the
    # booking total; PARTNER_COMMISSION_SHARE is the percent of the
    # platform fee handed to a referring establishment.
    PLATFORM_COMMISSION_RATE: Decimal = Decimal("20")
    PARTNER_COMMISSION_SHARE: Decimal = Decimal("50")

    # Optional per-package overrides, e.g.
    # {"premium": {"platform_rate": "15", "partner_share": "50"}}.
    # Unknown packages fall back to the defaults above.
    COMMISSION_TIERS: Dict[str, Dict[str, Decimal]] = Field(default_factory=dict)

    # Invoice numbering and payment terms.
    INVOICE_DUE_DAYS: int = Field(default=30, gt=0)
    INVOICE_NUMBER_PREFIX: str = "INV"

    # QR referral visits older than this no longer attribute bookings.
    # Zero disables expiry.
    REFERRAL_VISIT_TTL_DAYS: int = Field(default=15, ge=0)

    # Stripe credentials. The webhook secret verifies inbound events;
    # the API key is only needed to create hosted payment links.
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_CURRENCY: str = "thb"

    # Public base URL, used for payment-link redirects.
    APP_BASE_URL: Optional[str] = None

    # Background queue behaviour.
    JOB_QUEUE_LOCK_TIMEOUT_SECONDS: int = 300
    JOB_QUEUE_POLL_INTERVAL_SECONDS: float = 2.0

    # Payment events that reference an invoice we have not stored yet
    # are retried this many times before landing in the dead letters.
    WEBHOOK_RECONCILE_MAX_ATTEMPTS: int = Field(default=6, gt=0)

    # Provider notifications: "email" (logged) or "webhook" (signed POST).
    NOTIFICATION_CHANNEL: str = "email"
    NOTIFICATION_WEBHOOK_URL: Optional[str] = None
    NOTIFICATION_WEBHOOK_SECRET: Optional[str] = None
    NOTIFICATION_TIMEOUT_SECONDS: int = Field(default=10, gt=0)

    @field_validator("NOTIFICATION_CHANNEL", "STRIPE_CURRENCY", mode="before")
    @classmethod
    def _normalize_lower(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("COMMISSION_TIERS", mode="before")
    @classmethod
    def _parse_tiers(cls, value):
        if value in (None, ""):
            return {}
        if isinstance(value, str):
            return json.loads(value)
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from settlement.core.config import settings`.
settings = Settings()
