"""
Startup-time checks for required configuration.
"""

from __future__ import annotations

from settlement.core.config import settings


def _is_production() -> bool:
    env = (settings.ENVIRONMENT or "").strip().lower()
    return env in {"production", "prod"}


def _has_placeholder_secret(value: str | None) -> bool:
    if not value:
        return True
    lowered = value.strip().lower()
    return lowered in {"changeme", "super-secret-key", "secret", "test-secret"}


def run_startup_checks() -> None:
    missing: list[str] = []
    insecure: list[str] = []

    if not settings.DATABASE_URL:
        missing.append("DATABASE_URL")
    if not settings.SECRET_KEY:
        missing.append("SECRET_KEY")

    if _is_production():
        if _has_placeholder_secret(settings.SECRET_KEY) or len(settings.SECRET_KEY or "") < 32:
            insecure.append("SECRET_KEY")
        if not settings.STRIPE_WEBHOOK_SECRET:
            missing.append("STRIPE_WEBHOOK_SECRET")
        if settings.DATABASE_URL and settings.DATABASE_URL.startswith("sqlite"):
            insecure.append("DATABASE_URL")

    if settings.STRIPE_SECRET_KEY and not settings.STRIPE_WEBHOOK_SECRET:
        missing.append("STRIPE_WEBHOOK_SECRET")
    if settings.STRIPE_WEBHOOK_SECRET and not settings.STRIPE_SECRET_KEY:
        missing.append("STRIPE_SECRET_KEY")

    if settings.NOTIFICATION_CHANNEL not in {"email", "webhook"}:
        insecure.append("NOTIFICATION_CHANNEL")
    if settings.NOTIFICATION_CHANNEL == "webhook" and not settings.NOTIFICATION_WEBHOOK_URL:
        missing.append("NOTIFICATION_WEBHOOK_URL")

    if missing or insecure:
        parts = []
        if missing:
            parts.append(f"Missing required settings: {', '.join(sorted(set(missing)))}")
        if insecure:
            parts.append(f"Invalid or insecure settings detected: {', '.join(sorted(set(insecure)))}")
        raise RuntimeError("Startup checks failed. " + " ".join(parts))
