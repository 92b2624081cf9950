import os

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from settlement.core import config as config_module  # noqa: E402
from settlement.core.config import Settings  # noqa: E402
from settlement.core.startup_checks import run_startup_checks  # noqa: E402


@pytest.fixture
def settings(monkeypatch):
    current = config_module.settings
    monkeypatch.setattr(current, "ENVIRONMENT", "development")
    monkeypatch.setattr(current, "STRIPE_SECRET_KEY", None)
    monkeypatch.setattr(current, "STRIPE_WEBHOOK_SECRET", None)
    monkeypatch.setattr(current, "NOTIFICATION_CHANNEL", "email")
    return current


def test_development_defaults_pass(settings):
    run_startup_checks()


def test_production_requires_strong_secret_and_real_database(settings, monkeypatch):
    monkeypatch.setattr(settings, "ENVIRONMENT", "production")
    with pytest.raises(RuntimeError) as excinfo:
        run_startup_checks()
    message = str(excinfo.value)
    assert "STRIPE_WEBHOOK_SECRET" in message
    assert "SECRET_KEY" in message
    assert "DATABASE_URL" in message


def test_stripe_keys_must_be_configured_together(settings, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    with pytest.raises(RuntimeError, match="STRIPE_WEBHOOK_SECRET"):
        run_startup_checks()


def test_webhook_notifications_need_a_url(settings, monkeypatch):
    monkeypatch.setattr(settings, "NOTIFICATION_CHANNEL", "webhook")
    monkeypatch.setattr(settings, "NOTIFICATION_WEBHOOK_URL", None)
    with pytest.raises(RuntimeError, match="NOTIFICATION_WEBHOOK_URL"):
        run_startup_checks()


def test_settings_parse_commission_tiers_from_env(monkeypatch):
    monkeypatch.setenv("COMMISSION_TIERS", '{"premium": {"platform_rate": "15", "partner_share": "40"}}')
    monkeypatch.setenv("NOTIFICATION_CHANNEL", " Webhook ")
    parsed = Settings()
    assert str(parsed.COMMISSION_TIERS["premium"]["platform_rate"]) == "15"
    assert str(parsed.COMMISSION_TIERS["premium"]["partner_share"]) == "40"
    assert parsed.NOTIFICATION_CHANNEL == "webhook"
