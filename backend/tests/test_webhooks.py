import os
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from factories import make_invoice, setup_db  # noqa: E402
from security_utils import WEBHOOK_SECRET, build_event, build_stripe_signature, signed_payload  # noqa: E402
from settlement.core import config as config_module  # noqa: E402
from settlement.core import invoices as invoices_module  # noqa: E402
from settlement.core import webhooks as webhooks_module  # noqa: E402
from settlement.core.errors import (  # noqa: E402
    GatewayNotConfigured,
    InvalidWebhookPayload,
    SignatureVerificationFailed,
    StoreUnavailable,
)
from settlement.core.invoices import sweep_overdue  # noqa: E402
from settlement.core.queue import clear_job_handlers  # noqa: E402
from settlement.core.time import utcnow  # noqa: E402
from settlement.core.webhooks import handle_webhook, process_event  # noqa: E402
from settlement.crud.establishment_commissions import get_credit_for_invoice  # noqa: E402
from settlement.crud.invoices import get_invoice, list_payments_for_invoice  # noqa: E402
from settlement.crud.webhook_events import get_event, record_event  # noqa: E402
from settlement.jobs.queue_worker import register_default_handlers, run_queue_once  # noqa: E402
from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum  # noqa: E402
from settlement.models.job_dead_letters import JobDeadLetter  # noqa: E402
from settlement.models.job_queue import JobQueue  # noqa: E402
from settlement.models.webhook_events import WebhookEvent  # noqa: E402


@pytest.fixture(autouse=True)
def _webhook_secret(monkeypatch):
    monkeypatch.setattr(config_module.settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)


def _session(tmp_path):
    return setup_db(f"sqlite:///{tmp_path / 'webhooks.db'}")


def _deliver(db, event):
    payload, signature = signed_payload(event)
    return handle_webhook(db, payload, signature)


def test_success_event_marks_invoice_paid(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, establishment_id="hotel-1")
        outcome = _deliver(db, build_event("payment_intent.succeeded", invoice_id=invoice.id))

        assert outcome.status == "processed"
        assert outcome.to_payload() == {
            "received": True,
            "status": "processed",
            "event_id": "evt_test_1",
            "event_type": "payment_intent.succeeded",
            "invoice_id": invoice.id,
        }
        invoice = get_invoice(db, invoice.id)
        assert invoice.invoice_status == InvoiceStatusEnum.PAID
        assert invoice.payment_method == "card"
        assert invoice.payment_reference == "pi_evt_test_1"

        payments = list_payments_for_invoice(db, invoice.id)
        assert len(payments) == 1
        assert payments[0].amount == Decimal("200.00")
        assert payments[0].webhook_event_id == "evt_test_1"
        assert get_credit_for_invoice(db, invoice.id) is not None

        ledger = get_event(db, "evt_test_1")
        assert ledger.processed is True
        assert ledger.outcome == "processed"
        assert ledger.invoice_id == invoice.id


def test_underpaying_event_leaves_invoice_payable(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, total_amount="1000.00", establishment_id="hotel-1")
        outcome = _deliver(
            db,
            build_event("payment_intent.succeeded", invoice_id=invoice.id, event_id="evt_short", amount=1),
        )

        assert outcome.status == "amount_mismatch"
        assert outcome.reason == "amount_mismatch"
        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.PENDING
        assert list_payments_for_invoice(db, invoice.id) == []
        assert get_credit_for_invoice(db, invoice.id) is None

        ledger = get_event(db, "evt_short")
        assert ledger.processed is True
        assert ledger.outcome == "amount_mismatch"

        # The correct amount still settles it.
        assert _deliver(db, build_event("payment_intent.succeeded", invoice_id=invoice.id)).status == "processed"
        payments = list_payments_for_invoice(db, invoice.id)
        assert [payment.amount for payment in payments] == [Decimal("200.00")]


def test_store_failure_during_payment_rolls_back_and_withholds_ack(tmp_path, monkeypatch):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        invoice_id = invoice.id

        def _locked(*_args, **_kwargs):
            raise OperationalError("INSERT INTO commission_payments", {}, Exception("database is locked"))

        monkeypatch.setattr(invoices_module, "create_payment", _locked)
        event = build_event("payment_intent.succeeded", invoice_id=invoice_id)
        with pytest.raises(StoreUnavailable):
            _deliver(db, event)

        assert get_invoice(db, invoice_id).invoice_status == InvoiceStatusEnum.PENDING
        assert get_event(db, "evt_test_1") is None
        assert list_payments_for_invoice(db, invoice_id) == []

        # Gateway redelivery after the store recovers applies the event once.
        monkeypatch.undo()
        monkeypatch.setattr(config_module.settings, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
        assert _deliver(db, event).status == "processed"
        assert get_invoice(db, invoice_id).invoice_status == InvoiceStatusEnum.PAID
        assert len(list_payments_for_invoice(db, invoice_id)) == 1


def test_replayed_event_is_acknowledged_without_side_effects(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, establishment_id="hotel-1")
        event = build_event("payment_intent.succeeded", invoice_id=invoice.id)
        assert _deliver(db, event).status == "processed"
        assert _deliver(db, event).status == "duplicate"

        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.PAID
        assert len(list_payments_for_invoice(db, invoice.id)) == 1
        assert db.query(WebhookEvent).count() == 1


def test_distinct_success_event_for_paid_invoice_is_a_conflict(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        _deliver(db, build_event("payment_intent.succeeded", invoice_id=invoice.id, event_id="evt_a"))
        outcome = _deliver(
            db,
            build_event("checkout.session.completed", invoice_id=invoice.id, event_id="evt_b"),
        )
        assert outcome.status == "conflict"
        assert len(list_payments_for_invoice(db, invoice.id)) == 1
        assert get_event(db, "evt_b").outcome == "conflict"


def test_late_payment_after_overdue_sweep_is_accepted(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        assert sweep_overdue(db, invoice.due_date + timedelta(days=1)) == 1
        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.OVERDUE

        outcome = _deliver(db, build_event("payment_intent.succeeded", invoice_id=invoice.id))
        assert outcome.status == "processed"
        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.PAID


def test_failed_payment_event_moves_invoice_to_overdue(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        event = build_event(
            "payment_intent.payment_failed",
            invoice_id=invoice.id,
            extra_object={"last_payment_error": {"code": "card_declined", "message": "Your card was declined."}},
        )
        assert _deliver(db, event).status == "processed"

        invoice = get_invoice(db, invoice.id)
        assert invoice.invoice_status == InvoiceStatusEnum.OVERDUE
        payments = list_payments_for_invoice(db, invoice.id)
        assert payments[0].payment_status == PaymentStatusEnum.FAILED
        assert payments[0].failure_reason == "Your card was declined."


@pytest.mark.parametrize(
    "event_kwargs, reason",
    [
        ({"event_type": "customer.created", "invoice_id": 1}, "unhandled_event_type"),
        (
            {"event_type": "payment_intent.succeeded", "invoice_id": 1, "metadata_type": "subscription"},
            "not_a_commission_payment",
        ),
        ({"event_type": "payment_intent.succeeded", "invoice_id": None}, "missing_invoice_id"),
        ({"event_type": "payment_intent.succeeded", "invoice_id": "abc"}, "missing_invoice_id"),
        (
            {
                "event_type": "checkout.session.completed",
                "invoice_id": 1,
                "extra_object": {"payment_status": "unpaid"},
            },
            "checkout_not_paid",
        ),
    ],
)
def test_irrelevant_events_are_ignored_but_recorded(tmp_path, event_kwargs, reason):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        event_kwargs = dict(event_kwargs)
        event_type = event_kwargs.pop("event_type")
        outcome = _deliver(db, build_event(event_type, **event_kwargs))
        assert outcome.status == "ignored"
        assert outcome.reason == reason
        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.PENDING
        ledger = get_event(db, "evt_test_1")
        assert ledger.outcome == "ignored"
        assert ledger.error_message == reason


def test_invalid_signature_is_rejected_and_not_recorded(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        payload, _ = signed_payload(build_event("payment_intent.succeeded", invoice_id=invoice.id))
        bad_signature = build_stripe_signature(payload.decode("utf-8"), secret="whsec_wrong")

        with pytest.raises(SignatureVerificationFailed):
            handle_webhook(db, payload, bad_signature)
        with pytest.raises(SignatureVerificationFailed):
            handle_webhook(db, payload, None)

        assert db.query(WebhookEvent).count() == 0
        assert get_invoice(db, invoice.id).invoice_status == InvoiceStatusEnum.PENDING


def test_missing_webhook_secret_fails_closed(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module.settings, "STRIPE_WEBHOOK_SECRET", None)
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        payload, signature = signed_payload(build_event("payment_intent.succeeded", invoice_id=1))
        with pytest.raises(GatewayNotConfigured):
            handle_webhook(db, payload, signature)


def test_signed_payload_without_event_id_is_invalid(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        event = build_event("payment_intent.succeeded", invoice_id=1)
        event.pop("id")
        payload, signature = signed_payload(event)
        with pytest.raises(InvalidWebhookPayload):
            handle_webhook(db, payload, signature)


def test_concurrent_delivery_losing_the_insert_race_is_a_duplicate(tmp_path, monkeypatch):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice_id = make_invoice(db).id
        event = build_event("payment_intent.succeeded", invoice_id=invoice_id)

    # Another worker commits the ledger row between our check and insert.
    with SessionLocal() as other:
        record_event(other, stripe_event_id=event["id"], event_type=event["type"], payload=event)
        other.commit()

    real_get_event = webhooks_module.get_event
    calls = {"count": 0}

    def _stale_first_lookup(db, event_id):
        calls["count"] += 1
        if calls["count"] == 1:
            return None
        return real_get_event(db, event_id)

    monkeypatch.setattr(webhooks_module, "get_event", _stale_first_lookup)
    with SessionLocal() as db:
        outcome = process_event(db, event)
        assert outcome.status == "duplicate"
        assert get_invoice(db, invoice_id).invoice_status == InvoiceStatusEnum.PENDING
        assert list_payments_for_invoice(db, invoice_id) == []


def test_event_before_invoice_is_deferred_and_reconciled(tmp_path):
    SessionLocal = _session(tmp_path)
    clear_job_handlers()
    register_default_handlers()
    with SessionLocal() as db:
        outcome = _deliver(db, build_event("payment_intent.succeeded", invoice_id=1))
        assert outcome.status == "deferred"
        assert outcome.reason == "invoice_not_found"

        ledger = get_event(db, "evt_test_1")
        assert ledger.processed is False
        assert ledger.outcome == "deferred"

        job = db.query(JobQueue).filter(JobQueue.job_type == "webhook_reconcile").one()
        assert job.queue_name == "critical"
        assert job.max_attempts == config_module.settings.WEBHOOK_RECONCILE_MAX_ATTEMPTS

        # The booking layer catches up.
        invoice = make_invoice(db)
        assert invoice.id == 1

    with SessionLocal() as db:
        run_queue_once(db, queue_name="critical", worker_id="test")

    with SessionLocal() as db:
        assert get_invoice(db, 1).invoice_status == InvoiceStatusEnum.PAID
        ledger = get_event(db, "evt_test_1")
        assert ledger.processed is True
        assert ledger.outcome == "processed"
        payments = list_payments_for_invoice(db, 1)
        assert len(payments) == 1
        assert payments[0].webhook_event_id == "evt_test_1"
    clear_job_handlers()


def test_deferred_event_dead_letters_when_invoice_never_appears(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module.settings, "WEBHOOK_RECONCILE_MAX_ATTEMPTS", 2)
    SessionLocal = _session(tmp_path)
    clear_job_handlers()
    register_default_handlers()
    with SessionLocal() as db:
        assert _deliver(db, build_event("payment_intent.succeeded", invoice_id=42)).status == "deferred"

    for _ in range(2):
        with SessionLocal() as db:
            db.query(JobQueue).update({JobQueue.run_at: utcnow() - timedelta(seconds=1)})
            db.commit()
            assert run_queue_once(db, queue_name="critical", worker_id="test") == 1

    with SessionLocal() as db:
        assert db.query(JobQueue).count() == 0
        dead = db.query(JobDeadLetter).one()
        assert dead.job_type == "webhook_reconcile"
        assert dead.attempt_count == 2
        assert dead.payload_json["invoice_id"] == 42
        assert "Invoice 42 not found" in dead.last_error
    clear_job_handlers()
