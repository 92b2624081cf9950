import hashlib
import hmac
import json
import os
from datetime import timedelta
from types import SimpleNamespace

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from factories import make_invoice, setup_db  # noqa: E402
from settlement.core import config as config_module  # noqa: E402
from settlement.core.queue import (  # noqa: E402
    OVERDUE_SWEEP_JOB,
    clear_job_handlers,
    enqueue_job,
    register_job_handler,
)
from settlement.crud.invoices import get_invoice  # noqa: E402
from settlement.jobs.overdue_sweep import run_overdue_sweep  # noqa: E402
from settlement.jobs.queue_worker import (  # noqa: E402
    register_default_handlers,
    run_queue_group_once,
    run_queue_once,
)
from settlement.models.enums import InvoiceStatusEnum  # noqa: E402
from settlement.models.job_queue import JobQueue  # noqa: E402
from settlement.notifications.senders import webhook as webhook_sender_module  # noqa: E402


def _session(tmp_path):
    return setup_db(f"sqlite:///{tmp_path / 'queue.db'}")


def test_critical_queue_jobs_processed_before_bulk_queue(tmp_path):
    SessionLocal = _session(tmp_path)
    processed: list[str] = []
    clear_job_handlers()

    def _handler(_db, payload):
        processed.append(payload["label"])

    register_job_handler("test_job", _handler)
    with SessionLocal() as db:
        enqueue_job(db, job_type="test_job", queue_name="bulk", payload={"label": "bulk"})
        enqueue_job(db, job_type="test_job", queue_name="critical", payload={"label": "critical"})

    with SessionLocal() as db:
        run_queue_group_once(db, queue_names=["critical", "bulk"], worker_id="worker-a", limit=10)

    assert processed == ["critical", "bulk"]
    clear_job_handlers()


def test_invoice_notification_is_delivered_as_signed_webhook(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module.settings, "NOTIFICATION_CHANNEL", "webhook")
    monkeypatch.setattr(config_module.settings, "NOTIFICATION_WEBHOOK_URL", "https://hooks.example/provider")
    monkeypatch.setattr(config_module.settings, "NOTIFICATION_WEBHOOK_SECRET", "notify-secret")
    calls = []

    def _fake_post(url, data=None, headers=None, timeout=None):
        calls.append({"url": url, "data": data, "headers": headers, "timeout": timeout})
        return SimpleNamespace(status_code=202)

    monkeypatch.setattr(webhook_sender_module.requests, "post", _fake_post)
    SessionLocal = _session(tmp_path)
    clear_job_handlers()
    register_default_handlers()
    with SessionLocal() as db:
        invoice = make_invoice(db, provider_id="provider-42")
        invoice_number = invoice.invoice_number

    with SessionLocal() as db:
        assert run_queue_once(db, queue_name="standard", worker_id="test") == 1
        job = db.query(JobQueue).one()
        assert job.status == "succeeded"

    assert len(calls) == 1
    call = calls[0]
    assert call["url"] == "https://hooks.example/provider"
    assert call["timeout"] == config_module.settings.NOTIFICATION_TIMEOUT_SECONDS
    body = json.loads(call["data"])
    assert body["event_type"] == "invoice_created"
    assert body["recipient"] == "provider-42"
    assert body["payload"]["invoice_number"] == invoice_number
    assert body["payload"]["platform_commission_amount"] == "200.00"

    timestamp = call["headers"]["X-Timestamp"]
    expected = hmac.new(
        b"notify-secret",
        f"{timestamp}.{call['data']}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    assert call["headers"]["X-Signature"] == expected
    clear_job_handlers()


def test_failed_notification_is_retried_without_touching_invoice(tmp_path, monkeypatch):
    monkeypatch.setattr(config_module.settings, "NOTIFICATION_CHANNEL", "webhook")
    monkeypatch.setattr(config_module.settings, "NOTIFICATION_WEBHOOK_URL", "https://hooks.example/provider")
    monkeypatch.setattr(
        webhook_sender_module.requests,
        "post",
        lambda *args, **kwargs: SimpleNamespace(status_code=500),
    )
    SessionLocal = _session(tmp_path)
    clear_job_handlers()
    register_default_handlers()
    with SessionLocal() as db:
        invoice_id = make_invoice(db).id

    with SessionLocal() as db:
        run_queue_once(db, queue_name="standard", worker_id="test")
        job = db.query(JobQueue).one()
        assert job.status == "queued"
        assert job.attempt_count == 1
        assert "status 500" in job.last_error
        assert job.run_at > job.last_attempt_at
        assert get_invoice(db, invoice_id).invoice_status == InvoiceStatusEnum.PENDING
    clear_job_handlers()


def test_overdue_sweep_job_runs_from_queue(tmp_path):
    SessionLocal = _session(tmp_path)
    clear_job_handlers()
    register_default_handlers()
    with SessionLocal() as db:
        invoice = make_invoice(db)
        invoice_id = invoice.id
        as_of = invoice.due_date + timedelta(hours=1)
        enqueue_job(db, job_type=OVERDUE_SWEEP_JOB, payload={"as_of": as_of.isoformat()})

    with SessionLocal() as db:
        assert run_queue_once(db, queue_name="bulk", worker_id="test") == 1
        assert get_invoice(db, invoice_id).invoice_status == InvoiceStatusEnum.OVERDUE
    clear_job_handlers()


def test_run_overdue_sweep_counts_moved_invoices(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        first = make_invoice(db)
        make_invoice(db)
        as_of = first.due_date + timedelta(days=1)
        assert run_overdue_sweep(db, as_of=as_of) == 2
        assert run_overdue_sweep(db, as_of=as_of) == 0
