import os
from datetime import timedelta
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from factories import make_booking, make_invoice, setup_db  # noqa: E402
from settlement.core.commission import compute_breakdown  # noqa: E402
from settlement.core.errors import (  # noqa: E402
    DuplicateInvoice,
    InvalidAmount,
    InvalidInvoiceTransition,
    InvoiceNotFound,
)
from settlement.core.invoices import (  # noqa: E402
    PaymentRecord,
    cancel_invoice,
    create_invoice,
    generate_invoice_number,
    get_invoices,
    mark_failed,
    mark_paid,
    mark_paid_manually,
    sweep_overdue,
)
from settlement.core.time import utcnow  # noqa: E402
from settlement.crud.establishment_commissions import get_credit_for_invoice  # noqa: E402
from settlement.crud.invoices import get_invoice_by_number, list_payments_for_invoice  # noqa: E402
from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum  # noqa: E402
from settlement.models.job_queue import JobQueue  # noqa: E402


def _session(tmp_path):
    return setup_db(f"sqlite:///{tmp_path / 'invoices.db'}")


def _notification_triggers(db, invoice_id):
    jobs = (
        db.query(JobQueue)
        .filter(JobQueue.job_type == "notification_send")
        .order_by(JobQueue.id.asc())
        .all()
    )
    return [
        job.payload_json["trigger_type"]
        for job in jobs
        if job.payload_json["invoice"]["invoice_id"] == invoice_id
    ]


def test_invoice_number_format():
    number = generate_invoice_number()
    prefix, period, suffix = number.split("-")
    assert prefix == "INV"
    assert period == f"{utcnow():%Y%m}"
    assert len(suffix) == 8
    assert not set(suffix) & {"0", "O", "1", "I"}


def test_create_invoice_persists_pending_with_frozen_amounts(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, total_amount="1000.00", establishment_id="hotel-1")
        assert invoice.invoice_status == InvoiceStatusEnum.PENDING
        assert invoice.platform_commission_amount == Decimal("200.00")
        assert invoice.partner_commission_amount == Decimal("100.00")
        assert invoice.partner_commission_rate == Decimal("10.00")
        assert invoice.platform_net_amount == Decimal("100.00")
        assert invoice.provider_net_amount == Decimal("800.00")
        assert invoice.is_referral_booking is True
        assert invoice.establishment_id == "hotel-1"
        assert invoice.referral_visit_id is not None
        assert invoice.due_date > invoice.created_at
        assert _notification_triggers(db, invoice.id) == ["invoice_created"]
        assert get_invoice_by_number(db, invoice.invoice_number).id == invoice.id


def test_create_invoice_twice_for_same_booking_is_rejected(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        booking = make_booking(booking_id="bk-dup")
        breakdown = compute_breakdown(booking.total_amount)
        first = create_invoice(db, booking=booking, breakdown=breakdown)
        with pytest.raises(DuplicateInvoice) as excinfo:
            create_invoice(db, booking=booking, breakdown=breakdown)
        assert excinfo.value.invoice.id == first.id
        total = get_invoices(db)[1]
        assert total == 1


def test_create_invoice_rejects_mismatched_breakdown(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        booking = make_booking(total_amount="500")
        with pytest.raises(InvalidAmount):
            create_invoice(db, booking=booking, breakdown=compute_breakdown("600"))


def test_mark_paid_records_payment_and_establishment_credit(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, establishment_id="hotel-1")
        paid = mark_paid(
            db,
            invoice.id,
            PaymentRecord(payment_method="card", payment_reference="pi_1", webhook_event_id="evt_1"),
        )
        assert paid.invoice_status == InvoiceStatusEnum.PAID
        assert paid.paid_at is not None
        assert paid.payment_reference == "pi_1"

        payments = list_payments_for_invoice(db, invoice.id)
        assert len(payments) == 1
        assert payments[0].payment_status == PaymentStatusEnum.COMPLETED
        assert payments[0].amount == Decimal("200.00")

        credit = get_credit_for_invoice(db, invoice.id)
        assert credit is not None
        assert credit.establishment_id == "hotel-1"
        assert credit.commission_amount == Decimal("100.00")
        assert _notification_triggers(db, invoice.id) == ["invoice_created", "payment_received"]


def test_mark_paid_without_referral_writes_no_credit(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        mark_paid(db, invoice.id, PaymentRecord(payment_method="card"))
        assert get_credit_for_invoice(db, invoice.id) is None


def test_mark_paid_from_terminal_state_is_a_noop(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, establishment_id="hotel-1")
        mark_paid(db, invoice.id, PaymentRecord(payment_method="card"))
        again = mark_paid(db, invoice.id, PaymentRecord(payment_method="card"))
        assert again.invoice_status == InvoiceStatusEnum.PAID
        assert len(list_payments_for_invoice(db, invoice.id)) == 1

        cancelled = make_invoice(db)
        cancel_invoice(db, cancelled.id, operator="ops")
        still = mark_paid(db, cancelled.id, PaymentRecord(payment_method="card"))
        assert still.invoice_status == InvoiceStatusEnum.CANCELLED
        assert list_payments_for_invoice(db, cancelled.id) == []


def test_mark_failed_moves_pending_to_overdue_then_late_payment_is_accepted(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        failed = mark_failed(
            db,
            invoice.id,
            PaymentRecord(payment_method="card", failure_reason="card_declined"),
        )
        assert failed.invoice_status == InvoiceStatusEnum.OVERDUE
        assert failed.status_reason == "payment_failed"

        # A second failure is a no-op from overdue.
        mark_failed(db, invoice.id, PaymentRecord(payment_method="card"))
        payments = list_payments_for_invoice(db, invoice.id)
        assert [p.payment_status for p in payments] == [PaymentStatusEnum.FAILED]
        assert payments[0].failure_reason == "card_declined"

        paid = mark_paid(db, invoice.id, PaymentRecord(payment_method="card"))
        assert paid.invoice_status == InvoiceStatusEnum.PAID
        statuses = [p.payment_status for p in list_payments_for_invoice(db, invoice.id)]
        assert statuses == [PaymentStatusEnum.FAILED, PaymentStatusEnum.COMPLETED]


def test_transitions_on_missing_invoice_raise(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        with pytest.raises(InvoiceNotFound):
            mark_paid(db, 999, PaymentRecord(payment_method="card"))
        with pytest.raises(InvoiceNotFound):
            cancel_invoice(db, 999, operator="ops")


def test_sweep_overdue_is_idempotent(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        due = make_invoice(db)
        not_due = make_invoice(db)
        paid = make_invoice(db)
        mark_paid(db, paid.id, PaymentRecord(payment_method="card"))

        as_of = due.due_date + timedelta(seconds=1)
        not_due.due_date = as_of + timedelta(days=5)
        db.commit()

        assert sweep_overdue(db, as_of) == 1
        assert sweep_overdue(db, as_of) == 0

        db.refresh(due)
        db.refresh(not_due)
        db.refresh(paid)
        assert due.invoice_status == InvoiceStatusEnum.OVERDUE
        assert due.status_reason == "due_date_passed"
        assert not_due.invoice_status == InvoiceStatusEnum.PENDING
        assert paid.invoice_status == InvoiceStatusEnum.PAID
        assert _notification_triggers(db, due.id) == ["invoice_created", "invoice_overdue"]


def test_manual_override_and_cancel_from_terminal_states_raise(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        paid = mark_paid_manually(db, invoice.id, operator="ops", payment_reference="bank-123")
        assert paid.invoice_status == InvoiceStatusEnum.PAID
        assert paid.payment_method == "manual"

        with pytest.raises(InvalidInvoiceTransition) as excinfo:
            mark_paid_manually(db, invoice.id, operator="ops")
        assert excinfo.value.to_payload() == {
            "code": "invalid_invoice_transition",
            "message": "Could not update invoice",
        }
        with pytest.raises(InvalidInvoiceTransition):
            cancel_invoice(db, invoice.id, operator="ops")


def test_cancel_from_overdue(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db)
        mark_failed(db, invoice.id, PaymentRecord(payment_method="card"))
        cancelled = cancel_invoice(db, invoice.id, operator="ops", reason="duplicate booking")
        assert cancelled.invoice_status == InvoiceStatusEnum.CANCELLED
        assert cancelled.status_reason == "duplicate booking"


def test_get_invoices_filters_and_paginates(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        for _ in range(3):
            make_invoice(db, provider_id="provider-a")
        other = make_invoice(db, provider_id="provider-b", establishment_id="hotel-9")
        mark_paid(db, other.id, PaymentRecord(payment_method="card"))

        items, total = get_invoices(db, provider_id="provider-a", limit=2)
        assert total == 3
        assert len(items) == 2

        items, total = get_invoices(db, status="paid")
        assert total == 1
        assert items[0].id == other.id

        items, total = get_invoices(db, establishment_id="hotel-9")
        assert [item.id for item in items] == [other.id]

        _, total = get_invoices(db, date_from=utcnow() + timedelta(days=1))
        assert total == 0
