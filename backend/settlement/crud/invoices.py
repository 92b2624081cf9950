from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement.core.time import utcnow
from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum
from settlement.models.invoices import CommissionInvoice, CommissionPayment


def add_invoice(db: Session, invoice: CommissionInvoice) -> CommissionInvoice:
    # Flush so the unique constraints fire inside the caller's transaction.
    db.add(invoice)
    db.flush()
    return invoice


def get_invoice(db: Session, invoice_id: int) -> CommissionInvoice | None:
    return db.query(CommissionInvoice).filter(CommissionInvoice.id == invoice_id).first()


def get_invoice_by_booking(db: Session, booking_id: str) -> CommissionInvoice | None:
    return db.query(CommissionInvoice).filter(CommissionInvoice.booking_id == booking_id).first()


def get_invoice_by_number(db: Session, invoice_number: str) -> CommissionInvoice | None:
    return (
        db.query(CommissionInvoice)
        .filter(CommissionInvoice.invoice_number == invoice_number)
        .first()
    )


def transition_invoice_status(
    db: Session,
    *,
    invoice_id: int,
    from_statuses: Iterable[InvoiceStatusEnum],
    to_status: InvoiceStatusEnum,
    values: dict | None = None,
) -> bool:
    """Conditional UPDATE: only rows still in one of ``from_statuses`` move.

    Returns True when this call performed the transition. A concurrent
    writer that got there first leaves rowcount at zero.
    """
    updates = {
        CommissionInvoice.invoice_status: to_status,
        CommissionInvoice.updated_at: utcnow(),
    }
    for key, value in (values or {}).items():
        updates[getattr(CommissionInvoice, key)] = value
    rowcount = (
        db.query(CommissionInvoice)
        .filter(
            CommissionInvoice.id == invoice_id,
            CommissionInvoice.invoice_status.in_(list(from_statuses)),
        )
        .update(updates, synchronize_session=False)
    )
    return rowcount == 1


def mark_overdue_before(db: Session, *, as_of: datetime) -> list[int]:
    candidates = [
        row.id
        for row in db.query(CommissionInvoice.id)
        .filter(
            CommissionInvoice.invoice_status == InvoiceStatusEnum.PENDING,
            CommissionInvoice.due_date < as_of,
        )
        .all()
    ]
    moved: list[int] = []
    for invoice_id in candidates:
        if transition_invoice_status(
            db,
            invoice_id=invoice_id,
            from_statuses=[InvoiceStatusEnum.PENDING],
            to_status=InvoiceStatusEnum.OVERDUE,
            values={"status_reason": "due_date_passed"},
        ):
            moved.append(invoice_id)
    return moved


def set_payment_link(
    db: Session,
    invoice: CommissionInvoice,
    *,
    link_id: str,
    link_url: str,
) -> CommissionInvoice:
    invoice.stripe_payment_link_id = link_id
    invoice.stripe_payment_link_url = link_url
    db.commit()
    db.refresh(invoice)
    return invoice


def create_payment(
    db: Session,
    *,
    invoice_id: int,
    amount: Decimal,
    payment_method: str,
    payment_status: PaymentStatusEnum,
    payment_reference: str | None = None,
    webhook_event_id: str | None = None,
    failure_reason: str | None = None,
    paid_at: datetime | None = None,
) -> CommissionPayment:
    payment = CommissionPayment(
        invoice_id=invoice_id,
        amount=amount,
        payment_method=payment_method,
        payment_status=payment_status,
        payment_reference=payment_reference,
        webhook_event_id=webhook_event_id,
        failure_reason=failure_reason,
        paid_at=paid_at,
    )
    db.add(payment)
    db.flush()
    return payment


def list_payments_for_invoice(db: Session, invoice_id: int) -> list[CommissionPayment]:
    return (
        db.query(CommissionPayment)
        .filter(CommissionPayment.invoice_id == invoice_id)
        .order_by(CommissionPayment.id.asc())
        .all()
    )


def list_invoices(
    db: Session,
    *,
    status: InvoiceStatusEnum | None = None,
    provider_id: str | None = None,
    establishment_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CommissionInvoice], int]:
    query = db.query(CommissionInvoice)
    if status is not None:
        query = query.filter(CommissionInvoice.invoice_status == status)
    if provider_id:
        query = query.filter(CommissionInvoice.provider_id == provider_id)
    if establishment_id:
        query = query.filter(CommissionInvoice.establishment_id == establishment_id)
    if created_from is not None:
        query = query.filter(CommissionInvoice.created_at >= created_from)
    if created_to is not None:
        query = query.filter(CommissionInvoice.created_at < created_to)
    total = query.count()
    items = (
        query.order_by(CommissionInvoice.created_at.desc(), CommissionInvoice.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def list_referral_invoices_between(
    db: Session,
    *,
    start: datetime,
    end: datetime,
) -> list[CommissionInvoice]:
    return (
        db.query(CommissionInvoice)
        .filter(
            CommissionInvoice.is_referral_booking.is_(True),
            CommissionInvoice.establishment_id.isnot(None),
            CommissionInvoice.invoice_status != InvoiceStatusEnum.CANCELLED,
            CommissionInvoice.created_at >= start,
            CommissionInvoice.created_at < end,
        )
        .order_by(CommissionInvoice.created_at.asc(), CommissionInvoice.id.asc())
        .all()
    )


def _aggregate_columns():
    return (
        func.count(CommissionInvoice.id),
        func.coalesce(func.sum(CommissionInvoice.total_booking_amount), 0),
        func.coalesce(func.sum(CommissionInvoice.platform_commission_amount), 0),
        func.coalesce(func.sum(CommissionInvoice.partner_commission_amount), 0),
    )


def _filter_created(query, created_from: datetime | None, created_to: datetime | None):
    if created_from is not None:
        query = query.filter(CommissionInvoice.created_at >= created_from)
    if created_to is not None:
        query = query.filter(CommissionInvoice.created_at < created_to)
    return query


def sum_invoices_by_status(
    db: Session,
    *,
    provider_id: str | None = None,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[tuple]:
    """(status, count, booking total, platform commission, partner commission) rows."""
    query = db.query(CommissionInvoice.invoice_status, *_aggregate_columns())
    if provider_id:
        query = query.filter(CommissionInvoice.provider_id == provider_id)
    query = _filter_created(query, created_from, created_to)
    return query.group_by(CommissionInvoice.invoice_status).all()


def sum_invoices_by_provider(
    db: Session,
    *,
    created_from: datetime | None = None,
    created_to: datetime | None = None,
) -> list[tuple]:
    """Same totals split by (provider_id, status)."""
    query = db.query(CommissionInvoice.provider_id, CommissionInvoice.invoice_status, *_aggregate_columns())
    query = _filter_created(query, created_from, created_to)
    return query.group_by(CommissionInvoice.provider_id, CommissionInvoice.invoice_status).all()
