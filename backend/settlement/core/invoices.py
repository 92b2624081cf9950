"""
Invoice lifecycle: creation from a booking, status transitions and the
read side used by dashboards.

State machine::

    pending -> paid        verified successful payment
    pending -> overdue     failed payment or due date passed
    overdue -> paid        late payment is still accepted
    pending|overdue -> cancelled   operator action only

``paid`` and ``cancelled`` are terminal. Every transition is a
conditional UPDATE on the current status, so two concurrent webhooks for
the same invoice cannot both apply.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core.commission import CommissionBreakdown, from_minor_units, to_minor_units
from settlement.core.config import settings
from settlement.core.db import unit_of_work
from settlement.core.errors import (
    DuplicateInvoice,
    InvalidAmount,
    InvalidInvoiceTransition,
    InvoiceNotFound,
    PaymentAmountMismatch,
)
from settlement.core.logging import security_logger
from settlement.core.metrics import (
    record_invoice_created,
    record_invoice_transition,
    record_transition_conflict,
)
from settlement.core.time import normalize_dt, utcnow
from settlement.crud.establishment_commissions import create_commission_credit
from settlement.crud.invoices import (
    add_invoice,
    create_payment,
    get_invoice,
    get_invoice_by_booking,
    list_invoices,
    mark_overdue_before,
    transition_invoice_status,
)
from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum
from settlement.models.invoices import CommissionInvoice
from settlement.notifications.dispatcher import (
    INVOICE_CREATED,
    INVOICE_OVERDUE,
    PAYMENT_FAILED,
    PAYMENT_RECEIVED,
    enqueue_invoice_notification,
)


logger = logging.getLogger(__name__)

# No 0/O or 1/I so numbers survive being read out over the phone.
INVOICE_NUMBER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
INVOICE_NUMBER_LENGTH = 8
INVOICE_NUMBER_ATTEMPTS = 5

PAYABLE_STATUSES = (InvoiceStatusEnum.PENDING, InvoiceStatusEnum.OVERDUE)
FAILABLE_STATUSES = (InvoiceStatusEnum.PENDING,)
CANCELLABLE_STATUSES = (InvoiceStatusEnum.PENDING, InvoiceStatusEnum.OVERDUE)


@dataclass
class Booking:
    booking_id: str
    provider_id: str
    total_amount: Any
    activity_id: str | None = None
    customer_id: str | None = None
    created_at: datetime | None = None
    visit_id: str | None = None
    commission_tier: str | None = None


@dataclass
class PaymentRecord:
    payment_method: str
    amount: Decimal | None = None
    payment_reference: str | None = None
    webhook_event_id: str | None = None
    paid_at: datetime | None = None
    failure_reason: str | None = None


@dataclass
class TransitionResult:
    invoice: CommissionInvoice
    changed: bool


def generate_invoice_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    suffix = "".join(secrets.choice(INVOICE_NUMBER_ALPHABET) for _ in range(INVOICE_NUMBER_LENGTH))
    return f"{settings.INVOICE_NUMBER_PREFIX}-{now:%Y%m}-{suffix}"


def _status_value(status) -> str:
    return getattr(status, "value", status)


def _build_invoice(
    booking: Booking,
    breakdown: CommissionBreakdown,
    *,
    now: datetime,
    referral_visit_id: str | None,
) -> CommissionInvoice:
    return CommissionInvoice(
        invoice_number=generate_invoice_number(now),
        booking_id=booking.booking_id,
        provider_id=booking.provider_id,
        activity_id=booking.activity_id,
        customer_id=booking.customer_id,
        booking_created_at=normalize_dt(booking.created_at),
        total_booking_amount=breakdown.booking_total,
        platform_commission_rate=breakdown.rates.platform_rate,
        platform_commission_amount=breakdown.platform_fee,
        partner_commission_rate=breakdown.rates.partner_rate if breakdown.has_referral else None,
        partner_commission_amount=breakdown.referral_commission if breakdown.has_referral else None,
        platform_net_amount=breakdown.platform_net,
        provider_net_amount=breakdown.provider_amount,
        is_referral_booking=breakdown.has_referral,
        establishment_id=breakdown.establishment_id,
        referral_visit_id=referral_visit_id if breakdown.has_referral else None,
        commission_tier=booking.commission_tier,
        invoice_status=InvoiceStatusEnum.PENDING,
        due_date=now + timedelta(days=settings.INVOICE_DUE_DAYS),
    )


def create_invoice(
    db: Session,
    *,
    booking: Booking,
    breakdown: CommissionBreakdown,
    referral_visit_id: str | None = None,
    notify: bool = True,
) -> CommissionInvoice:
    """Persist a pending invoice for a booking, exactly once.

    The unique constraint on ``booking_id`` is the only guard: a second
    call for the same booking (or a concurrent one) fails on insert and
    raises ``DuplicateInvoice`` carrying the invoice that won. Must be
    called with no other pending writes in the session, since a conflict
    rolls the session back.
    """
    if from_minor_units(to_minor_units(booking.total_amount)) != breakdown.booking_total:
        raise InvalidAmount("Commission breakdown does not match the booking total")

    last_error: IntegrityError | None = None
    for _attempt in range(INVOICE_NUMBER_ATTEMPTS):
        now = utcnow()
        invoice = _build_invoice(booking, breakdown, now=now, referral_visit_id=referral_visit_id)
        try:
            with unit_of_work(db):
                add_invoice(db, invoice)
                if notify:
                    enqueue_invoice_notification(db, invoice=invoice, trigger_type=INVOICE_CREATED)
        except IntegrityError as exc:
            existing = get_invoice_by_booking(db, booking.booking_id)
            if existing is not None:
                logger.info(
                    "invoice.duplicate",
                    extra={"booking_id": booking.booking_id, "invoice_id": existing.id},
                )
                raise DuplicateInvoice(booking.booking_id, existing) from exc
            # Invoice number collision; draw a new one.
            last_error = exc
            continue

        db.refresh(invoice)
        record_invoice_created(referral=invoice.is_referral_booking)
        logger.info(
            "invoice.created",
            extra={
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "booking_id": invoice.booking_id,
                "is_referral_booking": invoice.is_referral_booking,
            },
        )
        return invoice
    raise RuntimeError("Could not allocate a unique invoice number") from last_error


def _transition(
    db: Session,
    *,
    invoice_id: int,
    from_statuses: tuple[InvoiceStatusEnum, ...],
    to_status: InvoiceStatusEnum,
    values: dict[str, Any] | None = None,
) -> TransitionResult:
    invoice = get_invoice(db, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    previous = invoice.invoice_status
    changed = transition_invoice_status(
        db,
        invoice_id=invoice_id,
        from_statuses=from_statuses,
        to_status=to_status,
        values=values,
    )
    # The UPDATE bypassed the identity map; reload what the row now holds.
    db.refresh(invoice)
    if not changed:
        record_transition_conflict(invoice.invoice_status, to_status)
        logger.warning(
            "invoice.transition_conflict",
            extra={
                "invoice_id": invoice_id,
                "current_status": _status_value(invoice.invoice_status),
                "to_status": to_status.value,
            },
        )
        return TransitionResult(invoice=invoice, changed=False)
    record_invoice_transition(previous, to_status)
    logger.info(
        "invoice.transition",
        extra={
            "invoice_id": invoice_id,
            "from_status": _status_value(previous),
            "to_status": to_status.value,
        },
    )
    return TransitionResult(invoice=invoice, changed=True)


def _check_payment_amount(db: Session, invoice_id: int, payment: PaymentRecord) -> None:
    """A settling payment must carry exactly the platform commission."""
    if payment.amount is None:
        return
    invoice = get_invoice(db, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    if invoice.invoice_status not in PAYABLE_STATUSES:
        return
    expected = to_minor_units(invoice.platform_commission_amount)
    if Decimal(payment.amount) * 100 == expected:
        return
    record_transition_conflict(invoice.invoice_status, InvoiceStatusEnum.PAID)
    logger.warning(
        "invoice.payment_amount_mismatch",
        extra={
            "invoice_id": invoice_id,
            "expected_amount": str(invoice.platform_commission_amount),
            "received_amount": str(payment.amount),
            "webhook_event_id": payment.webhook_event_id,
        },
    )
    raise PaymentAmountMismatch(invoice_id, invoice.platform_commission_amount, payment.amount)


def apply_successful_payment(
    db: Session,
    invoice_id: int,
    payment: PaymentRecord,
    *,
    commit: bool = True,
) -> TransitionResult:
    with unit_of_work(db, commit=commit):
        _check_payment_amount(db, invoice_id, payment)
        paid_at = normalize_dt(payment.paid_at) or utcnow()
        result = _transition(
            db,
            invoice_id=invoice_id,
            from_statuses=PAYABLE_STATUSES,
            to_status=InvoiceStatusEnum.PAID,
            values={
                "paid_at": paid_at,
                "payment_method": payment.payment_method,
                "payment_reference": payment.payment_reference,
                "status_reason": None,
            },
        )
        if not result.changed:
            return result
        invoice = result.invoice
        create_payment(
            db,
            invoice_id=invoice.id,
            amount=payment.amount if payment.amount is not None else invoice.platform_commission_amount,
            payment_method=payment.payment_method,
            payment_status=PaymentStatusEnum.COMPLETED,
            payment_reference=payment.payment_reference,
            webhook_event_id=payment.webhook_event_id,
            paid_at=paid_at,
        )
        if invoice.is_referral_booking and invoice.establishment_id:
            create_commission_credit(db, invoice=invoice)
        enqueue_invoice_notification(db, invoice=invoice, trigger_type=PAYMENT_RECEIVED)
    return result


def mark_paid(
    db: Session,
    invoice_id: int,
    payment: PaymentRecord,
    *,
    commit: bool = True,
) -> CommissionInvoice:
    """Settle an invoice. From a terminal state this is a logged no-op."""
    return apply_successful_payment(db, invoice_id, payment, commit=commit).invoice


def apply_failed_payment(
    db: Session,
    invoice_id: int,
    payment: PaymentRecord,
    *,
    commit: bool = True,
) -> TransitionResult:
    with unit_of_work(db, commit=commit):
        result = _transition(
            db,
            invoice_id=invoice_id,
            from_statuses=FAILABLE_STATUSES,
            to_status=InvoiceStatusEnum.OVERDUE,
            values={"status_reason": "payment_failed"},
        )
        if not result.changed:
            return result
        invoice = result.invoice
        create_payment(
            db,
            invoice_id=invoice.id,
            amount=payment.amount if payment.amount is not None else invoice.platform_commission_amount,
            payment_method=payment.payment_method,
            payment_status=PaymentStatusEnum.FAILED,
            payment_reference=payment.payment_reference,
            webhook_event_id=payment.webhook_event_id,
            failure_reason=payment.failure_reason,
        )
        enqueue_invoice_notification(db, invoice=invoice, trigger_type=PAYMENT_FAILED)
    return result


def mark_failed(
    db: Session,
    invoice_id: int,
    payment: PaymentRecord,
    *,
    commit: bool = True,
) -> CommissionInvoice:
    return apply_failed_payment(db, invoice_id, payment, commit=commit).invoice


def mark_paid_manually(
    db: Session,
    invoice_id: int,
    *,
    operator: str,
    payment_method: str = "manual",
    payment_reference: str | None = None,
    amount: Decimal | None = None,
) -> CommissionInvoice:
    """Operator override for payments received outside the gateway.

    An explicit ``amount`` must be a positive whole-cent value equal to the
    invoice's platform commission; omitting it records the commission.
    """
    if amount is not None:
        try:
            amount = from_minor_units(to_minor_units(amount))
        except InvalidAmount as exc:
            raise InvalidAmount("Payment amount must be a positive amount") from exc
    result = apply_successful_payment(
        db,
        invoice_id,
        PaymentRecord(
            payment_method=payment_method,
            amount=amount,
            payment_reference=payment_reference,
        ),
    )
    if not result.changed:
        raise InvalidInvoiceTransition(
            invoice_id,
            _status_value(result.invoice.invoice_status),
            InvoiceStatusEnum.PAID.value,
        )
    security_logger.info(
        "invoice.manual_payment",
        extra={
            "invoice_id": invoice_id,
            "operator": operator,
            "payment_method": payment_method,
            "payment_reference": payment_reference,
        },
    )
    return result.invoice


def cancel_invoice(
    db: Session,
    invoice_id: int,
    *,
    operator: str,
    reason: str | None = None,
) -> CommissionInvoice:
    with unit_of_work(db):
        result = _transition(
            db,
            invoice_id=invoice_id,
            from_statuses=CANCELLABLE_STATUSES,
            to_status=InvoiceStatusEnum.CANCELLED,
            values={"status_reason": reason or "cancelled_by_operator"},
        )
    if not result.changed:
        raise InvalidInvoiceTransition(
            invoice_id,
            _status_value(result.invoice.invoice_status),
            InvoiceStatusEnum.CANCELLED.value,
        )
    security_logger.info(
        "invoice.cancelled",
        extra={"invoice_id": invoice_id, "operator": operator, "reason": reason},
    )
    return result.invoice


def sweep_overdue(db: Session, as_of: datetime | None = None) -> int:
    """Move pending invoices past their due date to overdue.

    Re-running with the same ``as_of`` finds nothing left in ``pending``
    and changes no rows.
    """
    as_of = normalize_dt(as_of) or utcnow()
    with unit_of_work(db):
        moved = mark_overdue_before(db, as_of=as_of)
        for invoice_id in moved:
            invoice = get_invoice(db, invoice_id)
            db.refresh(invoice)
            record_invoice_transition(InvoiceStatusEnum.PENDING, InvoiceStatusEnum.OVERDUE)
            enqueue_invoice_notification(db, invoice=invoice, trigger_type=INVOICE_OVERDUE)
    logger.info("invoice.sweep_overdue", extra={"as_of": as_of.isoformat(), "moved": len(moved)})
    return len(moved)


def get_invoices(
    db: Session,
    *,
    status: InvoiceStatusEnum | str | None = None,
    provider_id: str | None = None,
    establishment_id: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[CommissionInvoice], int]:
    if isinstance(status, str):
        status = InvoiceStatusEnum(status)
    return list_invoices(
        db,
        status=status,
        provider_id=provider_id,
        establishment_id=establishment_id,
        created_from=normalize_dt(date_from),
        created_to=normalize_dt(date_to),
        limit=max(1, min(limit, 500)),
        offset=max(0, offset),
    )


def get_invoice_or_404(db: Session, invoice_id: int) -> CommissionInvoice:
    invoice = get_invoice(db, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(invoice_id)
    return invoice
