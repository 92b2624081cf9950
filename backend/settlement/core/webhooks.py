"""
Stripe webhook reconciliation.

Stripe delivers at least once, possibly concurrently and possibly before
the invoice it refers to has been stored. The ledger row for the event id
is written in the same transaction as the invoice change it triggers, so
an event is either fully applied and recorded, or neither. A second
delivery finds the ledger row (or loses the insert race on the unique
constraint) and is acknowledged without touching the invoice.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import stripe
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from settlement.core.commission import from_minor_units
from settlement.core.config import settings
from settlement.core.db import unit_of_work
from settlement.core.errors import (
    GatewayNotConfigured,
    InvalidWebhookPayload,
    InvoiceNotFound,
    PaymentAmountMismatch,
    SignatureVerificationFailed,
)
from settlement.core.invoices import PaymentRecord, apply_failed_payment, apply_successful_payment
from settlement.core.logging import security_logger
from settlement.core.metrics import record_webhook_event
from settlement.core.queue import WEBHOOK_RECONCILE_JOB, enqueue_job
from settlement.core.tracing import trace_span
from settlement.crud.invoices import get_invoice
from settlement.crud.webhook_events import get_event, mark_event_processed, record_event


logger = logging.getLogger(__name__)

SUCCESS_EVENT_TYPES = {
    "payment_intent.succeeded",
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "payment_link.payment_succeeded",
}
FAILURE_EVENT_TYPES = {
    "payment_intent.payment_failed",
    "checkout.session.async_payment_failed",
}
COMMISSION_PAYMENT_TYPE = "commission_payment"

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
DEFERRED = "deferred"
CONFLICT = "conflict"
AMOUNT_MISMATCH = "amount_mismatch"


@dataclass
class WebhookOutcome:
    status: str
    event_id: str
    event_type: str
    invoice_id: int | None = None
    reason: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload = {"received": True, **asdict(self)}
        return {key: value for key, value in payload.items() if value is not None}


def verify_event(payload: bytes, signature: str | None, secret: str | None) -> dict[str, Any]:
    if not secret:
        raise GatewayNotConfigured("Stripe webhook secret is not configured")
    if not signature:
        security_logger.warning("webhook.signature_missing")
        raise SignatureVerificationFailed("Missing Stripe signature")
    try:
        stripe.Webhook.construct_event(payload, signature, secret)
    except ValueError as exc:
        raise InvalidWebhookPayload() from exc
    except stripe.SignatureVerificationError as exc:
        security_logger.warning("webhook.signature_invalid", extra={"reason": str(exc)})
        raise SignatureVerificationFailed() from exc

    # Signature checked against the raw bytes; work with plain dicts from here on.
    try:
        event = json.loads(payload)
    except ValueError as exc:
        raise InvalidWebhookPayload() from exc
    if not isinstance(event, dict) or not event.get("id") or not event.get("type"):
        raise InvalidWebhookPayload("Webhook event is missing an id or type")
    return event


def _data_object(event: dict[str, Any]) -> dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}


def _parse_invoice_id(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = int(str(value).strip())
    except ValueError:
        return None
    return parsed if parsed > 0 else None


def _amount(obj: dict[str, Any]) -> Decimal | None:
    for key in ("amount_received", "amount_total", "amount"):
        value = obj.get(key)
        if isinstance(value, int) and not isinstance(value, bool) and value > 0:
            return from_minor_units(value)
    return None


def _payment_method(obj: dict[str, Any]) -> str:
    types = obj.get("payment_method_types")
    if isinstance(types, list) and types:
        return str(types[0])
    return "stripe"


def _paid_at(obj: dict[str, Any]) -> datetime | None:
    created = obj.get("created")
    if isinstance(created, int) and created > 0:
        return datetime.fromtimestamp(created, tz=timezone.utc).replace(tzinfo=None)
    return None


def _failure_reason(obj: dict[str, Any]) -> str | None:
    error = obj.get("last_payment_error")
    if isinstance(error, dict):
        return error.get("message") or error.get("code")
    return None


def build_payment_record(event: dict[str, Any]) -> PaymentRecord:
    obj = _data_object(event)
    return PaymentRecord(
        payment_method=_payment_method(obj),
        amount=_amount(obj),
        payment_reference=obj.get("payment_intent") or obj.get("id"),
        webhook_event_id=event.get("id"),
        paid_at=_paid_at(obj),
        failure_reason=_failure_reason(obj),
    )


def _serialize_payment(payment: PaymentRecord) -> dict[str, Any]:
    return {
        "payment_method": payment.payment_method,
        "amount": str(payment.amount) if payment.amount is not None else None,
        "payment_reference": payment.payment_reference,
        "webhook_event_id": payment.webhook_event_id,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        "failure_reason": payment.failure_reason,
    }


def _deserialize_payment(data: dict[str, Any]) -> PaymentRecord:
    paid_at = data.get("paid_at")
    amount = data.get("amount")
    return PaymentRecord(
        payment_method=data.get("payment_method") or "stripe",
        amount=Decimal(amount) if amount is not None else None,
        payment_reference=data.get("payment_reference"),
        webhook_event_id=data.get("webhook_event_id"),
        paid_at=datetime.fromisoformat(paid_at) if paid_at else None,
        failure_reason=data.get("failure_reason"),
    )


def _ignore_reason(event_type: str, obj: dict[str, Any]) -> str | None:
    if event_type not in SUCCESS_EVENT_TYPES and event_type not in FAILURE_EVENT_TYPES:
        return "unhandled_event_type"
    metadata = obj.get("metadata") or {}
    if not isinstance(metadata, dict):
        return "missing_invoice_id"
    if metadata.get("type") not in (None, COMMISSION_PAYMENT_TYPE):
        return "not_a_commission_payment"
    if _parse_invoice_id(metadata.get("invoice_id")) is None:
        return "missing_invoice_id"
    if event_type == "checkout.session.completed" and obj.get("payment_status") not in (None, "paid"):
        # Delayed methods settle later via async_payment_succeeded.
        return "checkout_not_paid"
    return None


def _apply(db: Session, *, event_type: str, invoice_id: int, payment: PaymentRecord) -> str:
    if event_type in SUCCESS_EVENT_TYPES:
        try:
            result = apply_successful_payment(db, invoice_id, payment, commit=False)
        except PaymentAmountMismatch:
            # Acknowledged and kept in the ledger; the invoice stays payable.
            return AMOUNT_MISMATCH
    else:
        result = apply_failed_payment(db, invoice_id, payment, commit=False)
    return PROCESSED if result.changed else CONFLICT


def _dispatch(db: Session, ledger, event: dict[str, Any]) -> WebhookOutcome:
    event_id = event["id"]
    event_type = event["type"]
    obj = _data_object(event)

    reason = _ignore_reason(event_type, obj)
    if reason is not None:
        mark_event_processed(db, ledger, outcome=IGNORED, error_message=reason)
        return WebhookOutcome(status=IGNORED, event_id=event_id, event_type=event_type, reason=reason)

    invoice_id = _parse_invoice_id(obj["metadata"]["invoice_id"])
    payment = build_payment_record(event)

    if get_invoice(db, invoice_id) is None:
        enqueue_job(
            db,
            job_type=WEBHOOK_RECONCILE_JOB,
            payload={
                "event_id": event_id,
                "event_type": event_type,
                "invoice_id": invoice_id,
                "payment": _serialize_payment(payment),
            },
            max_attempts=settings.WEBHOOK_RECONCILE_MAX_ATTEMPTS,
            commit=False,
        )
        mark_event_processed(
            db,
            ledger,
            outcome=DEFERRED,
            invoice_id=invoice_id,
            error_message="invoice_not_found",
        )
        return WebhookOutcome(
            status=DEFERRED,
            event_id=event_id,
            event_type=event_type,
            invoice_id=invoice_id,
            reason="invoice_not_found",
        )

    status = _apply(db, event_type=event_type, invoice_id=invoice_id, payment=payment)
    reason = "amount_mismatch" if status == AMOUNT_MISMATCH else None
    mark_event_processed(db, ledger, outcome=status, invoice_id=invoice_id, error_message=reason)
    return WebhookOutcome(
        status=status,
        event_id=event_id,
        event_type=event_type,
        invoice_id=invoice_id,
        reason=reason,
    )


def process_event(db: Session, event: dict[str, Any]) -> WebhookOutcome:
    """Dedupe, record and apply one verified event in a single transaction."""
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise InvalidWebhookPayload("Webhook event is missing an id or type")

    try:
        with unit_of_work(db):
            if get_event(db, event_id) is not None:
                return WebhookOutcome(status=DUPLICATE, event_id=event_id, event_type=event_type)
            ledger = record_event(db, stripe_event_id=event_id, event_type=event_type, payload=event)
            outcome = _dispatch(db, ledger, event)
    except IntegrityError:
        # A concurrent delivery of the same event committed first.
        if get_event(db, event_id) is None:
            raise
        return WebhookOutcome(status=DUPLICATE, event_id=event_id, event_type=event_type)
    return outcome


def handle_webhook(db: Session, payload: bytes, signature: str | None) -> WebhookOutcome:
    try:
        event = verify_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except SignatureVerificationFailed:
        record_webhook_event(None, "rejected")
        raise
    with trace_span("webhook.process", event_id=event["id"], event_type=event["type"]):
        outcome = process_event(db, event)
    record_webhook_event(outcome.event_type, outcome.status)
    logger.info(
        "webhook.%s",
        outcome.status,
        extra={
            "event_id": outcome.event_id,
            "event_type": outcome.event_type,
            "invoice_id": outcome.invoice_id,
            "reason": outcome.reason,
        },
    )
    return outcome


def reconcile_deferred_event(db: Session, payload: dict[str, Any]) -> str:
    """Queue handler for events that arrived before their invoice.

    Raising ``InvoiceNotFound`` hands the job back to the queue, which
    retries with backoff and dead-letters it after the configured attempts.
    """
    invoice_id = _parse_invoice_id(payload.get("invoice_id"))
    event_id = payload.get("event_id")
    event_type = payload.get("event_type") or ""
    if invoice_id is None or not event_id:
        raise InvalidWebhookPayload("Deferred webhook job is missing its invoice or event id")
    if get_invoice(db, invoice_id) is None:
        raise InvoiceNotFound(invoice_id)

    payment = _deserialize_payment(payload.get("payment") or {})
    with unit_of_work(db):
        status = _apply(db, event_type=event_type, invoice_id=invoice_id, payment=payment)
        ledger = get_event(db, event_id)
        if ledger is not None:
            mark_event_processed(db, ledger, outcome=status, invoice_id=invoice_id)
    record_webhook_event(event_type, f"reconciled_{status}")
    logger.info(
        "webhook.reconciled",
        extra={"event_id": event_id, "event_type": event_type, "invoice_id": invoice_id, "outcome": status},
    )
    return status
