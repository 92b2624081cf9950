from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.metrics import record_notification_delivery
from settlement.core.queue import NOTIFICATION_JOB, enqueue_job
from settlement.core.tracing import trace_span
from settlement.models.invoices import CommissionInvoice
from settlement.notifications.senders import get_sender


logger = logging.getLogger(__name__)

INVOICE_CREATED = "invoice_created"
PAYMENT_RECEIVED = "payment_received"
PAYMENT_FAILED = "payment_failed"
INVOICE_OVERDUE = "invoice_overdue"

TRIGGER_TYPES = {INVOICE_CREATED, PAYMENT_RECEIVED, PAYMENT_FAILED, INVOICE_OVERDUE}


def _money(value) -> str | None:
    return None if value is None else str(value)


def build_invoice_payload(invoice: CommissionInvoice) -> dict[str, Any]:
    status = invoice.invoice_status
    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "booking_id": invoice.booking_id,
        "provider_id": invoice.provider_id,
        "status": getattr(status, "value", status),
        "total_booking_amount": _money(invoice.total_booking_amount),
        "platform_commission_amount": _money(invoice.platform_commission_amount),
        "provider_net_amount": _money(invoice.provider_net_amount),
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "paid_at": invoice.paid_at.isoformat() if invoice.paid_at else None,
        "payment_link_url": invoice.stripe_payment_link_url,
    }


def enqueue_invoice_notification(
    db: Session,
    *,
    invoice: CommissionInvoice,
    trigger_type: str,
    commit: bool = False,
):
    """Queue a provider notice alongside the state change that caused it."""
    if trigger_type not in TRIGGER_TYPES:
        raise ValueError(f"Unknown notification trigger: {trigger_type}")
    return enqueue_job(
        db,
        job_type=NOTIFICATION_JOB,
        payload={
            "trigger_type": trigger_type,
            "recipient": invoice.provider_id,
            "invoice": build_invoice_payload(invoice),
        },
        commit=commit,
    )


def send_notification(_db: Session, payload: dict[str, Any]) -> None:
    channel_type = settings.NOTIFICATION_CHANNEL
    trigger_type = payload.get("trigger_type")
    sender = get_sender(channel_type)
    if sender is None:
        raise ValueError(f"No sender for notification channel {channel_type}")
    try:
        with trace_span(
            "notification.send",
            channel_type=channel_type,
            trigger_type=trigger_type,
        ):
            sender.send(
                payload=payload.get("invoice") or {},
                event_type=trigger_type,
                recipient=payload.get("recipient"),
            )
    except Exception:
        record_notification_delivery(channel_type=channel_type, trigger_type=trigger_type, success=False)
        raise
    record_notification_delivery(channel_type=channel_type, trigger_type=trigger_type, success=True)
