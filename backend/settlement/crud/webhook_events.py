from __future__ import annotations

from sqlalchemy.orm import Session

from settlement.core.time import utcnow
from settlement.models.webhook_events import WebhookEvent


def get_event(db: Session, stripe_event_id: str) -> WebhookEvent | None:
    return db.query(WebhookEvent).filter(WebhookEvent.stripe_event_id == stripe_event_id).first()


def record_event(
    db: Session,
    *,
    stripe_event_id: str,
    event_type: str,
    payload: dict | None = None,
) -> WebhookEvent:
    # No commit: the ledger row shares a transaction with the dispatch.
    event = WebhookEvent(
        stripe_event_id=stripe_event_id,
        event_type=event_type,
        processed=False,
        payload_json=payload,
        first_seen_at=utcnow(),
    )
    db.add(event)
    db.flush()
    return event


def mark_event_processed(
    db: Session,
    event: WebhookEvent,
    *,
    outcome: str,
    invoice_id: int | None = None,
    error_message: str | None = None,
) -> WebhookEvent:
    event.processed = outcome != "deferred"
    event.outcome = outcome
    event.invoice_id = invoice_id
    event.error_message = error_message
    event.processed_at = utcnow()
    db.flush()
    return event
