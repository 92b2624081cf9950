from sqlalchemy import Boolean, Column, DateTime, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB

from settlement.core.db import Base
from settlement.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class WebhookEvent(Base):
    """Dedup ledger: one row per gateway event id ever seen."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("stripe_event_id", name="uq_webhook_events_stripe_event_id"),
        Index("ix_webhook_events_type_seen", "event_type", "first_seen_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    stripe_event_id = Column(String, nullable=False)
    event_type = Column(String, nullable=False)
    processed = Column(Boolean, nullable=False, default=False)
    outcome = Column(String, nullable=True)
    invoice_id = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    payload_json = Column(JSON_TYPE, nullable=True)
    first_seen_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
