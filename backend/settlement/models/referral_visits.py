from sqlalchemy import Column, DateTime, Index, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from settlement.core.db import Base
from settlement.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class ReferralVisit(Base):
    """A QR scan session. Rows are written once and never updated."""

    __tablename__ = "referral_visits"
    __table_args__ = (
        Index("ix_referral_visits_establishment_created", "establishment_id", "created_at"),
    )

    id = Column(String(36), primary_key=True)
    establishment_id = Column(String, nullable=False)
    session_id = Column(String, nullable=True)
    source = Column(String, nullable=False, default="qr_code")
    user_agent = Column(Text, nullable=True)
    ip_address = Column(String, nullable=True)
    metadata_json = Column(JSON_TYPE, nullable=True)
    expires_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
