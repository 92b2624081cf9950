from sqlalchemy import Column, DateTime, Index, Integer, JSON, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from settlement.core.db import Base
from settlement.core.time import utcnow


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


class JobDeadLetter(Base):
    __tablename__ = "job_dead_letters"
    __table_args__ = (
        Index("ix_job_dead_letters_queue_failed_at", "queue_name", "failed_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    original_job_id = Column(Integer, nullable=True)
    queue_name = Column(String, nullable=False, index=True)
    job_type = Column(String, nullable=False, index=True)
    payload_json = Column(JSON_TYPE, nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime, nullable=True)
    failed_at = Column(DateTime, nullable=False, default=utcnow)
    created_at = Column(DateTime, nullable=False, default=utcnow)
