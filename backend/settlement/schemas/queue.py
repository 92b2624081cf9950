from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class JobDeadLetterRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_job_id: Optional[int]
    queue_name: str
    job_type: str
    payload_json: Optional[dict] = None
    attempt_count: int
    last_error: Optional[str]
    last_attempt_at: Optional[datetime]
    failed_at: datetime
    created_at: datetime


class JobQueueStatsRead(BaseModel):
    queue_name: str
    queued: int
    running: int
    succeeded_last_hour: int
    failed_last_hour: int
    retrying: int
    avg_queue_age_seconds: float
    dead_letters_total: int
