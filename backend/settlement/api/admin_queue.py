from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from settlement.api.dependencies import Operator, require_operator
from settlement.core.db import get_db
from settlement.core.queue import QUEUE_NAMES
from settlement.core.time import normalize_dt, utcnow
from settlement.models.job_dead_letters import JobDeadLetter
from settlement.models.job_queue import JobQueue
from settlement.schemas.queue import JobDeadLetterRead, JobQueueStatsRead


router = APIRouter(prefix="/admin/queue", tags=["admin", "queue"])


@router.get("/dead-letters", response_model=list[JobDeadLetterRead])
def list_dead_letters(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator({"admin"})),
    queue_name: str | None = Query(None),
    job_type: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    query = db.query(JobDeadLetter)
    if queue_name:
        query = query.filter(JobDeadLetter.queue_name == queue_name)
    if job_type:
        query = query.filter(JobDeadLetter.job_type == job_type)
    return (
        query.order_by(JobDeadLetter.failed_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/stats", response_model=list[JobQueueStatsRead])
def queue_stats(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator({"admin"})),
):
    now = utcnow()
    window_start = now - timedelta(hours=1)
    stats: list[JobQueueStatsRead] = []

    for queue_name in sorted(QUEUE_NAMES):
        jobs = db.query(JobQueue).filter(JobQueue.queue_name == queue_name)
        dead_letters = db.query(JobDeadLetter).filter(JobDeadLetter.queue_name == queue_name)

        queued_created = (
            db.query(JobQueue.created_at)
            .filter(JobQueue.queue_name == queue_name, JobQueue.status == "queued")
            .all()
        )
        queue_ages = [
            max(0.0, (now - normalize_dt(created_at)).total_seconds())
            for (created_at,) in queued_created
            if created_at is not None
        ]
        avg_queue_age_seconds = sum(queue_ages) / len(queue_ages) if queue_ages else 0.0

        stats.append(
            JobQueueStatsRead(
                queue_name=queue_name,
                queued=jobs.filter(JobQueue.status == "queued").count(),
                running=jobs.filter(JobQueue.status == "running").count(),
                succeeded_last_hour=jobs.filter(
                    JobQueue.status == "succeeded",
                    JobQueue.finished_at >= window_start,
                ).count(),
                failed_last_hour=dead_letters.filter(JobDeadLetter.failed_at >= window_start).count(),
                retrying=jobs.filter(
                    JobQueue.status.in_(["queued", "running"]),
                    JobQueue.attempt_count > 1,
                ).count(),
                avg_queue_age_seconds=round(avg_queue_age_seconds, 3),
                dead_letters_total=dead_letters.count(),
            )
        )

    return stats
