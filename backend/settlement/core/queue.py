from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import or_
from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.metrics import record_queue_dead_letter, record_queue_retry
from settlement.core.time import normalize_dt, utcnow
from settlement.models.job_dead_letters import JobDeadLetter
from settlement.models.job_queue import JobQueue

QueueHandler = Callable[[Session, dict[str, Any]], Any]

logger = logging.getLogger(__name__)

QUEUE_NAMES = {"critical", "standard", "bulk"}
DEFAULT_QUEUE = "standard"

WEBHOOK_RECONCILE_JOB = "webhook_reconcile"
NOTIFICATION_JOB = "notification_send"
OVERDUE_SWEEP_JOB = "overdue_sweep"

JOB_TYPE_QUEUE: dict[str, str] = {
    WEBHOOK_RECONCILE_JOB: "critical",
    NOTIFICATION_JOB: "standard",
    OVERDUE_SWEEP_JOB: "bulk",
}


@dataclass
class RetryPolicy:
    max_attempts: int
    base_delay_seconds: int
    max_delay_seconds: int


JOB_RETRY_POLICIES: dict[str, RetryPolicy] = {
    WEBHOOK_RECONCILE_JOB: RetryPolicy(max_attempts=6, base_delay_seconds=5, max_delay_seconds=300),
    NOTIFICATION_JOB: RetryPolicy(max_attempts=5, base_delay_seconds=5, max_delay_seconds=60),
    OVERDUE_SWEEP_JOB: RetryPolicy(max_attempts=3, base_delay_seconds=60, max_delay_seconds=900),
}

DEFAULT_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay_seconds=30, max_delay_seconds=300)

_JOB_HANDLERS: dict[str, QueueHandler] = {}


def register_job_handler(job_type: str, handler: QueueHandler) -> None:
    _JOB_HANDLERS[job_type] = handler


def clear_job_handlers() -> None:
    _JOB_HANDLERS.clear()


def get_job_handler(job_type: str) -> QueueHandler | None:
    return _JOB_HANDLERS.get(job_type)


def _normalize_queue_name(queue_name: str | None, job_type: str | None) -> str:
    if queue_name:
        name = queue_name.strip().lower()
        if name in QUEUE_NAMES:
            return name
    if job_type and job_type in JOB_TYPE_QUEUE:
        return JOB_TYPE_QUEUE[job_type]
    return DEFAULT_QUEUE


def _policy_for_job(job: JobQueue) -> RetryPolicy:
    return JOB_RETRY_POLICIES.get(job.job_type, DEFAULT_RETRY_POLICY)


def _backoff_seconds(policy: RetryPolicy, attempt: int) -> int:
    multiplier = 2 ** max(attempt - 1, 0)
    delay = policy.base_delay_seconds * multiplier
    return min(delay, policy.max_delay_seconds)


def enqueue_job(
    db: Session,
    *,
    job_type: str,
    payload: dict[str, Any] | None = None,
    queue_name: str | None = None,
    priority: int | None = None,
    run_at: datetime | None = None,
    max_attempts: int | None = None,
    commit: bool = True,
) -> JobQueue:
    """Add a job to the queue.

    With ``commit=False`` the job only flushes, so it becomes durable
    together with whatever state change the caller is committing (outbox).
    """
    queue_name = _normalize_queue_name(queue_name, job_type)
    job = JobQueue(
        queue_name=queue_name,
        job_type=job_type,
        payload_json=payload or {},
        priority=priority if priority is not None else 100,
        run_at=run_at or utcnow(),
        max_attempts=max_attempts,
        status="queued",
    )
    db.add(job)
    if commit:
        db.commit()
        db.refresh(job)
    else:
        db.flush()
    return job


def claim_jobs(
    db: Session,
    *,
    queue_name: str,
    limit: int,
    worker_id: str,
) -> list[JobQueue]:
    now = utcnow()
    lock_timeout = timedelta(seconds=max(1, settings.JOB_QUEUE_LOCK_TIMEOUT_SECONDS))
    lock_cutoff = now - lock_timeout
    candidates = (
        db.query(JobQueue)
        .filter(
            JobQueue.queue_name == queue_name,
            JobQueue.status.in_(["queued", "running"]),
            JobQueue.run_at <= now,
            or_(
                JobQueue.status == "queued",
                JobQueue.locked_at < lock_cutoff,
            ),
        )
        .order_by(JobQueue.priority.asc(), JobQueue.run_at.asc(), JobQueue.created_at.asc())
        .limit(limit)
        .all()
    )

    for job in candidates:
        # A "running" job past the lock timeout belongs to a dead worker.
        job.status = "running"
        job.locked_at = now
        job.locked_by = worker_id
        job.last_attempt_at = now
        job.attempt_count = int(job.attempt_count or 0) + 1

    if candidates:
        db.commit()
    return candidates


def mark_job_success(db: Session, job: JobQueue) -> None:
    job.status = "succeeded"
    job.finished_at = utcnow()
    job.locked_at = None
    job.locked_by = None
    job.last_error = None
    db.commit()


def reschedule_job(db: Session, job: JobQueue, *, error_message: str) -> None:
    policy = _policy_for_job(job)
    max_attempts = job.max_attempts or policy.max_attempts
    attempts = int(job.attempt_count or 0)
    if attempts >= max_attempts:
        move_to_dead_letter(db, job, error_message=error_message)
        return
    delay = _backoff_seconds(policy, attempts)
    job.status = "queued"
    job.run_at = utcnow() + timedelta(seconds=delay)
    job.locked_at = None
    job.locked_by = None
    job.last_error = error_message
    db.commit()
    record_queue_retry(job.queue_name, job.job_type)


def move_to_dead_letter(db: Session, job: JobQueue, *, error_message: str) -> None:
    dead = JobDeadLetter(
        original_job_id=job.id,
        queue_name=job.queue_name,
        job_type=job.job_type,
        payload_json=job.payload_json,
        attempt_count=job.attempt_count or 0,
        last_error=error_message,
        last_attempt_at=normalize_dt(job.last_attempt_at),
        failed_at=utcnow(),
    )
    db.add(dead)
    db.delete(job)
    db.commit()
    record_queue_dead_letter(dead.queue_name, dead.job_type)
    logger.error(
        "Job %s (%s) moved to dead letters after %s attempts: %s",
        dead.original_job_id,
        dead.job_type,
        dead.attempt_count,
        error_message,
    )


def queue_depth(db: Session, queue_name: str) -> int:
    return (
        db.query(JobQueue)
        .filter(JobQueue.queue_name == queue_name, JobQueue.status == "queued")
        .count()
    )
