from __future__ import annotations

import argparse
import logging
from datetime import datetime
from time import monotonic, sleep
from typing import Iterable

from sqlalchemy.orm import Session

from settlement.core.config import settings
from settlement.core.db import SessionLocal
from settlement.core.metrics import (
    record_queue_depth,
    record_queue_job,
    record_queue_runtime,
    record_queue_wait,
)
from settlement.core.queue import (
    NOTIFICATION_JOB,
    OVERDUE_SWEEP_JOB,
    WEBHOOK_RECONCILE_JOB,
    claim_jobs,
    get_job_handler,
    mark_job_success,
    queue_depth,
    register_job_handler,
    reschedule_job,
)
from settlement.core.time import normalize_dt, utcnow
from settlement.core.webhooks import reconcile_deferred_event
from settlement.jobs.overdue_sweep import run_overdue_sweep
from settlement.notifications.dispatcher import send_notification


logger = logging.getLogger(__name__)


def _handle_overdue_sweep(db: Session, payload: dict) -> int:
    as_of = payload.get("as_of")
    return run_overdue_sweep(db, as_of=datetime.fromisoformat(as_of) if as_of else None)


def register_default_handlers() -> None:
    register_job_handler(WEBHOOK_RECONCILE_JOB, reconcile_deferred_event)
    register_job_handler(NOTIFICATION_JOB, send_notification)
    register_job_handler(OVERDUE_SWEEP_JOB, _handle_overdue_sweep)


def run_queue_once(
    db: Session,
    *,
    queue_name: str,
    worker_id: str,
    limit: int = 10,
) -> int:
    depth = queue_depth(db, queue_name)
    record_queue_depth(queue_name, depth)
    jobs = claim_jobs(db, queue_name=queue_name, limit=limit, worker_id=worker_id)
    if not jobs:
        return 0
    processed = 0
    for job in jobs:
        created_at = normalize_dt(job.created_at)
        if created_at:
            record_queue_wait(queue_name, job.job_type, max(0.0, (utcnow() - created_at).total_seconds()))

        start = monotonic()
        handler = get_job_handler(job.job_type)
        if handler is None:
            reschedule_job(db, job, error_message="no_handler_registered")
            record_queue_job(queue_name, job.job_type, status="failed")
            processed += 1
            continue

        try:
            handler(db, job.payload_json or {})
        except Exception as exc:
            logger.warning("Queue job %s (%s) failed: %s", job.id, job.job_type, exc)
            # Handler may have left a failed transaction behind.
            db.rollback()
            reschedule_job(db, job, error_message=str(exc))
            record_queue_job(queue_name, job.job_type, status="failed")
            processed += 1
            continue

        mark_job_success(db, job)
        record_queue_job(queue_name, job.job_type, status="success")
        record_queue_runtime(queue_name, job.job_type, monotonic() - start)
        processed += 1
    return processed


def run_queue_group_once(
    db: Session,
    *,
    queue_names: Iterable[str],
    worker_id: str,
    limit: int,
) -> int:
    total = 0
    for queue_name in queue_names:
        total += run_queue_once(
            db,
            queue_name=queue_name,
            worker_id=worker_id,
            limit=limit,
        )
    return total


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run settlement queue worker.")
    parser.add_argument(
        "--queue",
        choices=["critical", "standard", "bulk", "all"],
        default="all",
    )
    parser.add_argument("--once", action="store_true", help="Run once and exit.")
    parser.add_argument("--limit", type=int, default=10)
    parser.add_argument("--poll-interval", type=float, default=None)
    parser.add_argument("--worker-id", type=str, default="worker-1")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    poll_interval = (
        float(args.poll_interval)
        if args.poll_interval is not None
        else float(settings.JOB_QUEUE_POLL_INTERVAL_SECONDS)
    )
    register_default_handlers()
    queue_names = ["critical", "standard", "bulk"] if args.queue == "all" else [args.queue]

    while True:
        with SessionLocal() as db:
            processed = run_queue_group_once(
                db,
                queue_names=queue_names,
                worker_id=args.worker_id,
                limit=args.limit,
            )
        if args.once:
            break
        if processed == 0:
            sleep(max(0.1, poll_interval))


if __name__ == "__main__":
    main()
