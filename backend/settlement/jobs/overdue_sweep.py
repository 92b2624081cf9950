from __future__ import annotations

import argparse
import logging
from datetime import datetime

from sqlalchemy.orm import Session

from settlement.core.db import SessionLocal
from settlement.core.invoices import sweep_overdue
from settlement.core.metrics import record_job_run


logger = logging.getLogger(__name__)


def run_overdue_sweep(db: Session, *, as_of: datetime | None = None) -> int:
    try:
        moved = sweep_overdue(db, as_of)
    except Exception:
        record_job_run(job_name="overdue_sweep", success=False)
        raise
    record_job_run(job_name="overdue_sweep", success=True)
    logger.info("Overdue sweep moved %s invoices", moved)
    return moved


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mark pending invoices past their due date as overdue.")
    parser.add_argument(
        "--as-of",
        type=datetime.fromisoformat,
        default=None,
        help="ISO timestamp (UTC) to sweep against; defaults to now.",
    )
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    with SessionLocal() as db:
        run_overdue_sweep(db, as_of=args.as_of)


if __name__ == "__main__":
    main()
