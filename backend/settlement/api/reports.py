from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from settlement.api.dependencies import Operator, require_operator
from settlement.core.db import get_db
from settlement.core.reports import generate_report, report_to_csv
from settlement.schemas.reports import CommissionReport


router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/commissions", response_model=CommissionReport)
def commission_report(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    period: str | None = Query(None, description="Calendar month, YYYY-MM"),
):
    return generate_report(db, period)


@router.get("/commissions.csv")
def commission_report_csv(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    period: str | None = Query(None, description="Calendar month, YYYY-MM"),
):
    report = generate_report(db, period)
    filename = f"commission-report-{report['report_period']}.csv"
    return Response(
        content=report_to_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
