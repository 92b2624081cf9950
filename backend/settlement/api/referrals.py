from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from settlement.api.dependencies import Operator, require_operator
from settlement.core.db import get_db
from settlement.core.referrals import establishment_commission_summary, record_scan, resolve_attribution
from settlement.crud.referral_visits import list_visits_for_establishment
from settlement.schemas.referrals import (
    AttributionRead,
    EstablishmentCommissionSummary,
    ReferralVisitRead,
    ScanCreate,
    ScanResponse,
)


router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.post("/scans", response_model=ScanResponse, status_code=status.HTTP_201_CREATED)
def create_scan(
    payload: ScanCreate,
    request: Request,
    db: Session = Depends(get_db),
):
    visit_id = record_scan(
        db,
        establishment_id=payload.establishment_id,
        metadata=payload.metadata,
        session_id=payload.session_id,
        user_agent=request.headers.get("user-agent"),
        ip_address=getattr(request.state, "client_ip", None),
    )
    return ScanResponse(visit_id=visit_id)


@router.get("/visits/{visit_id}/attribution", response_model=AttributionRead)
def get_attribution(
    visit_id: str,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
):
    referral = resolve_attribution(db, visit_id)
    if referral is None:
        return AttributionRead(visit_id=visit_id, has_referral=False)
    return AttributionRead(
        visit_id=visit_id,
        has_referral=True,
        establishment_id=referral.establishment_id,
    )


@router.get("/establishments/{establishment_id}/visits", response_model=list[ReferralVisitRead])
def list_establishment_visits(
    establishment_id: str,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return list_visits_for_establishment(
        db,
        establishment_id=establishment_id,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/establishments/{establishment_id}/commissions",
    response_model=EstablishmentCommissionSummary,
)
def get_establishment_commissions(
    establishment_id: str,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    return establishment_commission_summary(
        db,
        establishment_id=establishment_id,
        limit=limit,
        offset=offset,
    )
