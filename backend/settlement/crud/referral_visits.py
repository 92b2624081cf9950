from __future__ import annotations

from datetime import datetime

from sqlalchemy.orm import Session

from settlement.models.referral_visits import ReferralVisit


def create_visit(
    db: Session,
    *,
    visit_id: str,
    establishment_id: str,
    session_id: str | None,
    source: str,
    user_agent: str | None,
    ip_address: str | None,
    metadata: dict | None,
    expires_at: datetime | None,
) -> ReferralVisit:
    visit = ReferralVisit(
        id=visit_id,
        establishment_id=establishment_id,
        session_id=session_id,
        source=source,
        user_agent=user_agent,
        ip_address=ip_address,
        metadata_json=metadata or {},
        expires_at=expires_at,
    )
    db.add(visit)
    db.commit()
    db.refresh(visit)
    return visit


def get_visit(db: Session, visit_id: str) -> ReferralVisit | None:
    return db.query(ReferralVisit).filter(ReferralVisit.id == visit_id).first()


def list_visits_for_establishment(
    db: Session,
    *,
    establishment_id: str,
    limit: int = 100,
    offset: int = 0,
) -> list[ReferralVisit]:
    return (
        db.query(ReferralVisit)
        .filter(ReferralVisit.establishment_id == establishment_id)
        .order_by(ReferralVisit.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )
