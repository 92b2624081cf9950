from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from settlement.core.commission import ReferralContext
from settlement.core.config import settings
from settlement.core.errors import InvalidReferral
from settlement.core.time import normalize_dt, utcnow
from settlement.crud.establishment_commissions import credit_totals_by_status, list_credits
from settlement.crud.referral_visits import create_visit, get_visit


logger = logging.getLogger(__name__)

QR_SOURCE = "qr_code"
MAX_METADATA_KEYS = 20


def _clean_metadata(metadata: dict[str, Any] | None) -> dict[str, Any]:
    if not isinstance(metadata, dict):
        return {}
    cleaned: dict[str, Any] = {}
    for key, value in list(metadata.items())[:MAX_METADATA_KEYS]:
        if isinstance(value, (str, int, float, bool)) or value is None:
            cleaned[str(key)] = value
        else:
            cleaned[str(key)] = str(value)
    return cleaned


def _visit_expiry(now: datetime) -> datetime | None:
    if settings.REFERRAL_VISIT_TTL_DAYS <= 0:
        return None
    return now + timedelta(days=settings.REFERRAL_VISIT_TTL_DAYS)


def record_scan(
    db: Session,
    *,
    establishment_id: str,
    metadata: dict[str, Any] | None = None,
    session_id: str | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> str:
    establishment_id = (establishment_id or "").strip()
    if not establishment_id:
        raise InvalidReferral("QR scan requires an establishment id")
    metadata = _clean_metadata(metadata)
    metadata.setdefault("source", QR_SOURCE)
    if user_agent:
        metadata.setdefault("user_agent", user_agent)
    visit = create_visit(
        db,
        visit_id=str(uuid.uuid4()),
        establishment_id=establishment_id,
        session_id=session_id,
        source=QR_SOURCE,
        user_agent=user_agent,
        ip_address=ip_address,
        metadata=metadata,
        expires_at=_visit_expiry(utcnow()),
    )
    logger.info(
        "referral.scan_recorded",
        extra={"visit_id": visit.id, "establishment_id": establishment_id},
    )
    return visit.id


def _parse_visit_id(visit_id: Any) -> str | None:
    if visit_id is None:
        return None
    try:
        return str(uuid.UUID(str(visit_id).strip()))
    except ValueError:
        return None


def resolve_attribution(
    db: Session,
    visit_id: Any,
    *,
    as_of: datetime | None = None,
) -> ReferralContext | None:
    """Best-effort: anything other than a live visit means "no referral"."""
    parsed = _parse_visit_id(visit_id)
    if parsed is None:
        if visit_id:
            logger.info("referral.malformed_visit_id", extra={"visit_id": str(visit_id)[:64]})
        return None
    visit = get_visit(db, parsed)
    if visit is None:
        logger.info("referral.unknown_visit", extra={"visit_id": parsed})
        return None
    now = normalize_dt(as_of) or utcnow()
    expires_at = normalize_dt(visit.expires_at)
    if expires_at is not None and expires_at <= now:
        logger.info("referral.expired_visit", extra={"visit_id": parsed})
        return None
    return ReferralContext(establishment_id=visit.establishment_id, visit_id=visit.id)


def establishment_commission_summary(
    db: Session,
    *,
    establishment_id: str,
    limit: int = 100,
    offset: int = 0,
) -> dict[str, Any]:
    totals = credit_totals_by_status(db, establishment_id=establishment_id)
    credits = list_credits(db, establishment_id=establishment_id, limit=limit, offset=offset)
    return {
        "establishment_id": establishment_id,
        "total_pending": totals.get("pending", Decimal("0.00")),
        "total_paid": totals.get("paid", Decimal("0.00")),
        "total_cancelled": totals.get("cancelled", Decimal("0.00")),
        "commissions": credits,
    }
