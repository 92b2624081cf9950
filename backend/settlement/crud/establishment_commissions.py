from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from settlement.models.enums import EstablishmentCommissionStatusEnum
from settlement.models.establishment_commissions import EstablishmentCommission
from settlement.models.invoices import CommissionInvoice


def create_commission_credit(db: Session, *, invoice: CommissionInvoice) -> EstablishmentCommission:
    credit = EstablishmentCommission(
        establishment_id=invoice.establishment_id,
        invoice_id=invoice.id,
        booking_id=invoice.booking_id,
        referral_visit_id=invoice.referral_visit_id,
        commission_rate=invoice.partner_commission_rate,
        booking_amount=invoice.total_booking_amount,
        commission_amount=invoice.partner_commission_amount,
        commission_status=EstablishmentCommissionStatusEnum.PENDING,
        booking_source="qr_code",
    )
    db.add(credit)
    db.flush()
    return credit


def get_credit_for_invoice(db: Session, invoice_id: int) -> EstablishmentCommission | None:
    return (
        db.query(EstablishmentCommission)
        .filter(EstablishmentCommission.invoice_id == invoice_id)
        .first()
    )


def list_credits(
    db: Session,
    *,
    establishment_id: str,
    status: EstablishmentCommissionStatusEnum | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[EstablishmentCommission]:
    query = db.query(EstablishmentCommission).filter(
        EstablishmentCommission.establishment_id == establishment_id
    )
    if status is not None:
        query = query.filter(EstablishmentCommission.commission_status == status)
    return (
        query.order_by(EstablishmentCommission.created_at.desc(), EstablishmentCommission.id.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def credit_totals_by_status(db: Session, *, establishment_id: str) -> dict[str, Decimal]:
    rows = (
        db.query(
            EstablishmentCommission.commission_status,
            func.coalesce(func.sum(EstablishmentCommission.commission_amount), 0),
        )
        .filter(EstablishmentCommission.establishment_id == establishment_id)
        .group_by(EstablishmentCommission.commission_status)
        .all()
    )
    totals: dict[str, Decimal] = {status.value: Decimal("0.00") for status in EstablishmentCommissionStatusEnum}
    for status, amount in rows:
        key = status.value if isinstance(status, EstablishmentCommissionStatusEnum) else str(status)
        totals[key] = Decimal(str(amount)).quantize(Decimal("0.01"))
    return totals
