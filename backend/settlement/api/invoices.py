from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from settlement.api.dependencies import Operator, require_operator
from settlement.core.db import get_db
from settlement.core.invoices import (
    cancel_invoice,
    get_invoice_or_404,
    get_invoices,
    mark_paid_manually,
    sweep_overdue,
)
from settlement.core.payment_links import create_payment_link
from settlement.core.reports import commission_stats, provider_summary
from settlement.models.enums import InvoiceStatusEnum
from settlement.schemas.invoices import (
    InvoiceCancelRequest,
    InvoiceDetail,
    InvoiceList,
    InvoiceRead,
    ManualPaymentRequest,
    SweepOverdueRequest,
    SweepOverdueResponse,
)
from settlement.schemas.reports import CommissionStats, ProviderSummaryRow


router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("", response_model=InvoiceList)
def list_commission_invoices(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    status: InvoiceStatusEnum | None = Query(None),
    provider_id: str | None = Query(None),
    establishment_id: str | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    items, total = get_invoices(
        db,
        status=status,
        provider_id=provider_id,
        establishment_id=establishment_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return InvoiceList(
        items=[InvoiceRead.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


# Declared before "/{invoice_id}" so the literal paths win.
@router.get("/stats", response_model=CommissionStats)
def get_commission_stats(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    provider_id: str | None = Query(None),
):
    return commission_stats(db, date_from=date_from, date_to=date_to, provider_id=provider_id)


@router.get("/providers", response_model=list[ProviderSummaryRow])
def get_provider_summary(
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
):
    return provider_summary(db, date_from=date_from, date_to=date_to)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_commission_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
):
    return get_invoice_or_404(db, invoice_id)


@router.post("/{invoice_id}/mark-paid", response_model=InvoiceRead)
def mark_invoice_paid(
    invoice_id: int,
    payload: ManualPaymentRequest,
    db: Session = Depends(get_db),
    operator: Operator = Depends(require_operator({"admin", "operator"})),
):
    return mark_paid_manually(
        db,
        invoice_id,
        operator=operator.username,
        payment_method=payload.payment_method,
        payment_reference=payload.payment_reference,
        amount=payload.amount,
    )


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_commission_invoice(
    invoice_id: int,
    payload: InvoiceCancelRequest,
    db: Session = Depends(get_db),
    operator: Operator = Depends(require_operator({"admin", "operator"})),
):
    return cancel_invoice(db, invoice_id, operator=operator.username, reason=payload.reason)


@router.post("/{invoice_id}/payment-link", response_model=InvoiceRead)
def create_invoice_payment_link(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
):
    base_url = request.headers.get("origin") or str(request.base_url).rstrip("/")
    return create_payment_link(db, invoice_id, base_url=base_url)


@router.post("/sweep-overdue", response_model=SweepOverdueResponse)
def sweep_overdue_invoices(
    payload: SweepOverdueRequest | None = None,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator({"admin", "service"})),
):
    moved = sweep_overdue(db, as_of=payload.as_of if payload else None)
    return SweepOverdueResponse(moved=moved)
