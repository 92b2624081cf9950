from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from settlement.api.dependencies import Operator, require_operator
from settlement.core.bookings import on_booking_confirmed
from settlement.core.db import get_db
from settlement.core.invoices import Booking
from settlement.schemas.bookings import BookingConfirmed, BookingInvoiceResponse
from settlement.schemas.invoices import InvoiceRead


router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post("/confirmed", response_model=BookingInvoiceResponse)
def booking_confirmed(
    payload: BookingConfirmed,
    response: Response,
    db: Session = Depends(get_db),
    _operator: Operator = Depends(require_operator()),
):
    booking = Booking(
        booking_id=payload.booking_id,
        provider_id=payload.provider_id,
        total_amount=payload.total_amount,
        activity_id=payload.activity_id,
        customer_id=payload.customer_id,
        created_at=payload.created_at,
        visit_id=payload.visit_id,
        commission_tier=payload.commission_tier,
    )
    invoice, created = on_booking_confirmed(db, booking=booking)
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return BookingInvoiceResponse(created=created, invoice=InvoiceRead.model_validate(invoice))
