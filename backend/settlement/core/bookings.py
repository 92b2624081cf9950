"""
Entry point for the booking layer: a confirmed booking becomes exactly
one pending commission invoice.
"""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from settlement.core.commission import compute_breakdown, rates_for_tier
from settlement.core.errors import DuplicateInvoice
from settlement.core.invoices import Booking, create_invoice
from settlement.core.referrals import resolve_attribution
from settlement.models.invoices import CommissionInvoice


logger = logging.getLogger(__name__)


def on_booking_confirmed(
    db: Session,
    *,
    booking: Booking,
    visit_id: str | None = None,
) -> tuple[CommissionInvoice, bool]:
    """Returns ``(invoice, created)``.

    Redelivery of the same confirmation returns the invoice created the
    first time with ``created`` False.
    """
    referral = resolve_attribution(db, visit_id or booking.visit_id)
    rates = rates_for_tier(booking.commission_tier)
    breakdown = compute_breakdown(booking.total_amount, referral=referral, rates=rates)
    try:
        invoice = create_invoice(
            db,
            booking=booking,
            breakdown=breakdown,
            referral_visit_id=referral.visit_id if referral else None,
        )
    except DuplicateInvoice as exc:
        logger.info(
            "booking.already_invoiced",
            extra={"booking_id": booking.booking_id, "invoice_id": exc.invoice.id},
        )
        return exc.invoice, False
    return invoice, True
