from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from settlement.schemas.invoices import InvoiceRead


class BookingConfirmed(BaseModel):
    booking_id: str
    provider_id: str
    total_amount: Decimal
    activity_id: Optional[str] = None
    customer_id: Optional[str] = None
    created_at: Optional[datetime] = None
    visit_id: Optional[str] = None
    commission_tier: Optional[str] = None


class BookingInvoiceResponse(BaseModel):
    created: bool
    invoice: InvoiceRead
