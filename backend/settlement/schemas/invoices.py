from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum


class CommissionPaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount: Decimal
    payment_method: str
    payment_status: PaymentStatusEnum
    payment_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    booking_id: str
    provider_id: str
    activity_id: Optional[str] = None
    customer_id: Optional[str] = None
    total_booking_amount: Decimal
    platform_commission_rate: Decimal
    platform_commission_amount: Decimal
    partner_commission_rate: Optional[Decimal] = None
    partner_commission_amount: Optional[Decimal] = None
    platform_net_amount: Decimal
    provider_net_amount: Decimal
    is_referral_booking: bool
    establishment_id: Optional[str] = None
    commission_tier: Optional[str] = None
    invoice_status: InvoiceStatusEnum
    due_date: datetime
    paid_at: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None
    stripe_payment_link_id: Optional[str] = None
    stripe_payment_link_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class InvoiceDetail(InvoiceRead):
    payments: list[CommissionPaymentRead] = Field(default_factory=list)


class InvoiceList(BaseModel):
    items: list[InvoiceRead]
    total: int
    limit: int
    offset: int


class ManualPaymentRequest(BaseModel):
    payment_method: str = "manual"
    payment_reference: Optional[str] = None
    amount: Optional[Decimal] = None


class InvoiceCancelRequest(BaseModel):
    reason: Optional[str] = None


class SweepOverdueRequest(BaseModel):
    as_of: Optional[datetime] = None


class SweepOverdueResponse(BaseModel):
    moved: int
