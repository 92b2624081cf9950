from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from settlement.models.enums import EstablishmentCommissionStatusEnum


class ScanCreate(BaseModel):
    establishment_id: str = Field(min_length=1, max_length=128)
    session_id: Optional[str] = Field(default=None, max_length=128)
    metadata: Optional[dict[str, Any]] = None


class ScanResponse(BaseModel):
    visit_id: str


class AttributionRead(BaseModel):
    visit_id: str
    has_referral: bool
    establishment_id: Optional[str] = None


class ReferralVisitRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    establishment_id: str
    session_id: Optional[str] = None
    source: str
    user_agent: Optional[str] = None
    metadata_json: Optional[dict] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class EstablishmentCommissionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    establishment_id: str
    invoice_id: int
    booking_id: str
    commission_rate: Decimal
    booking_amount: Decimal
    commission_amount: Decimal
    commission_status: EstablishmentCommissionStatusEnum
    booking_source: str
    paid_at: Optional[datetime] = None
    created_at: datetime


class EstablishmentCommissionSummary(BaseModel):
    establishment_id: str
    total_pending: Decimal
    total_paid: Decimal
    total_cancelled: Decimal
    commissions: list[EstablishmentCommissionRead]
