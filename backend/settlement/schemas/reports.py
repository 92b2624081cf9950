from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel


class ReportBookingDetail(BaseModel):
    invoice_id: int
    invoice_number: str
    booking_id: str
    booking_date: Optional[datetime] = None
    booking_amount: Decimal
    commission_amount: Decimal
    commission_status: str
    invoice_status: str


class EstablishmentReportRow(BaseModel):
    establishment_id: str
    booking_count: int
    total_commission: Decimal
    booking_details: list[ReportBookingDetail]


class CommissionReport(BaseModel):
    report_period: str
    total_establishments: int
    total_pending: Decimal
    total_paid: Decimal
    per_establishment: list[EstablishmentReportRow]
    generated_at: datetime


class InvoiceStatusTotals(BaseModel):
    invoice_count: int
    booking_amount: Decimal
    platform_commission: Decimal
    partner_commission: Decimal


class CommissionStats(BaseModel):
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    provider_id: Optional[str] = None
    totals: InvoiceStatusTotals
    by_status: dict[str, InvoiceStatusTotals]
    generated_at: datetime


class ProviderSummaryRow(BaseModel):
    provider_id: str
    total_invoices: int
    total_revenue: Decimal
    total_platform_commission: Decimal
    total_partner_commission: Decimal
    pending_invoices: int
    paid_invoices: int
    overdue_invoices: int
    cancelled_invoices: int
