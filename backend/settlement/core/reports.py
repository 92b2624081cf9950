"""
Read-only commission reporting grouped by referring establishment.

Only invoices with a frozen referral attribution are counted, so an
activity provider is never mistaken for the establishment that showed
the QR code. Cancelled invoices are left out.
"""

from __future__ import annotations

import csv
import io
import re
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from settlement.core.errors import InvalidReportPeriod
from settlement.core.time import normalize_dt, utcnow
from settlement.crud.invoices import list_referral_invoices_between, sum_invoices_by_provider, sum_invoices_by_status
from settlement.models.enums import InvoiceStatusEnum


_PERIOD_RE = re.compile(r"^(\d{4})-(\d{2})$")
ZERO = Decimal("0.00")

CSV_HEADERS = [
    "Establishment ID",
    "Total Bookings",
    "Total Commission",
    "Invoice Number",
    "Booking ID",
    "Booking Date",
    "Booking Amount",
    "Commission Amount",
    "Status",
]


def resolve_period(period: str | None, *, now: datetime | None = None) -> tuple[str, datetime, datetime]:
    """``"YYYY-MM"`` -> (label, first instant of the month, first instant of the next)."""
    if not period:
        now = now or utcnow()
        period = f"{now:%Y-%m}"
    match = _PERIOD_RE.match(period.strip())
    if not match:
        raise InvalidReportPeriod(period)
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1970:
        raise InvalidReportPeriod(period)
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return f"{year:04d}-{month:02d}", start, end


def _commission_status(status: InvoiceStatusEnum) -> str:
    return "paid" if status == InvoiceStatusEnum.PAID else "pending"


def generate_report(db: Session, period: str | None = None) -> dict[str, Any]:
    label, start, end = resolve_period(period)
    invoices = list_referral_invoices_between(db, start=start, end=end)

    groups: dict[str, dict[str, Any]] = {}
    total_pending = ZERO
    total_paid = ZERO
    for invoice in invoices:
        commission = invoice.partner_commission_amount or ZERO
        status = _commission_status(invoice.invoice_status)
        if status == "paid":
            total_paid += commission
        else:
            total_pending += commission

        group = groups.setdefault(
            invoice.establishment_id,
            {
                "establishment_id": invoice.establishment_id,
                "booking_count": 0,
                "total_commission": ZERO,
                "booking_details": [],
            },
        )
        group["booking_count"] += 1
        group["total_commission"] += commission
        group["booking_details"].append(
            {
                "invoice_id": invoice.id,
                "invoice_number": invoice.invoice_number,
                "booking_id": invoice.booking_id,
                "booking_date": invoice.created_at,
                "booking_amount": invoice.total_booking_amount,
                "commission_amount": commission,
                "commission_status": status,
                "invoice_status": invoice.invoice_status.value,
            }
        )

    per_establishment = sorted(
        groups.values(),
        key=lambda item: (-item["total_commission"], item["establishment_id"]),
    )
    return {
        "report_period": label,
        "total_establishments": len(per_establishment),
        "total_pending": total_pending,
        "total_paid": total_paid,
        "per_establishment": per_establishment,
        "generated_at": utcnow(),
    }


def report_to_csv(report: dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for establishment in report["per_establishment"]:
        for booking in establishment["booking_details"]:
            writer.writerow(
                [
                    establishment["establishment_id"],
                    establishment["booking_count"],
                    f"{establishment['total_commission']:.2f}",
                    booking["invoice_number"],
                    booking["booking_id"],
                    booking["booking_date"].isoformat() if booking["booking_date"] else "",
                    f"{booking['booking_amount']:.2f}",
                    f"{booking['commission_amount']:.2f}",
                    booking["commission_status"],
                ]
            )
    return buffer.getvalue()


def _money(value: Any) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


def _empty_totals() -> dict[str, Any]:
    return {
        "invoice_count": 0,
        "booking_amount": ZERO,
        "platform_commission": ZERO,
        "partner_commission": ZERO,
    }


def _add_totals(target: dict[str, Any], count, booking, platform, partner) -> None:
    target["invoice_count"] += int(count or 0)
    target["booking_amount"] += _money(booking)
    target["platform_commission"] += _money(platform)
    target["partner_commission"] += _money(partner)


def commission_stats(
    db: Session,
    *,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    provider_id: str | None = None,
) -> dict[str, Any]:
    """Invoice totals per status for the admin dashboard.

    Unlike ``generate_report`` this covers every invoice, referral or not,
    optionally narrowed to one provider and a ``[date_from, date_to)``
    creation window.
    """
    date_from, date_to = normalize_dt(date_from), normalize_dt(date_to)
    by_status = {status.value: _empty_totals() for status in InvoiceStatusEnum}
    overall = _empty_totals()
    rows = sum_invoices_by_status(db, provider_id=provider_id, created_from=date_from, created_to=date_to)
    for status, count, booking, platform, partner in rows:
        _add_totals(by_status[InvoiceStatusEnum(status).value], count, booking, platform, partner)
        if status != InvoiceStatusEnum.CANCELLED:
            _add_totals(overall, count, booking, platform, partner)
    return {
        "date_from": date_from,
        "date_to": date_to,
        "provider_id": provider_id,
        "totals": overall,
        "by_status": by_status,
        "generated_at": utcnow(),
    }


def provider_summary(
    db: Session,
    *,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> list[dict[str, Any]]:
    """Per-provider revenue and commission totals; cancelled invoices only count as cancelled."""
    providers: dict[str, dict[str, Any]] = {}
    rows = sum_invoices_by_provider(db, created_from=normalize_dt(date_from), created_to=normalize_dt(date_to))
    for provider_id, status, count, booking, platform, partner in rows:
        status = InvoiceStatusEnum(status)
        summary = providers.setdefault(
            provider_id,
            {
                "provider_id": provider_id,
                "total_invoices": 0,
                "total_revenue": ZERO,
                "total_platform_commission": ZERO,
                "total_partner_commission": ZERO,
                **{f"{item.value}_invoices": 0 for item in InvoiceStatusEnum},
            },
        )
        summary[f"{status.value}_invoices"] += int(count or 0)
        if status == InvoiceStatusEnum.CANCELLED:
            continue
        summary["total_invoices"] += int(count or 0)
        summary["total_revenue"] += _money(booking)
        summary["total_platform_commission"] += _money(platform)
        summary["total_partner_commission"] += _money(partner)
    return sorted(
        providers.values(),
        key=lambda item: (-item["total_platform_commission"], item["provider_id"]),
    )
