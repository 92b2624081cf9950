import csv
import io
import os
from datetime import datetime
from decimal import Decimal

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ["SKIP_MIGRATIONS"] = "1"

from factories import make_invoice, setup_db  # noqa: E402
from settlement.core.errors import InvalidReportPeriod  # noqa: E402
from settlement.core.invoices import PaymentRecord, cancel_invoice, mark_failed, mark_paid  # noqa: E402
from settlement.core.reports import (  # noqa: E402
    CSV_HEADERS,
    commission_stats,
    generate_report,
    provider_summary,
    report_to_csv,
    resolve_period,
)
from settlement.core.time import utcnow  # noqa: E402
from settlement.models.invoices import CommissionInvoice  # noqa: E402


def _session(tmp_path):
    return setup_db(f"sqlite:///{tmp_path / 'reports.db'}")


def test_resolve_period_bounds():
    label, start, end = resolve_period("2026-12")
    assert label == "2026-12"
    assert start == datetime(2026, 12, 1)
    assert end == datetime(2027, 1, 1)

    label, _, _ = resolve_period(None, now=datetime(2026, 3, 15, 10, 0))
    assert label == "2026-03"


@pytest.mark.parametrize("period", ["2026-13", "2026-00", "26-01", "2026/01", "January"])
def test_resolve_period_rejects_malformed(period):
    with pytest.raises(InvalidReportPeriod):
        resolve_period(period)


def test_report_groups_referral_invoices_by_establishment(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        big = make_invoice(db, total_amount="2000", establishment_id="hotel-big")
        make_invoice(db, total_amount="500", establishment_id="hotel-small")
        second_small = make_invoice(db, total_amount="300", establishment_id="hotel-small")
        make_invoice(db, total_amount="5000")
        cancelled = make_invoice(db, total_amount="9000", establishment_id="hotel-cancelled")
        cancel_invoice(db, cancelled.id, operator="ops")
        mark_paid(db, second_small.id, PaymentRecord(payment_method="card"))

        report = generate_report(db, f"{utcnow():%Y-%m}")

        assert report["total_establishments"] == 2
        assert report["total_paid"] == Decimal("30.00")
        assert report["total_pending"] == Decimal("250.00")

        rows = report["per_establishment"]
        assert [row["establishment_id"] for row in rows] == ["hotel-big", "hotel-small"]
        assert rows[0]["booking_count"] == 1
        assert rows[0]["total_commission"] == Decimal("200.00")
        assert rows[1]["booking_count"] == 2
        assert rows[1]["total_commission"] == Decimal("80.00")

        details = {item["invoice_id"]: item for item in rows[1]["booking_details"]}
        assert details[second_small.id]["commission_status"] == "paid"
        assert details[second_small.id]["commission_amount"] == Decimal("30.00")
        assert big.id not in details


def test_report_for_other_period_is_empty(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, establishment_id="hotel-1")
        db.query(CommissionInvoice).filter(CommissionInvoice.id == invoice.id).update(
            {CommissionInvoice.created_at: datetime(2025, 1, 31, 23, 59, 59)},
            synchronize_session=False,
        )
        db.commit()

        assert generate_report(db, "2025-02")["per_establishment"] == []
        january = generate_report(db, "2025-01")
        assert january["total_establishments"] == 1
        assert january["total_pending"] == Decimal("100.00")


def test_report_csv_export(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        invoice = make_invoice(db, total_amount="1000", establishment_id="hotel-1")
        report = generate_report(db)

    rows = list(csv.reader(io.StringIO(report_to_csv(report))))
    assert rows[0] == CSV_HEADERS
    assert len(rows) == 2
    assert rows[1][0] == "hotel-1"
    assert rows[1][1] == "1"
    assert rows[1][2] == "100.00"
    assert rows[1][3] == invoice.invoice_number
    assert rows[1][6:] == ["1000.00", "100.00", "pending"]


def _seed_dashboard(db):
    paid = make_invoice(db, total_amount="1000", establishment_id="hotel-1", provider_id="provider-a")
    make_invoice(db, total_amount="500", provider_id="provider-a")
    cancelled = make_invoice(db, total_amount="800", provider_id="provider-b")
    failed = make_invoice(db, total_amount="300", provider_id="provider-b")
    mark_paid(db, paid.id, PaymentRecord(payment_method="card"))
    cancel_invoice(db, cancelled.id, operator="ops")
    mark_failed(db, failed.id, PaymentRecord(payment_method="card"))


def test_commission_stats_totals_by_status(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        _seed_dashboard(db)
        stats = commission_stats(db)

    assert stats["totals"] == {
        "invoice_count": 3,
        "booking_amount": Decimal("1800.00"),
        "platform_commission": Decimal("360.00"),
        "partner_commission": Decimal("100.00"),
    }
    by_status = stats["by_status"]
    assert by_status["paid"]["invoice_count"] == 1
    assert by_status["paid"]["partner_commission"] == Decimal("100.00")
    assert by_status["pending"]["platform_commission"] == Decimal("100.00")
    assert by_status["overdue"]["booking_amount"] == Decimal("300.00")
    assert by_status["cancelled"]["invoice_count"] == 1
    assert by_status["cancelled"]["platform_commission"] == Decimal("160.00")


def test_commission_stats_filters_by_provider_and_window(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        _seed_dashboard(db)
        provider_b = commission_stats(db, provider_id="provider-b")
        future = commission_stats(db, date_from=datetime(2999, 1, 1))

    assert provider_b["provider_id"] == "provider-b"
    assert provider_b["totals"]["invoice_count"] == 1
    assert provider_b["totals"]["platform_commission"] == Decimal("60.00")
    assert provider_b["by_status"]["cancelled"]["invoice_count"] == 1
    assert provider_b["by_status"]["paid"]["invoice_count"] == 0

    assert future["totals"]["invoice_count"] == 0
    assert future["totals"]["booking_amount"] == Decimal("0.00")


def test_provider_summary_per_provider(tmp_path):
    SessionLocal = _session(tmp_path)
    with SessionLocal() as db:
        _seed_dashboard(db)
        rows = provider_summary(db)

    assert [row["provider_id"] for row in rows] == ["provider-a", "provider-b"]
    provider_a, provider_b = rows
    assert provider_a["total_invoices"] == 2
    assert provider_a["total_revenue"] == Decimal("1500.00")
    assert provider_a["total_platform_commission"] == Decimal("300.00")
    assert provider_a["total_partner_commission"] == Decimal("100.00")
    assert provider_a["paid_invoices"] == 1
    assert provider_a["pending_invoices"] == 1

    assert provider_b["total_invoices"] == 1
    assert provider_b["total_revenue"] == Decimal("300.00")
    assert provider_b["overdue_invoices"] == 1
    assert provider_b["cancelled_invoices"] == 1
