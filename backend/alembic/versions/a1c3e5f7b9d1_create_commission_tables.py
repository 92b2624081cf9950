"""create commission tables

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2026-09-14 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "a1c3e5f7b9d1"
down_revision = None
branch_labels = None
depends_on = None


INVOICE_STATUSES = ("pending", "paid", "overdue", "cancelled")
PAYMENT_STATUSES = ("completed", "failed")
CREDIT_STATUSES = ("pending", "paid", "cancelled")


def upgrade():
    op.create_table(
        "commission_invoices",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_number", sa.String(length=32), nullable=False),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("provider_id", sa.String(), nullable=False),
        sa.Column("activity_id", sa.String(), nullable=True),
        sa.Column("customer_id", sa.String(), nullable=True),
        sa.Column("booking_created_at", sa.DateTime(), nullable=True),
        sa.Column("total_booking_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("platform_commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("platform_commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("partner_commission_rate", sa.Numeric(5, 2), nullable=True),
        sa.Column("partner_commission_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("platform_net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("provider_net_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("is_referral_booking", sa.Boolean(), nullable=False),
        sa.Column("establishment_id", sa.String(), nullable=True),
        sa.Column("referral_visit_id", sa.String(length=36), nullable=True),
        sa.Column("commission_tier", sa.String(), nullable=True),
        sa.Column("invoice_status", sa.String(length=9), nullable=False),
        sa.Column("status_reason", sa.String(), nullable=True),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("payment_method", sa.String(), nullable=True),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("stripe_payment_link_id", sa.String(), nullable=True),
        sa.Column("stripe_payment_link_url", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("booking_id", name="uq_commission_invoices_booking"),
        sa.UniqueConstraint("invoice_number", name="uq_commission_invoices_number"),
        sa.CheckConstraint(
            f"invoice_status IN {INVOICE_STATUSES}",
            name="ck_commission_invoices_status",
        ),
        sa.CheckConstraint(
            "partner_commission_amount IS NULL OR partner_commission_amount <= platform_commission_amount",
            name="ck_commission_invoices_partner_le_platform",
        ),
        sa.CheckConstraint("provider_net_amount >= 0", name="ck_commission_invoices_provider_net"),
    )
    op.create_index("ix_commission_invoices_id", "commission_invoices", ["id"], unique=False)
    op.create_index(
        "ix_commission_invoices_status_due",
        "commission_invoices",
        ["invoice_status", "due_date"],
        unique=False,
    )
    op.create_index(
        "ix_commission_invoices_provider_created",
        "commission_invoices",
        ["provider_id", "created_at"],
        unique=False,
    )
    op.create_index(
        "ix_commission_invoices_establishment_created",
        "commission_invoices",
        ["establishment_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "commission_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("payment_status", sa.String(length=9), nullable=False),
        sa.Column("payment_reference", sa.String(), nullable=True),
        sa.Column("webhook_event_id", sa.String(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["commission_invoices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            f"payment_status IN {PAYMENT_STATUSES}",
            name="ck_commission_payments_status",
        ),
    )
    op.create_index("ix_commission_payments_id", "commission_payments", ["id"], unique=False)
    op.create_index("ix_commission_payments_invoice", "commission_payments", ["invoice_id"], unique=False)
    op.create_index(
        "ix_commission_payments_reference",
        "commission_payments",
        ["payment_reference"],
        unique=False,
    )

    op.create_table(
        "establishment_commissions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("establishment_id", sa.String(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), nullable=False),
        sa.Column("booking_id", sa.String(), nullable=False),
        sa.Column("referral_visit_id", sa.String(length=36), nullable=True),
        sa.Column("commission_rate", sa.Numeric(5, 2), nullable=False),
        sa.Column("booking_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("commission_status", sa.String(length=9), nullable=False),
        sa.Column("booking_source", sa.String(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["invoice_id"], ["commission_invoices.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("invoice_id", name="uq_establishment_commissions_invoice"),
        sa.CheckConstraint(
            f"commission_status IN {CREDIT_STATUSES}",
            name="ck_establishment_commissions_status",
        ),
    )
    op.create_index("ix_establishment_commissions_id", "establishment_commissions", ["id"], unique=False)
    op.create_index(
        "ix_establishment_commissions_establishment_status",
        "establishment_commissions",
        ["establishment_id", "commission_status"],
        unique=False,
    )

    op.create_table(
        "referral_visits",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("establishment_id", sa.String(), nullable=False),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("source", sa.String(), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("metadata_json", sa.JSON(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_referral_visits_establishment_created",
        "referral_visits",
        ["establishment_id", "created_at"],
        unique=False,
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("stripe_event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("processed", sa.Boolean(), nullable=False),
        sa.Column("outcome", sa.String(), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_event_id", name="uq_webhook_events_stripe_event_id"),
    )
    op.create_index("ix_webhook_events_id", "webhook_events", ["id"], unique=False)
    op.create_index(
        "ix_webhook_events_type_seen",
        "webhook_events",
        ["event_type", "first_seen_at"],
        unique=False,
    )


def downgrade():
    op.drop_index("ix_webhook_events_type_seen", table_name="webhook_events")
    op.drop_index("ix_webhook_events_id", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_referral_visits_establishment_created", table_name="referral_visits")
    op.drop_table("referral_visits")

    op.drop_index(
        "ix_establishment_commissions_establishment_status",
        table_name="establishment_commissions",
    )
    op.drop_index("ix_establishment_commissions_id", table_name="establishment_commissions")
    op.drop_table("establishment_commissions")

    op.drop_index("ix_commission_payments_reference", table_name="commission_payments")
    op.drop_index("ix_commission_payments_invoice", table_name="commission_payments")
    op.drop_index("ix_commission_payments_id", table_name="commission_payments")
    op.drop_table("commission_payments")

    op.drop_index("ix_commission_invoices_establishment_created", table_name="commission_invoices")
    op.drop_index("ix_commission_invoices_provider_created", table_name="commission_invoices")
    op.drop_index("ix_commission_invoices_status_due", table_name="commission_invoices")
    op.drop_index("ix_commission_invoices_id", table_name="commission_invoices")
    op.drop_table("commission_invoices")
