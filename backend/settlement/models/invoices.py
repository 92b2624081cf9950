from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from settlement.core.db import Base
from settlement.core.time import utcnow
from settlement.models.enums import InvoiceStatusEnum, PaymentStatusEnum, enum_values
from settlement.models.mixins import TimestampMixin


class CommissionInvoice(TimestampMixin, Base):
    __tablename__ = "commission_invoices"
    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_commission_invoices_booking"),
        UniqueConstraint("invoice_number", name="uq_commission_invoices_number"),
        CheckConstraint(
            "partner_commission_amount IS NULL OR partner_commission_amount <= platform_commission_amount",
            name="ck_commission_invoices_partner_le_platform",
        ),
        CheckConstraint("provider_net_amount >= 0", name="ck_commission_invoices_provider_net"),
        Index("ix_commission_invoices_status_due", "invoice_status", "due_date"),
        Index("ix_commission_invoices_provider_created", "provider_id", "created_at"),
        Index("ix_commission_invoices_establishment_created", "establishment_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), nullable=False)
    booking_id = Column(String, nullable=False)
    provider_id = Column(String, nullable=False)
    activity_id = Column(String, nullable=True)
    customer_id = Column(String, nullable=True)
    booking_created_at = Column(DateTime, nullable=True)

    total_booking_amount = Column(Numeric(12, 2), nullable=False)
    platform_commission_rate = Column(Numeric(5, 2), nullable=False)
    platform_commission_amount = Column(Numeric(12, 2), nullable=False)
    partner_commission_rate = Column(Numeric(5, 2), nullable=True)
    partner_commission_amount = Column(Numeric(12, 2), nullable=True)
    platform_net_amount = Column(Numeric(12, 2), nullable=False)
    provider_net_amount = Column(Numeric(12, 2), nullable=False)

    # Attribution is frozen at creation and never recomputed.
    is_referral_booking = Column(Boolean, nullable=False, default=False)
    establishment_id = Column(String, nullable=True)
    referral_visit_id = Column(String(36), nullable=True)
    commission_tier = Column(String, nullable=True)

    invoice_status = Column(
        Enum(
            InvoiceStatusEnum,
            name="commission_invoice_status_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=InvoiceStatusEnum.PENDING,
    )
    status_reason = Column(String, nullable=True)
    due_date = Column(DateTime, nullable=False)
    paid_at = Column(DateTime, nullable=True)
    payment_method = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True)

    stripe_payment_link_id = Column(String, nullable=True)
    stripe_payment_link_url = Column(Text, nullable=True)

    payments = relationship(
        "CommissionPayment",
        back_populates="invoice",
        order_by="CommissionPayment.id",
        lazy="selectin",
    )


class CommissionPayment(Base):
    """Append-only record of a payment attempt against an invoice."""

    __tablename__ = "commission_payments"
    __table_args__ = (
        Index("ix_commission_payments_invoice", "invoice_id"),
        Index("ix_commission_payments_reference", "payment_reference"),
    )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("commission_invoices.id", ondelete="RESTRICT"),
        nullable=False,
    )
    amount = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String, nullable=False)
    payment_status = Column(
        Enum(
            PaymentStatusEnum,
            name="commission_payment_status_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
    )
    payment_reference = Column(String, nullable=True)
    webhook_event_id = Column(String, nullable=True)
    failure_reason = Column(Text, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    invoice = relationship("CommissionInvoice", back_populates="payments")
