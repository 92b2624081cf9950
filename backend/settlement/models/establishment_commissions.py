from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint

from settlement.core.db import Base
from settlement.models.enums import EstablishmentCommissionStatusEnum, enum_values
from settlement.models.mixins import TimestampMixin


class EstablishmentCommission(TimestampMixin, Base):
    """Credit owed to a referring establishment for one paid invoice."""

    __tablename__ = "establishment_commissions"
    __table_args__ = (
        UniqueConstraint("invoice_id", name="uq_establishment_commissions_invoice"),
        Index("ix_establishment_commissions_establishment_status", "establishment_id", "commission_status"),
    )

    id = Column(Integer, primary_key=True, index=True)
    establishment_id = Column(String, nullable=False)
    invoice_id = Column(
        Integer,
        ForeignKey("commission_invoices.id", ondelete="RESTRICT"),
        nullable=False,
    )
    booking_id = Column(String, nullable=False)
    referral_visit_id = Column(String(36), nullable=True)
    commission_rate = Column(Numeric(5, 2), nullable=False)
    booking_amount = Column(Numeric(12, 2), nullable=False)
    commission_amount = Column(Numeric(12, 2), nullable=False)
    commission_status = Column(
        Enum(
            EstablishmentCommissionStatusEnum,
            name="establishment_commission_status_enum",
            native_enum=False,
            validate_strings=True,
            values_callable=enum_values,
        ),
        nullable=False,
        default=EstablishmentCommissionStatusEnum.PENDING,
    )
    booking_source = Column(String, nullable=False, default="qr_code")
    paid_at = Column(DateTime, nullable=True)
