"""
Commission math for a single booking.

Everything here is pure: amounts go in as decimals, are converted to
integer minor units (cents/satang), split, and converted back. No floats
touch money, so repeated calls always agree to the last unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from settlement.core.config import settings
from settlement.core.errors import InvalidAmount, InvalidReferral


HUNDRED = Decimal("100")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class CommissionRates:
    platform_rate: Decimal
    partner_share: Decimal

    def __post_init__(self) -> None:
        for name in ("platform_rate", "partner_share"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
                value = getattr(self, name)
            if value < 0 or value > HUNDRED:
                raise ValueError(f"{name} must be between 0 and 100, got {value}")

    @property
    def partner_rate(self) -> Decimal:
        """Partner commission as a percent of the booking total."""
        return (self.platform_rate * self.partner_share / HUNDRED).quantize(CENT)


@dataclass(frozen=True)
class ReferralContext:
    establishment_id: str
    visit_id: str | None = None


@dataclass(frozen=True)
class CommissionBreakdown:
    booking_total: Decimal
    platform_fee: Decimal
    platform_net: Decimal
    referral_commission: Decimal
    provider_amount: Decimal
    has_referral: bool
    rates: CommissionRates
    establishment_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "booking_total": self.booking_total,
            "platform_fee": self.platform_fee,
            "platform_net": self.platform_net,
            "referral_commission": self.referral_commission,
            "provider_amount": self.provider_amount,
            "has_referral": self.has_referral,
            "establishment_id": self.establishment_id,
            "platform_rate": self.rates.platform_rate,
            "partner_rate": self.rates.partner_rate if self.has_referral else None,
        }


def default_rates() -> CommissionRates:
    return CommissionRates(
        platform_rate=settings.PLATFORM_COMMISSION_RATE,
        partner_share=settings.PARTNER_COMMISSION_SHARE,
    )


def rates_for_tier(tier: str | None) -> CommissionRates:
    """Rates for an establishment package, falling back to the defaults."""
    base = default_rates()
    if not tier:
        return base
    overrides = settings.COMMISSION_TIERS.get(tier.strip().lower())
    if not overrides:
        return base
    return CommissionRates(
        platform_rate=overrides.get("platform_rate", base.platform_rate),
        partner_share=overrides.get("partner_share", base.partner_share),
    )


def to_minor_units(amount: Any) -> int:
    if isinstance(amount, bool) or amount is None:
        raise InvalidAmount()
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount() from exc
    if not value.is_finite():
        raise InvalidAmount()
    scaled = value * HUNDRED
    # More than two decimals is invalid, never rounded.
    if scaled != scaled.to_integral_value():
        raise InvalidAmount()
    minor = int(scaled)
    if minor <= 0:
        raise InvalidAmount()
    return minor


def from_minor_units(minor: int) -> Decimal:
    return (Decimal(minor) / HUNDRED).quantize(CENT)


def _percent_of(minor: int, percent: Decimal) -> int:
    return int((Decimal(minor) * percent / HUNDRED).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def compute_breakdown(
    booking_total: Any,
    referral: ReferralContext | None = None,
    rates: CommissionRates | None = None,
) -> CommissionBreakdown:
    total_minor = to_minor_units(booking_total)
    rates = rates or default_rates()

    establishment_id = None
    if referral is not None:
        establishment_id = (referral.establishment_id or "").strip()
        if not establishment_id:
            raise InvalidReferral()

    fee_minor = _percent_of(total_minor, rates.platform_rate)
    referral_minor = _percent_of(fee_minor, rates.partner_share) if referral is not None else 0
    # partner_share <= 100 keeps referral_minor <= fee_minor.
    return CommissionBreakdown(
        booking_total=from_minor_units(total_minor),
        platform_fee=from_minor_units(fee_minor),
        platform_net=from_minor_units(fee_minor - referral_minor),
        referral_commission=from_minor_units(referral_minor),
        provider_amount=from_minor_units(total_minor - fee_minor),
        has_referral=referral is not None,
        rates=rates,
        establishment_id=establishment_id,
    )
