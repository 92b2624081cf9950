from __future__ import annotations

import logging

import stripe
from sqlalchemy.orm import Session

from settlement.core.commission import to_minor_units
from settlement.core.config import settings
from settlement.core.errors import GatewayNotConfigured, InvalidInvoiceTransition, PaymentGatewayError
from settlement.core.invoices import PAYABLE_STATUSES, get_invoice_or_404
from settlement.crud.invoices import set_payment_link
from settlement.models.invoices import CommissionInvoice


logger = logging.getLogger(__name__)


def _require_stripe_key() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise GatewayNotConfigured()
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _success_url(invoice: CommissionInvoice, base_url: str | None) -> str:
    base = settings.APP_BASE_URL or base_url or "http://localhost:3000"
    return f"{base.rstrip('/')}/commission/payment-success?invoice_id={invoice.id}"


def _metadata(invoice: CommissionInvoice) -> dict[str, str]:
    # Copied onto the PaymentIntent so payment_intent.* events reconcile too.
    return {
        "type": "commission_payment",
        "invoice_id": str(invoice.id),
        "invoice_number": invoice.invoice_number,
        "provider_id": invoice.provider_id,
        "booking_id": invoice.booking_id,
    }


def create_payment_link(
    db: Session,
    invoice_id: int,
    *,
    base_url: str | None = None,
) -> CommissionInvoice:
    """Create (once) a hosted Stripe payment link for the commission due."""
    invoice = get_invoice_or_404(db, invoice_id)
    if invoice.stripe_payment_link_id and invoice.stripe_payment_link_url:
        return invoice
    if invoice.invoice_status not in PAYABLE_STATUSES:
        raise InvalidInvoiceTransition(invoice.id, invoice.invoice_status.value, "payment_link")

    _require_stripe_key()
    metadata = _metadata(invoice)
    try:
        price = stripe.Price.create(
            currency=settings.STRIPE_CURRENCY,
            unit_amount=to_minor_units(invoice.platform_commission_amount),
            product_data={"name": f"Platform commission {invoice.invoice_number}"},
        )
        link = stripe.PaymentLink.create(
            line_items=[{"price": price["id"], "quantity": 1}],
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            after_completion={
                "type": "redirect",
                "redirect": {"url": _success_url(invoice, base_url)},
            },
        )
    except stripe.StripeError as exc:
        logger.exception("payment_link.failed", extra={"invoice_id": invoice.id})
        raise PaymentGatewayError(str(exc)) from exc

    invoice = set_payment_link(db, invoice, link_id=link["id"], link_url=link["url"])
    logger.info(
        "payment_link.created",
        extra={"invoice_id": invoice.id, "payment_link_id": invoice.stripe_payment_link_id},
    )
    return invoice
