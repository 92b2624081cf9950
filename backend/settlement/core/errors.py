from __future__ import annotations

from dataclasses import dataclass
from typing import Any


GENERIC_INVOICE_UPDATE_MESSAGE = "Could not update invoice"


@dataclass
class SettlementError(Exception):
    code: str
    message: str
    status_code: int
    public_message: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        # Internal detail stays in the logs; callers only see the public text.
        return {"code": self.code, "message": self.public_message or self.message}


class InvalidAmount(SettlementError):
    def __init__(self, message: str = "Booking total must be a positive amount"):
        super().__init__(code="invalid_amount", message=message, status_code=422)


class InvalidReferral(SettlementError):
    def __init__(self, message: str = "Referral requires an establishment id"):
        super().__init__(code="invalid_referral", message=message, status_code=422)


class DuplicateInvoice(SettlementError):
    def __init__(self, booking_id: str, invoice: Any = None):
        super().__init__(
            code="duplicate_invoice",
            message=f"Invoice already exists for booking {booking_id}",
            status_code=409,
        )
        self.booking_id = booking_id
        self.invoice = invoice


class InvoiceNotFound(SettlementError):
    def __init__(self, invoice_id: int | str | None):
        super().__init__(
            code="invoice_not_found",
            message=f"Invoice {invoice_id} not found",
            status_code=404,
            public_message="Invoice not found",
        )
        self.invoice_id = invoice_id


class InvalidInvoiceTransition(SettlementError):
    def __init__(self, invoice_id: int, from_status: str, to_status: str):
        super().__init__(
            code="invalid_invoice_transition",
            message=f"Invoice {invoice_id} cannot move from {from_status} to {to_status}",
            status_code=409,
            public_message=GENERIC_INVOICE_UPDATE_MESSAGE,
        )
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status


class SignatureVerificationFailed(SettlementError):
    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(code="signature_verification_failed", message=message, status_code=400)


class InvalidWebhookPayload(SettlementError):
    def __init__(self, message: str = "Invalid webhook payload"):
        super().__init__(code="invalid_webhook_payload", message=message, status_code=400)


class GatewayNotConfigured(SettlementError):
    def __init__(self, message: str = "Stripe is not configured"):
        super().__init__(code="gateway_not_configured", message=message, status_code=400)


class PaymentGatewayError(SettlementError):
    def __init__(self, message: str):
        super().__init__(
            code="payment_gateway_error",
            message=message,
            status_code=502,
            public_message="Payment provider request failed",
        )


class StoreUnavailable(SettlementError):
    def __init__(self, message: str = "Invoice store unavailable"):
        super().__init__(
            code="store_unavailable",
            message=message,
            status_code=503,
            public_message="Service temporarily unavailable",
        )


class InvalidReportPeriod(SettlementError):
    def __init__(self, period: str):
        super().__init__(
            code="invalid_report_period",
            message=f"Report period must look like YYYY-MM, got {period!r}",
            status_code=422,
        )


class PaymentAmountMismatch(SettlementError):
    def __init__(self, invoice_id: int, expected: Any, received: Any):
        super().__init__(
            code="payment_amount_mismatch",
            message=f"Invoice {invoice_id} expects {expected}, payment carried {received}",
            status_code=422,
            public_message=GENERIC_INVOICE_UPDATE_MESSAGE,
        )
        self.invoice_id = invoice_id
        self.expected = expected
        self.received = received
