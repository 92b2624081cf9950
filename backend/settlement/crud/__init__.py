from .invoices import (
    add_invoice,
    create_payment,
    get_invoice,
    get_invoice_by_booking,
    get_invoice_by_number,
    list_invoices,
    list_payments_for_invoice,
    transition_invoice_status,
)
from .referral_visits import create_visit, get_visit, list_visits_for_establishment
from .webhook_events import get_event, mark_event_processed, record_event
from .establishment_commissions import (
    create_commission_credit,
    credit_totals_by_status,
    get_credit_for_invoice,
    list_credits,
)
