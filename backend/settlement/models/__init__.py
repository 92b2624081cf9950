from .invoices import CommissionInvoice, CommissionPayment
from .establishment_commissions import EstablishmentCommission
from .referral_visits import ReferralVisit
from .webhook_events import WebhookEvent
from .job_queue import JobQueue
from .job_dead_letters import JobDeadLetter
