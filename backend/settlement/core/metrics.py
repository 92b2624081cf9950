# Centralized Prometheus metrics. The middleware below records timing
# and counts for every request; the settlement counters let dashboards
# track webhook traffic, invoice transitions and queue health.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware


# Generic API latency + request counters, labelled by route template so
# invoice ids do not explode the series count.
REQUEST_DURATION_MS = Histogram(
    "settlement_request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "settlement_requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# Every gateway event we receive, by type and what we did with it
# (processed, duplicate, ignored, deferred, rejected).
WEBHOOK_EVENTS_TOTAL = Counter(
    "settlement_webhook_events_total",
    "Payment gateway webhook events",
    ["event_type", "outcome"],
)

INVOICE_TRANSITIONS_TOTAL = Counter(
    "settlement_invoice_transitions_total",
    "Invoice status transitions applied",
    ["from_status", "to_status"],
)
# A transition requested from a state that does not allow it.
INVOICE_TRANSITION_CONFLICTS_TOTAL = Counter(
    "settlement_invoice_transition_conflicts_total",
    "Invoice transitions skipped because the source state did not match",
    ["current_status", "to_status"],
)
INVOICES_CREATED_TOTAL = Counter(
    "settlement_invoices_created_total",
    "Invoices created",
    ["referral"],
)

NOTIFICATIONS_SENT_TOTAL = Counter(
    "settlement_notifications_sent_total",
    "Notifications sent successfully",
    ["channel_type", "trigger_type"],
)
NOTIFICATIONS_FAILED_TOTAL = Counter(
    "settlement_notifications_failed_total",
    "Notifications that failed to send",
    ["channel_type", "trigger_type"],
)

JOB_RUN_TOTAL = Counter(
    "settlement_job_run_total",
    "Scheduled job runs",
    ["job_name", "status"],
)

QUEUE_DEPTH = Gauge(
    "settlement_queue_depth",
    "Queued jobs by queue",
    ["queue"],
)
QUEUE_JOB_TOTAL = Counter(
    "settlement_queue_job_total",
    "Queue jobs processed",
    ["queue", "job_type", "status"],
)
QUEUE_RETRY_TOTAL = Counter(
    "settlement_queue_retry_total",
    "Queue jobs retried",
    ["queue", "job_type"],
)
QUEUE_DEAD_LETTER_TOTAL = Counter(
    "settlement_queue_dead_letter_total",
    "Queue jobs moved to the dead letter table",
    ["queue", "job_type"],
)
QUEUE_WAIT_SECONDS = Histogram(
    "settlement_queue_wait_seconds",
    "Time a job spent waiting in queue",
    ["queue", "job_type"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800, 3600],
)
QUEUE_RUN_SECONDS = Histogram(
    "settlement_queue_run_seconds",
    "Queue job runtime in seconds",
    ["queue", "job_type"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30, 60],
)


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if hasattr(value, "value"):
        value = value.value
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_webhook_event(event_type: str | None, outcome: str) -> None:
    WEBHOOK_EVENTS_TOTAL.labels(
        event_type=_label(event_type),
        outcome=_label(outcome),
    ).inc()


def record_invoice_transition(from_status, to_status) -> None:
    INVOICE_TRANSITIONS_TOTAL.labels(
        from_status=_label(from_status),
        to_status=_label(to_status),
    ).inc()


def record_transition_conflict(current_status, to_status) -> None:
    INVOICE_TRANSITION_CONFLICTS_TOTAL.labels(
        current_status=_label(current_status),
        to_status=_label(to_status),
    ).inc()


def record_invoice_created(*, referral: bool) -> None:
    INVOICES_CREATED_TOTAL.labels(referral="yes" if referral else "no").inc()


def record_notification_delivery(
    *,
    channel_type: str | None,
    trigger_type: str | None,
    success: bool,
) -> None:
    labels = {
        "channel_type": _label(channel_type),
        "trigger_type": _label(trigger_type),
    }
    if success:
        NOTIFICATIONS_SENT_TOTAL.labels(**labels).inc()
    else:
        NOTIFICATIONS_FAILED_TOTAL.labels(**labels).inc()


def record_job_run(*, job_name: str, success: bool) -> None:
    JOB_RUN_TOTAL.labels(
        job_name=_label(job_name),
        status="success" if success else "failure",
    ).inc()


def record_queue_depth(queue_name: str, depth: int) -> None:
    QUEUE_DEPTH.labels(queue=_label(queue_name)).set(depth)


def record_queue_job(queue_name: str, job_type: str, *, status: str) -> None:
    QUEUE_JOB_TOTAL.labels(
        queue=_label(queue_name),
        job_type=_label(job_type),
        status=_label(status),
    ).inc()


def record_queue_retry(queue_name: str, job_type: str) -> None:
    QUEUE_RETRY_TOTAL.labels(
        queue=_label(queue_name),
        job_type=_label(job_type),
    ).inc()


def record_queue_dead_letter(queue_name: str, job_type: str) -> None:
    QUEUE_DEAD_LETTER_TOTAL.labels(
        queue=_label(queue_name),
        job_type=_label(job_type),
    ).inc()


def record_queue_wait(queue_name: str, job_type: str, seconds: float) -> None:
    QUEUE_WAIT_SECONDS.labels(
        queue=_label(queue_name),
        job_type=_label(job_type),
    ).observe(seconds)


def record_queue_runtime(queue_name: str, job_type: str, seconds: float) -> None:
    QUEUE_RUN_SECONDS.labels(
        queue=_label(queue_name),
        job_type=_label(job_type),
    ).observe(seconds)
