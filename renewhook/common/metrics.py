"""Prometheus metric definitions for webhook delivery."""

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response


webhook_triggers_total = Counter(
    "webhook_triggers_total",
    "Trigger requests by outcome",
    ["service", "outcome"],
)
webhook_attempts_total = Counter(
    "webhook_attempts_total",
    "Delivery attempts by result",
    ["service", "result"],
)
webhook_delivered_total = Counter("webhook_delivered_total", "Events delivered", ["service"])
webhook_failed_total = Counter("webhook_failed_total", "Events that reached terminal failure", ["service"])
webhook_attempt_latency_seconds = Histogram(
    "webhook_attempt_latency_seconds",
    "Latency of a single delivery attempt",
    ["service"],
)
webhook_e2e_seconds = Histogram(
    "webhook_e2e_seconds",
    "Seconds from event creation to terminal status",
    ["service", "terminal_state"],
)
retries_total = Counter("retries_total", "Retry count", ["service", "dependency"])
dlq_recorded_total = Counter(
    "dlq_recorded_total",
    "Dead-letter records written",
    ["service", "error_type"],
)
duplicate_triggers_skipped_total = Counter(
    "duplicate_triggers_skipped_total",
    "Triggers answered from an existing event inside the idempotency window",
    ["service"],
)
recovered_events_total = Counter(
    "recovered_events_total",
    "Events claimed by the recovery sweep",
    ["service"],
)
webhook_pending_total = Gauge(
    "webhook_pending_total",
    "Current count of events not yet in a terminal status",
    ["service"],
)
webhook_oldest_pending_age_seconds = Gauge(
    "webhook_oldest_pending_age_seconds",
    "Age in seconds of the oldest non-terminal event",
    ["service"],
)
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["service", "route", "method", "status_code"],
)
http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration seconds",
    ["service", "route", "method"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
