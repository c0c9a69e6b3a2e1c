"""Prometheus metric definitions for the disbursement service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


payment_requests_total = Counter("payment_requests_total", "Total payment requests", ["service"])
payment_success_total = Counter("payment_success_total", "Total successful payments", ["service"])
payment_failure_total = Counter("payment_failure_total", "Total failed payments", ["service", "stage"])
payment_latency_seconds = Histogram("payment_latency_seconds", "Payment initiation latency seconds", ["service"])
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
payment_e2e_seconds = Histogram(
    "payment_e2e_seconds",
    "Payment end-to-end duration seconds from PENDING to terminal",
    ["service", "terminal_state"],
)
duplicate_completions_skipped_total = Counter(
    "duplicate_completions_skipped_total",
    "Completion events ignored because the payment was no longer PROCESSING",
    ["service", "reason"],
)
gateway_submission_failures_total = Counter(
    "gateway_submission_failures_total",
    "Gateway submissions that raised before returning a handle",
    ["service"],
)
notification_failures_total = Counter(
    "notification_failures_total",
    "Notification sink calls that raised",
    ["service", "kind"],
)


def metrics_response() -> Response:
    """Expose all registered Prometheus metrics in text format."""

    return Response(content=generate_latest(), media_type="text/plain")
