"""Prometheus metric definitions for the STK push service."""

from prometheus_client import Counter, Histogram, generate_latest
from starlette.responses import Response


stk_push_requests_total = Counter("stk_push_requests_total", "Total STK push requests", ["service"])
stk_push_failures_total = Counter(
    "stk_push_failures_total",
    "STK push requests that did not reach the gateway successfully",
    ["service", "reason"],
)
callbacks_received_total = Counter(
    "callbacks_received_total",
    "Gateway callbacks received by outcome",
    ["service", "outcome"],
)
transactions_settled_total = Counter(
    "transactions_settled_total",
    "Transactions moved to a terminal state",
    ["service", "status"],
)
transactions_purged_total = Counter(
    "transactions_purged_total",
    "Settled transactions removed by the retention policy",
    ["service"],
)
gateway_call_seconds = Histogram(
    "gateway_call_seconds",
    "Outbound gateway call duration seconds",
    ["call"],
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
