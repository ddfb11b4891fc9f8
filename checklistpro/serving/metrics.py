"""
Prometheus Metrics

Process-local counters and histograms exposed at ``/api/metrics``.
"""

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

# =============================================================================
# HTTP
# =============================================================================

HTTP_REQUESTS = Counter(
    "checklistpro_http_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

HTTP_REQUEST_DURATION = Histogram(
    "checklistpro_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "route"],
)

# =============================================================================
# STOREFRONT
# =============================================================================

ORDERS_CREATED = Counter(
    "checklistpro_orders_created_total",
    "Orders created, by status right after checkout",
    ["status"],
)

PAYMENT_OUTCOMES = Counter(
    "checklistpro_payment_outcomes_total",
    "Payment attempts by outcome",
    ["outcome"],
)

DOWNLOADS_SERVED = Counter(
    "checklistpro_downloads_served_total",
    "Downloads served, by how the file was produced",
    ["source"],
)

CLIENT_EVENTS = Counter(
    "checklistpro_client_events_total",
    "Client-side analytics events received",
)


def render_metrics() -> bytes:
    return generate_latest()


__all__ = [
    "CLIENT_EVENTS",
    "CONTENT_TYPE_LATEST",
    "DOWNLOADS_SERVED",
    "HTTP_REQUESTS",
    "HTTP_REQUEST_DURATION",
    "ORDERS_CREATED",
    "PAYMENT_OUTCOMES",
    "render_metrics",
]
