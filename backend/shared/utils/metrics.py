"""
Metrics collection for the EchoPulse relay.
Wraps prometheus_client; the exporter runs on its own port.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
PROVIDER_REQUESTS = Counter(
    "ep_provider_requests_total",
    "Total upstream provider HTTP requests",
    ["provider", "status"],
)
FETCH_FAILURES = Counter(
    "ep_fetch_failures_total",
    "Match list fetches that failed and were skipped for the cycle",
)
PUSH_REQUESTS = Counter(
    "ep_push_requests_total",
    "Live activity pushes sent to APNs",
    ["event", "status"],
)
SUBSCRIPTION_CHANGES = Counter(
    "ep_subscription_changes_total",
    "Subscription registry mutations",
    ["op"],
)

# ── Histograms ──────────────────────────────────────────────────────────
PROVIDER_LATENCY = Histogram(
    "ep_provider_latency_seconds",
    "Upstream provider request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
PUSH_LATENCY = Histogram(
    "ep_push_latency_seconds",
    "APNs request latency in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)
RECONCILE_CYCLE = Histogram(
    "ep_reconcile_cycle_seconds",
    "Duration of one reconciliation cycle",
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
SUBSCRIPTIONS_ACTIVE = Gauge(
    "ep_subscriptions_active",
    "Device subscriptions currently registered",
)
DIVISIONS_ACTIVE = Gauge(
    "ep_divisions_active",
    "Competition/division pairs with at least one subscription",
)


def start_metrics_server(port: int, enabled: bool = True) -> None:
    """Start the Prometheus metrics HTTP server."""
    if not enabled:
        return
    try:
        start_http_server(port)
        logger.info("metrics_server_started", port=port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=port)
