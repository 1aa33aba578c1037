"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
submissions_created_total = Counter(
    "submissions_created_total",
    "Total number of payment-proof submissions",
    ["feature", "mode"],  # mode: manual / auto
)

grants_issued_total = Counter(
    "grants_issued_total",
    "Total grants written by the approval engine",
    ["feature", "source"],  # source: admin / auto / direct
)

grants_revoked_total = Counter(
    "grants_revoked_total",
    "Total revocations handled by the approval engine",
    ["feature"],
)

grants_swept_total = Counter(
    "grants_swept_total",
    "Expired grant rows physically deleted by the sweeper",
)

approval_retries_total = Counter(
    "approval_retries_total",
    "Approval/revoke operations retried after a transient store error",
)

live_update_events_total = Counter(
    "live_update_events_total",
    "Live-update events by outcome",
    ["event_type", "result"],  # result: published / delivered / dropped / publish_failed
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Gauges
live_update_connections = Gauge(
    "live_update_connections",
    "Currently open live-update stream connections",
)

# Histograms
approval_duration_seconds = Histogram(
    "approval_duration_seconds",
    "Approval engine operation duration",
    ["operation"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1, 2, 5],
)


# Metrics endpoint router
router = APIRouter()


@router.get("/metrics")
def metrics_endpoint() -> Response:
    """Prometheus metrics endpoint for scraping."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
