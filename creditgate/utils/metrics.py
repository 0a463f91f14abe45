"""
Prometheus-based metrics for production monitoring.
Provides /metrics endpoint for scraping.
"""
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter, Response


# Counters
access_decisions_total = Counter(
    "access_decisions_total",
    "Total entitlement decisions by kind",
    ["operation", "kind"],
)

verification_tokens_minted_total = Counter(
    "verification_tokens_minted_total",
    "Total verification tokens minted",
    ["purpose"],
)

verification_tokens_claimed_total = Counter(
    "verification_tokens_claimed_total",
    "Total verification token claim attempts",
    ["purpose", "outcome"],  # claimed, lost_race
)

credit_operations_total = Counter(
    "credit_operations_total",
    "Total credit balance operations",
    ["operation"],  # earn, spend, spend_rejected, reset, top_up
)

referrals_registered_total = Counter(
    "referrals_registered_total",
    "Total referral registrations",
    ["outcome"],  # awarded, duplicate
)

telegram_requests_total = Counter(
    "telegram_requests_total",
    "Total Telegram API requests",
    ["method", "status"],
)

shortener_requests_total = Counter(
    "shortener_requests_total",
    "Total link shortener API requests",
    ["status"],
)

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open)",
    ["name"],
)

# Histograms
telegram_request_duration_seconds = Histogram(
    "telegram_request_duration_seconds",
    "Telegram API request duration",
    ["method"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
)

shortener_request_duration_seconds = Histogram(
    "shortener_request_duration_seconds",
    "Link shortener API request duration",
    buckets=[0.1, 0.5, 1, 2, 5, 10],
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
