"""
Prometheus metrics for the message store.

This module provides:
- HTTP request counter (method, path, status)
- Request latency histogram (method, path)
- Webhook delivery outcome counter (result)
- Webhook message counter (result)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: processed, empty, invalid_payload
webhook_requests_total = Counter(
    "webhook_requests_total",
    "Total webhook deliveries by outcome",
    labelnames=["result"]
)

# result: stored, failed
webhook_messages_total = Counter(
    "webhook_messages_total",
    "Total webhook messages by storage outcome",
    labelnames=["result"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template (e.g. /api/messages/{message_id}) or raw path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_webhook_outcome(result: str, stored: int = 0, failed: int = 0) -> None:
    """
    Record a webhook delivery outcome.

    Args:
        result: "processed", "empty" or "invalid_payload"
        stored: Messages written by this delivery
        failed: Messages that could not be written
    """
    webhook_requests_total.labels(result=result).inc()
    if stored:
        webhook_messages_total.labels(result="stored").inc(stored)
    if failed:
        webhook_messages_total.labels(result="failed").inc(failed)


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
