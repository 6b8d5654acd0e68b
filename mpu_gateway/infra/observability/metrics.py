from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.responses import Response

# Low-cardinality labels: route template (/{key}) and a bounded action set
REQUESTS = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "route", "action", "status"],
)

LATENCY = Histogram(
    "http_request_duration_seconds",
    "Request latency in seconds",
    ["method", "route"],
)


async def metrics_endpoint() -> Response:
    """Prometheus exposition of the default registry."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
