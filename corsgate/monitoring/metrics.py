from prometheus_client import CollectorRegistry, Histogram, Counter
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from fastapi import APIRouter
from fastapi.responses import Response

registry = CollectorRegistry()

# Label used for targets outside the allowlist, to bound cardinality
INVALID_TARGET_LABEL = "invalid"

proxy_requests_total = Counter(
    "corsgate_proxy_requests_total",
    "Total proxy requests by target, method and response status",
    ["target", "method", "status"],
    registry=registry,
)

proxy_upstream_failures_total = Counter(
    "corsgate_proxy_upstream_failures_total",
    "Total upstream calls that failed before a response was received",
    ["target"],
    registry=registry,
)

proxy_request_duration = Histogram(
    "corsgate_proxy_request_duration_seconds",
    "Time until upstream response headers were received",
    ["target", "method"],
    registry=registry,
)

metrics_router = APIRouter()


@metrics_router.get("/metrics")
async def get_metrics():
    return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)
