# Prometheus Metrics for the archive server
# Provides /_whynot/metrics endpoint for scraping

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from fastapi import APIRouter, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
import time

router = APIRouter()

# --- Metrics Definitions ---

# Request counter (by method, path, status)
REQUEST_COUNT = Counter(
    "whynot_http_requests_total", "Total HTTP requests", ["method", "path", "status"]
)

# Request latency histogram
REQUEST_LATENCY = Histogram(
    "whynot_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

# Active requests gauge
ACTIVE_REQUESTS = Gauge(
    "whynot_http_requests_active", "Number of active HTTP requests"
)

# Archive lookups by outcome
ARCHIVE_LOOKUPS = Counter(
    "whynot_archive_lookups_total",
    "Archive record lookups",
    ["result"],  # "hit", "miss", "bad_path" or "error"
)

METRICS_PATH = "/_whynot/metrics"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware to collect request metrics."""

    async def dispatch(self, request: Request, call_next):
        # Skip metrics endpoint itself
        if request.url.path == METRICS_PATH:
            return await call_next(request)

        ACTIVE_REQUESTS.inc()
        start_time = time.time()

        try:
            response = await call_next(request)

            duration = time.time() - start_time
            path = self._normalize_path(request.url.path)

            REQUEST_COUNT.labels(
                method=request.method, path=path, status=response.status_code
            ).inc()

            REQUEST_LATENCY.labels(method=request.method, path=path).observe(duration)

            return response
        finally:
            ACTIVE_REQUESTS.dec()

    def _normalize_path(self, path: str) -> str:
        """Normalize path to reduce cardinality."""
        if path.startswith("/_whynot/"):
            return path
        if path.startswith("/imgs/"):
            return "/imgs/*"
        if path.startswith("/_/"):
            return "/_/*"
        return "/*"


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def record_lookup(result: str):
    ARCHIVE_LOOKUPS.labels(result=result).inc()
