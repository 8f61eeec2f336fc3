"""
Prometheus metrics middleware for monitoring.

Provides:
- Request latency histograms
- Request counters by endpoint
- Active request gauge

Reconciliation, upload and platform-call metrics are defined in
screensync.common.metrics and exposed by the same endpoint.
"""

import time
from typing import Callable

from fastapi import Request, Response
from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from screensync.common.logger import get_logger

logger = get_logger(__name__)

# =============================================================================
# Prometheus Metrics Definitions
# =============================================================================

APP_INFO = Info("screensync_app", "ScreenSync application information")
APP_INFO.info({
    "name": "screensync",
    "description": "Screen playback reconciliation service",
})

HTTP_REQUEST_TOTAL = Counter(
    "screensync_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
)

# Reconcile and publish calls wait on the remote platform; buckets reach a minute
HTTP_REQUEST_DURATION = Histogram(
    "screensync_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

HTTP_REQUESTS_IN_PROGRESS = Gauge(
    "screensync_http_requests_in_progress",
    "HTTP requests currently in progress",
    ["method", "endpoint"],
)


# =============================================================================
# Metrics Middleware
# =============================================================================

class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Middleware that collects Prometheus metrics for all HTTP requests.
    """

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        endpoint = self._get_endpoint(request)

        HTTP_REQUESTS_IN_PROGRESS.labels(method=method, endpoint=endpoint).inc()

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        except Exception as e:
            logger.error("Request error", error=str(e), path=request.url.path)
            raise
        finally:
            duration = time.perf_counter() - start_time

            HTTP_REQUEST_TOTAL.labels(
                method=method,
                endpoint=endpoint,
                status=str(status_code),
            ).inc()

            HTTP_REQUEST_DURATION.labels(
                method=method,
                endpoint=endpoint,
            ).observe(duration)

            HTTP_REQUESTS_IN_PROGRESS.labels(
                method=method,
                endpoint=endpoint,
            ).dec()

    def _get_endpoint(self, request: Request) -> str:
        """Get endpoint path, normalizing path parameters."""
        # e.g. /api/v1/screens/12/reconcile -> /api/v1/screens/{id}/reconcile
        parts = request.url.path.split("/")
        return "/".join("{id}" if part.isdigit() else part for part in parts)


async def metrics_endpoint() -> StarletteResponse:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    return StarletteResponse(
        content=generate_latest(),
        media_type="text/plain; charset=utf-8",
    )
