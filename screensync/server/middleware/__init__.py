"""
Middleware for the API server.
"""

from screensync.server.middleware.metrics import MetricsMiddleware, metrics_endpoint

__all__ = [
    "MetricsMiddleware",
    "metrics_endpoint",
]
