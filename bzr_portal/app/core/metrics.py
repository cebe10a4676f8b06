"""
Prometheus metrics for application monitoring.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import time


# Request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Referral metrics
referrals_registered_total = Counter(
    'referrals_registered_total',
    'Successful referral registrations',
    ['tier']
)

referral_rejections_total = Counter(
    'referral_rejections_total',
    'Rejected referral registrations',
    ['reason']
)

referrals_expired_total = Counter(
    'referrals_expired_total',
    'Referral events deactivated by the expiry sweep'
)

# Storage metrics
uploads_total = Counter(
    'uploads_total',
    'Accepted user document uploads'
)

uploads_rejected_total = Counter(
    'uploads_rejected_total',
    'Rejected user document uploads',
    ['reason']
)

object_store_errors_total = Counter(
    'object_store_errors_total',
    'Failed object store calls',
    ['operation']
)

object_store_duration_seconds = Histogram(
    'object_store_duration_seconds',
    'Object store call duration in seconds',
    ['operation'],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        endpoint = request.url.path

        if endpoint == "/metrics":
            return await call_next(request)

        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            # Label by route template, not the raw path
            route = request.scope.get("route")
            if route is not None and getattr(route, "path", None):
                endpoint = route.path
            duration = time.time() - start_time

            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(duration)

        return response


def get_metrics_response(openmetrics: bool = False) -> Response:
    """
    Get Prometheus metrics response.

    Args:
        openmetrics: If True, return OpenMetrics format, else Prometheus format
    """
    if openmetrics:
        content = generate_latest_openmetrics()
        content_type = "application/openmetrics-text; version=1.0.0; charset=utf-8"
    else:
        content = generate_latest()
        content_type = CONTENT_TYPE_LATEST

    return Response(content=content, media_type=content_type)
