"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- webhook_events_total / vendor_requests_total: domain counters
- track_vendor_call(): Context manager for vendor API call metrics
- init_sentry(): Initialize Sentry
- get_metrics_response(): Response for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import sentry_sdk
from prometheus_client import REGISTRY, Counter, Histogram, generate_latest
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Webhook Metrics ──────────────────────────────────────────────────────────

webhook_events_total = Counter(
    "webhook_events_total",
    "Inbound vendor webhook events by outcome",
    ["event", "outcome"],
)

# ── Vendor Metrics ───────────────────────────────────────────────────────────

vendor_requests_total = Counter(
    "vendor_requests_total",
    "Outbound MeetingBaas API calls",
    ["operation", "status"],
)

vendor_request_duration_seconds = Histogram(
    "vendor_request_duration_seconds",
    "MeetingBaas API call duration in seconds, retries included",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

auto_schedule_results_total = Counter(
    "auto_schedule_results_total",
    "Auto-scheduler outcomes per calendar event",
    ["result"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Vendor Call Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_vendor_call(operation: str) -> AsyncGenerator[None, None]:
    """Record count and duration for one logical vendor call.

    Usage:
        async with track_vendor_call("schedule_calendar_bot"):
            data = await self._request(...)
    """
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        vendor_requests_total.labels(operation=operation, status=status).inc()
        vendor_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
