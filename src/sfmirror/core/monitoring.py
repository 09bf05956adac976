"""Prometheus metrics, Sentry integration, and Salesforce call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- CDC and bulk sync counters used by the processor and orchestrator
- track_salesforce_call(): Context manager for outbound Salesforce metrics
- init_sentry(): Initialize Sentry for the connector
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
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

# ── CDC Metrics ──────────────────────────────────────────────────────────────

cdc_work_items_enqueued_total = Counter(
    "cdc_work_items_enqueued_total",
    "Work items queued by the webhook dispatcher",
    ["kind"],
)

cdc_events_processed_total = Counter(
    "cdc_events_processed_total",
    "Change events processed",
    ["object_type", "change_type", "outcome"],
)

bulk_sync_records_total = Counter(
    "bulk_sync_records_total",
    "Records applied (or skipped) by bulk sync",
    ["object_type", "outcome"],
)

# ── Salesforce Metrics ───────────────────────────────────────────────────────

salesforce_requests_total = Counter(
    "salesforce_requests_total",
    "Outbound Salesforce API requests",
    ["operation", "status"],
)

salesforce_request_duration_seconds = Histogram(
    "salesforce_request_duration_seconds",
    "Outbound Salesforce API request duration in seconds",
    ["operation"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Uses the matched route pattern as the endpoint label to keep cardinality
    bounded. Skips the /metrics endpoint itself.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        route = request.scope.get("route")
        endpoint = getattr(route, "path", None) or request.url.path

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


# ── Salesforce Metrics Helper ────────────────────────────────────────────────


@asynccontextmanager
async def track_salesforce_call(operation: str) -> AsyncGenerator[None, None]:
    """Context manager that records count and duration of a Salesforce call.

    Usage:
        async with track_salesforce_call("query"):
            response = await client.get(...)
    """
    start_time = time.perf_counter()
    status = "success"
    try:
        yield
    except Exception:
        status = "error"
        raise
    finally:
        salesforce_requests_total.labels(operation=operation, status=status).inc()
        salesforce_request_duration_seconds.labels(operation=operation).observe(
            time.perf_counter() - start_time
        )


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str, service_name: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
        service_name: Tagged on every event as ``service``.
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        event.setdefault("tags", {})["service"] = service_name
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
