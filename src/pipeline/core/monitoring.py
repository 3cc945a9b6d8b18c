"""Prometheus metrics, Sentry integration, and webhook delivery tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- record_webhook_delivery(): counters/histogram for each delivery attempt
- scrub_sensitive_fields(): mask webhook secrets and tokens in Sentry events
- init_sentry(): Initialize Sentry with team-aware before_send callback
- get_metrics_response(): FastAPI route handler body for /metrics
"""

from __future__ import annotations

import time

from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from src.pipeline.integrations.masking import mask_presence

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

webhook_deliveries_total = Counter(
    "webhook_deliveries_total",
    "Webhook delivery attempts",
    ["event", "outcome"],
)

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook delivery duration in seconds",
    ["event"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)

pipeline_events_published_total = Counter(
    "pipeline_events_published_total",
    "Pipeline events handed to the dispatch queue",
    ["event", "status"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Uses the matched route template as the endpoint label so that ids in the
    path do not explode label cardinality. Skips /metrics itself.
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


# ── Webhook Metrics Helper ───────────────────────────────────────────────────


def record_webhook_delivery(event: str, success: bool, duration_ms: int) -> None:
    """Record one webhook delivery attempt."""
    webhook_deliveries_total.labels(
        event=event,
        outcome="success" if success else "failure",
    ).inc()
    webhook_delivery_duration_seconds.labels(event=event).observe(duration_ms / 1000)


# ── Sentry Integration ───────────────────────────────────────────────────────

SENSITIVE_FIELDS = frozenset({"secret_key", "secretKey", "state", "authorization", "token"})


def scrub_sensitive_fields(event: dict) -> dict:
    """Mask sensitive request body fields and headers in a Sentry event."""
    request = event.get("request")
    if not isinstance(request, dict):
        return event
    for section in ("data", "headers"):
        values = request.get(section)
        if not isinstance(values, dict):
            continue
        for key, value in values.items():
            if key in SENSITIVE_FIELDS or key.lower() in SENSITIVE_FIELDS:
                values[key] = mask_presence(str(value) if value is not None else None)
    return event



def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK with team-aware event tagging.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Add team context to Sentry events and mask secrets."""
        try:
            from src.pipeline.core.tenant import get_current_team

            ctx = get_current_team()
            event.setdefault("tags", {})["team_id"] = ctx.team_id
        except RuntimeError:
            pass
        return scrub_sensitive_fields(event)

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
