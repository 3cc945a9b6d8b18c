"""FastAPI application factory.

Creates the app with team middleware, logging middleware, metrics middleware,
CORS, Sentry, lifespan wiring of repositories and services onto app.state,
the health checks and the /api/v1 router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.pipeline.analytics.funnel import FunnelPolicy
from src.pipeline.analytics.reports import FunnelReportService
from src.pipeline.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.pipeline.api.middleware.team import TeamMiddleware
from src.pipeline.api.v1 import health
from src.pipeline.api.v1.router import router as v1_router
from src.pipeline.config import DispatchMode, Settings, get_settings
from src.pipeline.core.database import close_db, get_session, init_db
from src.pipeline.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.pipeline.core.redis import close_redis, get_redis_pool
from src.pipeline.deals.repository import DealRepository
from src.pipeline.deals.service import DealStageService
from src.pipeline.events.bus import PipelineEventBus
from src.pipeline.events.publisher import StreamEventPublisher, TaskEventPublisher
from src.pipeline.proposals.repository import ProposalRepository
from src.pipeline.proposals.service import ProposalService
from src.pipeline.webhooks.delivery import WebhookSender
from src.pipeline.webhooks.dispatcher import WebhookDispatcher
from src.pipeline.webhooks.repository import WebhookRepository


def build_webhook_dispatcher(
    settings: Settings, http_client: httpx.AsyncClient,
) -> tuple[WebhookRepository, WebhookDispatcher]:
    """Webhook repository plus a dispatcher sending through ``http_client``."""
    repository = WebhookRepository(session_factory=get_session)
    sender = WebhookSender(
        http_client,
        timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        signature_header=settings.WEBHOOK_SIGNATURE_HEADER,
        event_header=settings.WEBHOOK_EVENT_HEADER,
        response_body_limit=settings.WEBHOOK_RESPONSE_BODY_LIMIT,
    )
    return repository, WebhookDispatcher(repository, sender)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Init DB, Sentry and the pipeline services on startup; close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    http_client = httpx.AsyncClient(follow_redirects=False)
    webhook_repository, dispatcher = build_webhook_dispatcher(settings, http_client)
    app.state.webhook_repository = webhook_repository
    app.state.webhook_dispatcher = dispatcher

    if settings.WEBHOOK_DISPATCH_MODE == DispatchMode.task:
        publisher = TaskEventPublisher(dispatcher)
    else:
        publisher = StreamEventPublisher(
            PipelineEventBus(get_redis_pool()), settings.WEBHOOK_STREAM,
        )
    app.state.event_publisher = publisher

    proposal_repository = ProposalRepository(session_factory=get_session)
    app.state.deal_service = DealStageService(
        DealRepository(session_factory=get_session), publisher,
    )
    app.state.proposal_service = ProposalService(proposal_repository, publisher)
    app.state.funnel_report_service = FunnelReportService(
        proposal_repository,
        policy=FunnelPolicy(
            engaged_threshold_seconds=settings.FUNNEL_ENGAGED_THRESHOLD_SECONDS,
        ),
    )
    log.info(
        "pipeline.services_ready",
        dispatch_mode=settings.WEBHOOK_DISPATCH_MODE.value,
        environment=settings.ENVIRONMENT.value,
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    if isinstance(publisher, TaskEventPublisher) and publisher.pending:
        log.info("pipeline.draining_dispatch_tasks", pending=publisher.pending)
        await publisher.drain()

    await http_client.aclose()
    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Pipeline API",
        version="0.1.0",
        description="Deal pipeline, conversion analytics and webhook delivery",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # Team middleware (inner -- resolves team context from JWT/header)
    app.add_middleware(TeamMiddleware)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
