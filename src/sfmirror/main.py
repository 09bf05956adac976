"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the v1 router and /metrics. The lifespan initializes the database, wires
connector services onto ``app.state`` and runs the CDC consumer as a
background task.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.sfmirror.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.sfmirror.api.v1.router import router as v1_router
from src.sfmirror.config import get_settings
from src.sfmirror.core.database import close_db, get_session, init_db
from src.sfmirror.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.sfmirror.core.redis import close_redis, get_redis_pool
from src.sfmirror.core.security import WebhookSignatureVerifier
from src.sfmirror.entities.registry import get_registry
from src.sfmirror.events.bus import CdcEventBus
from src.sfmirror.events.consumer import WorkItemConsumer
from src.sfmirror.events.dlq import DeadLetterQueue
from src.sfmirror.events.processor import CdcProcessor
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.upsert import UpsertEngine
from src.sfmirror.salesforce.auth import CredentialProvider, SqlTokenStore
from src.sfmirror.salesforce.client import SalesforceClient
from src.sfmirror.salesforce.sync import BulkSyncOrchestrator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, services and consumer; tear down on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(
            dsn=settings.SENTRY_DSN,
            environment=settings.ENVIRONMENT.value,
            service_name=settings.SERVICE_NAME,
        )

    # ── Mirror store and processing ─────────────────────────────────────
    registry = get_registry()
    repository = MirrorRepository(session_factory=get_session)
    upsert_engine = UpsertEngine(repository, registry)
    processor = CdcProcessor(upsert_engine, repository, registry)

    app.state.registry = registry
    app.state.mirror_repository = repository
    app.state.upsert_engine = upsert_engine
    app.state.processor = processor
    app.state.signature_verifier = WebhookSignatureVerifier.from_settings(settings)

    if not settings.webhook_verification_enabled:
        log.warning("startup.webhook_verification_disabled")

    # ── Salesforce ──────────────────────────────────────────────────────
    credential_provider = CredentialProvider(SqlTokenStore(get_session), settings)
    salesforce_client = SalesforceClient(
        credential_provider,
        api_version=settings.SALESFORCE_API_VERSION,
        timeout=settings.SALESFORCE_HTTP_TIMEOUT,
    )
    app.state.credential_provider = credential_provider
    app.state.salesforce_client = salesforce_client
    app.state.bulk_sync = BulkSyncOrchestrator(salesforce_client, upsert_engine, registry)

    # ── Work queue ──────────────────────────────────────────────────────
    bus = CdcEventBus(get_redis_pool())
    dlq = DeadLetterQueue(bus)
    app.state.event_bus = bus
    app.state.dlq = dlq

    consumer_task: asyncio.Task | None = None
    consumer: WorkItemConsumer | None = None
    if settings.CDC_CONSUMER_ENABLED:
        consumer = WorkItemConsumer(
            bus,
            stream=settings.CDC_STREAM_NAME,
            group=settings.CDC_CONSUMER_GROUP,
            consumer_name=settings.CDC_CONSUMER_NAME,
            dlq=dlq,
        )
        consumer_task = asyncio.create_task(consumer.process_loop(processor.handle))
        log.info("startup.cdc_consumer_started", stream=settings.CDC_STREAM_NAME)
    app.state.cdc_consumer = consumer

    log.info(
        "startup.complete",
        enabled_objects=[c.api_name for c in registry.enabled()],
    )

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    if consumer is not None and consumer_task is not None:
        consumer.stop()
        consumer_task.cancel()
        try:
            await consumer_task
        except asyncio.CancelledError:
            pass
        log.info("shutdown.cdc_consumer_stopped")

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Salesforce Mirror Connector",
        version="0.1.0",
        description="Mirrors Salesforce records via Change Data Capture webhooks and bulk sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

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

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
