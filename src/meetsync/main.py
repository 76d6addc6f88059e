"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
and the v1 API router. Every service is built once in the lifespan and
stored on app.state; routes receive them through api.deps.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.meetsync.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetsync.api.v1.router import router as v1_router
from src.meetsync.calendar.cache import CalendarEventCache
from src.meetsync.calendar.connections import CalendarConnectionHandler
from src.meetsync.calendar.repository import CalendarRepository
from src.meetsync.calendar.scheduler import AutoScheduler
from src.meetsync.config import Settings, get_settings
from src.meetsync.core.database import close_db, get_session, init_db
from src.meetsync.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetsync.meetings.bot.meetingbaas_client import MeetingBaasClient
from src.meetsync.meetings.identity import UserResolver
from src.meetsync.meetings.ingestion import ArtifactFetcher, ArtifactIngestionPipeline
from src.meetsync.meetings.minutes.generator import MinutesGenerator
from src.meetsync.meetings.reconciler import MeetingReconciler
from src.meetsync.meetings.repository import MeetingRepository
from src.meetsync.webhooks.dispatcher import WebhookDispatcher

logger = structlog.get_logger(__name__)


def init_services(app: FastAPI, settings: Settings) -> None:
    """Construct every collaborator once and attach it to app.state."""
    meeting_repository = MeetingRepository(session_factory=get_session)
    calendar_repository = CalendarRepository(session_factory=get_session)

    if not settings.MEETINGBAAS_API_KEY:
        logger.warning("startup.meetingbaas_key_missing")
    client = MeetingBaasClient(
        api_key=settings.MEETINGBAAS_API_KEY,
        base_url=settings.MEETINGBAAS_BASE_URL,
        timeout=settings.MEETINGBAAS_TIMEOUT_SECONDS,
        max_retries=settings.MEETINGBAAS_MAX_RETRIES,
        retry_base_ms=settings.MEETINGBAAS_RETRY_BASE_MS,
    )

    minutes_generator = None
    if settings.ANTHROPIC_API_KEY:
        minutes_generator = MinutesGenerator(
            model=settings.LLM_MODEL,
            max_tokens=settings.LLM_MAX_TOKENS,
            timeout=settings.LLM_TIMEOUT,
        )
    else:
        logger.warning("startup.minutes_generation_disabled", reason="ANTHROPIC_API_KEY not set")

    pipeline = ArtifactIngestionPipeline(
        repository=meeting_repository,
        fetcher=ArtifactFetcher(timeout=settings.ARTIFACT_TIMEOUT_SECONDS),
        minutes_generator=minutes_generator,
    )
    reconciler = MeetingReconciler(
        repository=meeting_repository,
        resolver=UserResolver(meeting_repository, calendar_repository),
        client=client,
        pipeline=pipeline,
        calendar_repository=calendar_repository,
        bot_name=settings.BOT_NAME,
        recording_mode=settings.BOT_RECORDING_MODE,
        transcription_provider=settings.TRANSCRIPTION_PROVIDER,
    )
    calendar_cache = CalendarEventCache(
        repository=calendar_repository,
        client=client,
        ttl=timedelta(hours=settings.CALENDAR_CACHE_TTL_HOURS),
        events_limit=settings.CALENDAR_EVENTS_LIMIT,
    )

    app.state.meeting_repository = meeting_repository
    app.state.calendar_repository = calendar_repository
    app.state.meetingbaas_client = client
    app.state.reconciler = reconciler
    app.state.calendar_cache = calendar_cache
    app.state.auto_scheduler = AutoScheduler(
        client=client,
        cache=calendar_cache,
        calendar_repository=calendar_repository,
        reconciler=reconciler,
        recording_mode=settings.BOT_RECORDING_MODE,
        transcription_provider=settings.TRANSCRIPTION_PROVIDER,
        delay_seconds=settings.AUTO_SCHEDULE_DELAY_SECONDS,
    )
    app.state.webhook_dispatcher = WebhookDispatcher(
        reconciler=reconciler,
        connections=CalendarConnectionHandler(calendar_repository),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry, and services on startup."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    init_services(app, settings)
    logger.info("startup.complete", environment=settings.ENVIRONMENT.value)

    yield

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="MeetSync API",
        version="0.1.0",
        description="Meeting recording reconciliation and calendar auto-scheduling",
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

    app.add_middleware(LoggingMiddleware)

    # Outermost -- records Prometheus metrics for all requests
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
