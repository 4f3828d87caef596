import asyncio
import logging
from contextlib import asynccontextmanager, suppress

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.httpsredirect import HTTPSRedirectMiddleware
from starlette.middleware.trustedhost import TrustedHostMiddleware

from omnidesk.api.errors import install_exception_handlers
from omnidesk.api.router import api_router
from omnidesk.core.app_logging import configure_logging, install_access_logging
from omnidesk.core.config import Settings, get_settings
from omnidesk.domain.sla import SlaPolicy
from omnidesk.domain.triggers import KeywordTriggerDetector
from omnidesk.infra.db.storage import SqlStorageProvider
from omnidesk.infra.memory.store import InMemoryStorageProvider
from omnidesk.infra.storage import StorageProvider
from omnidesk.integrations.ai import HttpReplyGenerator, ReplyGenerator, UnconfiguredReplyGenerator
from omnidesk.integrations.delivery import GraphApiMessageSender
from omnidesk.services.delivery import RetryPolicy
from omnidesk.services.escalation_scheduler import run_forever
from omnidesk.services.session_registry import SessionLimits
from omnidesk.services.webhook_service import ReplyCollaborators

logger = logging.getLogger(__name__)


async def build_storage_provider(settings: Settings) -> StorageProvider:
    if settings.uses_memory_storage:
        logger.warning("Using in-memory storage; data is lost on restart")
        return InMemoryStorageProvider()
    return await SqlStorageProvider.from_settings(settings)


def build_collaborators(settings: Settings, client: httpx.AsyncClient) -> ReplyCollaborators:
    reply_generator: ReplyGenerator
    if settings.ai_service_url:
        reply_generator = HttpReplyGenerator(
            client, settings.ai_service_url, settings.ai_service_api_key
        )
    else:
        logger.warning("AI_SERVICE_URL is not set; every AI turn will use the fallback reply")
        reply_generator = UnconfiguredReplyGenerator()

    return ReplyCollaborators(
        reply_generator=reply_generator,
        sender=GraphApiMessageSender(client, settings),
        trigger_detector=KeywordTriggerDetector(settings.ticket_trigger_keywords),
        sla_policy=SlaPolicy.with_overrides(settings.sla_matrix),
        retry_policy=RetryPolicy.from_settings(settings),
        session_limits=SessionLimits.from_settings(settings),
        reply_timeout=settings.ai_reply_timeout_seconds,
        fallback_reply=settings.ai_fallback_reply,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    # Initialize infrastructure
    provider = app.state.storage_provider or await build_storage_provider(settings)
    app.state.storage_provider = provider
    http_client = httpx.AsyncClient(timeout=settings.delivery_timeout_seconds)
    if app.state.collaborators is None:
        app.state.collaborators = build_collaborators(settings, http_client)

    sweep_task: asyncio.Task | None = None
    if settings.sla_sweep_enabled:
        sweep_task = asyncio.create_task(
            run_forever(
                provider,
                settings.sla_sweep_interval_seconds,
                app.state.collaborators.session_limits,
            )
        )

    yield

    # Graceful shutdown
    if sweep_task is not None:
        sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await sweep_task
    await http_client.aclose()
    await provider.close()


def create_app(
    settings: Settings | None = None,
    storage_provider: StorageProvider | None = None,
    collaborators: ReplyCollaborators | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    settings.validate_security_settings()
    configure_logging(settings.log_level, settings.log_json)

    app = FastAPI(
        title="Omnidesk Support API",
        version="0.1.0",
        docs_url="/docs" if settings.app_env != "production" else None,
        redoc_url="/redoc" if settings.app_env != "production" else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.storage_provider = storage_provider
    app.state.collaborators = collaborators

    if settings.trusted_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.trusted_hosts,
        )

    if settings.force_https:
        app.add_middleware(HTTPSRedirectMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-Id"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault(
            "Referrer-Policy",
            "strict-origin-when-cross-origin",
        )
        if settings.force_https:
            response.headers.setdefault(
                "Strict-Transport-Security",
                "max-age=31536000; includeSubDomains",
            )
        return response

    install_access_logging(app)
    install_exception_handlers(app)
    app.include_router(api_router, prefix="/api")

    @app.get("/", tags=["meta"])
    async def root() -> dict[str, str]:
        return {"service": "omnidesk", "status": "ok"}

    return app


app = create_app()
