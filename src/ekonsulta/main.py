"""FastAPI application factory.

Learn: App factory pattern: create_app() returns a configured FastAPI
instance. Everything a request needs (settings, token service, session
factory) is built here from one Settings object and kept on app.state,
so tests can build an app around their own Settings and database.
Lifespan manages the connections that need an event loop (Redis) and
disposes the engine on shutdown.
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from ekonsulta import __version__
from ekonsulta.api import api_router
from ekonsulta.auth.tokens import TokenService
from ekonsulta.cache import close_redis, init_redis
from ekonsulta.config import Settings, get_settings
from ekonsulta.db.engine import build_engine, build_session_factory
from ekonsulta.errors import UnhandledErrorMiddleware, register_exception_handlers
from ekonsulta.logging import configure_logging
from ekonsulta.middleware.hardening import (
    ApiKeyMiddleware,
    HTTPSRedirectMiddleware,
    RequestSizeLimitMiddleware,
    RequestTimeoutMiddleware,
)
from ekonsulta.middleware.rate_limit import RateLimitMiddleware, buckets_from_settings
from ekonsulta.middleware.request_id import RequestIdMiddleware
from ekonsulta.middleware.security import (
    SecurityHeadersMiddleware,
    SecurityMonitorMiddleware,
)

logger = structlog.get_logger()

CORS_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
CORS_HEADERS = ["Content-Type", "Authorization", "X-Requested-With", "Accept", "Origin"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: FastAPI lifespan replaces on_event("startup") / on_event("shutdown").
    Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "ekonsulta.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    try:
        await init_redis(settings.redis_url)
        logger.info("ekonsulta.redis_connected", url=settings.redis_url)
    except Exception as e:
        # Redis is optional; without it requests are not rate limited
        logger.warning("ekonsulta.redis_unavailable", error=str(e))

    yield

    # Shutdown
    logger.info("ekonsulta.shutdown")
    await close_redis()
    await app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.is_production)

    app = FastAPI(
        title="eKonsulta API",
        description="Authentication and user administration for eKonsulta",
        version=__version__,
        lifespan=lifespan,
        docs_url="/api-docs",
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.started_at = time.monotonic()
    app.state.tokens = TokenService.from_settings(settings)
    app.state.engine = build_engine(settings)
    app.state.session_factory = build_session_factory(app.state.engine)

    register_exception_handlers(app)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → HTTPSRedirect → SecurityHeaders → UnhandledError
    #   → Timeout → SizeLimit → SecurityMonitor → GZip → ApiKey → CORS → RateLimit → handler

    app.add_middleware(RateLimitMiddleware, buckets=buckets_from_settings(settings))
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS + [settings.api_key_header],
        max_age=86400,
    )
    app.add_middleware(
        ApiKeyMiddleware, api_keys=settings.api_keys, header=settings.api_key_header
    )
    app.add_middleware(GZipMiddleware, minimum_size=1024, compresslevel=6)
    app.add_middleware(SecurityMonitorMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_bytes)
    app.add_middleware(
        RequestTimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds
    )
    app.add_middleware(UnhandledErrorMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    if settings.is_production:
        app.add_middleware(HTTPSRedirectMiddleware)
    app.add_middleware(RequestIdMiddleware, quiet_health=settings.is_production)

    # Mount API routes
    app.include_router(api_router)

    @app.get("/", include_in_schema=False)
    async def root():
        return {"message": "Welcome to eKonsulta API", "documentation": "/api-docs"}

    return app


# Default app instance (used by uvicorn: ekonsulta.main:app)
app = create_app()
