"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
the access-error handler, lifespan events for database and Redis, and the
v1 API router.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.venuin.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.venuin.api.v1.router import router as v1_router
from src.venuin.config import get_settings
from src.venuin.core.database import close_db, get_session_factory, init_db
from src.venuin.core.errors import AccessError, access_error_handler
from src.venuin.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.venuin.core.redis import close_redis, get_login_throttle
from src.venuin.storage.repository import AccessRepository


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, store and Sentry on startup, close on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    await init_db()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    app.state.access_repository = AccessRepository(get_session_factory())
    app.state.login_throttle = get_login_throttle()

    if settings.dev_override_active:
        log.warning("startup.dev_override_enabled", tenant_id=settings.DEV_OVERRIDE_TENANT_ID or None)
    log.info("startup.complete", environment=settings.ENVIRONMENT.value)

    yield

    await close_redis()
    await close_db()
    log.info("shutdown.complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Venuin Access API",
        version="0.1.0",
        description="Authentication, tenant isolation and plan gating for the Venuin platform",
        lifespan=lifespan,
    )

    app.add_exception_handler(AccessError, access_error_handler)

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing and principal)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router)

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
