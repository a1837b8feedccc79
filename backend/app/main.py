"""Automail Engine - FastAPI Application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import cron, health, hooks, ingest
from api.v1.router import api_v1_router
from app.config import get_settings
from core.logging_config import setup_logging
from core.metrics import MetricsMiddleware, metrics_router
from core.middleware import RequestTrackingMiddleware, setup_exception_handlers
from db.database import close_db, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    setup_logging()

    try:
        settings.validate_secrets()
    except RuntimeError as e:
        logger.critical(f"[startup] FATAL: {e}")
        raise

    await init_db()
    logger.info(f"[startup] {settings.APP_NAME} v{settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    await close_db()
    logger.info("[shutdown] Application shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Email automation and campaign execution engine.",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        lifespan=lifespan,
    )

    # Metrics middleware (outermost, measures all requests)
    app.add_middleware(MetricsMiddleware)

    app.add_middleware(RequestTrackingMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID"],
    )

    setup_exception_handlers(app)

    # Unversioned public endpoints: probes, cron, ingest and webhooks
    app.include_router(health.router, prefix="/api", tags=["Health"])
    app.include_router(cron.router, prefix="/api", tags=["Scheduler"])
    app.include_router(ingest.router, prefix="/api", tags=["Ingest"])
    app.include_router(hooks.router, prefix="/api", tags=["Webhooks"])

    # Authenticated API
    app.include_router(api_v1_router, prefix=settings.API_V1_PREFIX)

    # Prometheus metrics (unauthenticated, for scrapers)
    app.include_router(metrics_router)

    return app


app = create_app()
