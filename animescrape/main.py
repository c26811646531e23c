"""FastAPI application entry point with lifespan management.

Startup: configure logging, start the fetch orchestrator (proxy refresh,
worker pool, task queue dispatch, autoscale and cache sweep loops).
Shutdown: graceful drain: drain the task queue, stop background loops,
close the worker pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from animescrape.config.settings import FetchSettings
from animescrape.integration.jikan import JikanClient
from animescrape.logging_config import configure_logging
from animescrape.middleware.error_handler import register_error_handlers
from animescrape.middleware.request_id import RequestIdMiddleware
from animescrape.resilience.rate_limiter import TokenBucketLimiter
from animescrape.routers.admin import create_admin_router
from animescrape.routers.anime import create_anime_router
from animescrape.routers.fetch import create_fetch_router
from animescrape.routers.health import create_health_router
from animescrape.services.orchestrator import FetchOrchestrator

logger = logging.getLogger(__name__)


def create_app(
    settings: FetchSettings | None = None,
    *,
    orchestrator: FetchOrchestrator | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The orchestrator is built from *settings* unless one is supplied; it is
    started and shut down by the application lifespan.
    """
    settings = settings or FetchSettings()
    orchestrator = orchestrator or FetchOrchestrator.from_settings(settings)
    client_limiter = TokenBucketLimiter(
        tokens=settings.client_rate_limit_requests,
        interval_seconds=settings.client_rate_limit_window_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown logic."""
        configure_logging(settings.log_level)
        logger.info("Starting fetch service on port %d", settings.port)

        await orchestrator.start()
        logger.info("Fetch service started successfully")

        yield

        # --- Shutdown ---
        logger.info("Shutting down fetch service...")
        await orchestrator.shutdown()
        logger.info("Fetch service shut down")

    app = FastAPI(
        title="animescrape fetch service",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.orchestrator = orchestrator

    # Register error handlers
    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(create_health_router(orchestrator=orchestrator))
    app.include_router(
        create_fetch_router(orchestrator=orchestrator, client_limiter=client_limiter)
    )
    app.include_router(
        create_anime_router(
            jikan=JikanClient(orchestrator, settings.jikan_base_url),
            client_limiter=client_limiter,
        )
    )
    app.include_router(create_admin_router(orchestrator=orchestrator))

    return app


app = create_app()
