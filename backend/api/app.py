"""
FastAPI application factory for the broadcast API service.

Creates the app with:
- Live round and replay routes
- Middleware stack
- Health and Prometheus endpoints
- Lifespan management (adapter clients, background refresh of watched tournaments)
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shared.config import get_settings
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import SERVICE_INFO

from api.dependencies import build_engine, init_dependencies
from api.middleware import setup_middleware
from api.routes.live import router as live_router
from api.routes.replay import router as replay_router

logger = get_logger(__name__)

SERVICE_VERSION = "1.0.0"


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for tests that wire dependencies themselves."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Builds and validates the engine on startup (an unusable tournament entry
    aborts startup), and stops the refresh loop and adapter clients on shutdown.
    """
    settings = get_settings()
    setup_logging("api")
    SERVICE_INFO.info({"version": SERVICE_VERSION, "environment": settings.environment.value})

    engine = build_engine(settings)
    engine.registry.validate()
    await engine.registry.start()
    init_dependencies(engine.registry, engine.live_feed, engine.resolver)

    refresh_task: Optional[asyncio.Task[None]] = None
    if settings.live_watch:
        refresh_task = asyncio.create_task(
            engine.live_feed.refresh_forever(settings.live_watch, settings.live_poll_interval_s)
        )

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        watched=settings.live_watch,
    )

    yield

    engine.live_feed.request_shutdown()
    if refresh_task is not None:
        try:
            await asyncio.wait_for(refresh_task, timeout=5.0)
        except asyncio.TimeoutError:
            refresh_task.cancel()
    await engine.registry.close()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing."""
    settings = get_settings()

    app = FastAPI(
        title="Chess Broadcast API",
        description="Live round snapshots and board replays for chess broadcasts",
        version=SERVICE_VERSION,
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    setup_middleware(app)

    app.include_router(live_router)
    app.include_router(replay_router)

    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    if settings.metrics_enabled:

        @app.get("/metrics", tags=["system"], include_in_schema=False)
        async def metrics() -> Response:
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
