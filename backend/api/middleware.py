"""
API middleware stack.

- Request ID injection (X-Request-ID header)
- Structured request/response logging with latency histograms
- Exception handlers for engine errors
- CORS configuration
"""
from __future__ import annotations

import time
import uuid

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shared.config import get_settings
from shared.errors import InvalidBoardIdentifier, ProviderNotConfigured
from shared.utils.logging import get_logger
from shared.utils.metrics import API_LATENCY

logger = get_logger(__name__)

UNLOGGED_PATHS = ("/health", "/metrics")


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Injects a unique X-Request-ID header into every request/response."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and observes its latency under the matched route template."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in UNLOGGED_PATHS:
            return await call_next(request)

        start = time.perf_counter()
        request_id = getattr(request.state, "request_id", "unknown")
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = time.perf_counter() - start
            API_LATENCY.labels(route=_route_label(request), status="500").observe(elapsed)
            logger.error(
                "http_request_error",
                method=request.method,
                path=path,
                duration_ms=round(elapsed * 1000, 2),
                request_id=request_id,
                error=str(exc),
                exc_info=True,
            )
            raise

        elapsed = time.perf_counter() - start
        API_LATENCY.labels(
            route=_route_label(request), status=str(response.status_code)
        ).observe(elapsed)
        logger.info(
            "http_request",
            method=request.method,
            path=path,
            status=response.status_code,
            duration_ms=round(elapsed * 1000, 2),
            request_id=request_id,
        )
        return response


def setup_exception_handlers(app: FastAPI) -> None:
    """Register handlers mapping engine errors onto HTTP responses."""

    @app.exception_handler(ProviderNotConfigured)
    async def provider_not_configured_handler(
        request: Request, exc: ProviderNotConfigured
    ) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={"error": "provider_not_configured", "slug": exc.slug, "message": exc.detail},
        )

    @app.exception_handler(InvalidBoardIdentifier)
    async def invalid_board_handler(
        request: Request, exc: InvalidBoardIdentifier
    ) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_board_id", "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            request_id=request_id,
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
                "request_id": request_id,
            },
        )


def setup_cors(app: FastAPI) -> None:
    settings = get_settings()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Feed-Version"],
    )


def setup_middleware(app: FastAPI) -> None:
    """Apply all middleware to the FastAPI app in the correct order."""
    setup_cors(app)
    app.add_middleware(RequestLoggingMiddleware)
    # outermost, so the request id exists before logging reads it
    app.add_middleware(RequestIDMiddleware)
    setup_exception_handlers(app)
