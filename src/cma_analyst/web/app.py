"""FastAPI application factory with a session eviction loop."""

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from cma_analyst.config import Settings
from cma_analyst.logging import configure_logging, get_logger
from cma_analyst.service import AnalysisService

logger = get_logger(__name__)

EVICTION_INTERVAL_SECONDS = 300


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response


async def _eviction_loop(service: AnalysisService, interval_seconds: int) -> None:
    """Drop expired sessions on a recurring schedule."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await service.evict_expired_sessions()
        except Exception:
            logger.error("session_eviction_error", exc_info=True)


def create_app(
    settings: Settings | None = None,
    *,
    service: AnalysisService | None = None,
    evict_sessions: bool = True,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings: Application settings. Loaded from env if not provided.
        service: Pre-built service (tests inject one with fake providers).
        evict_sessions: Whether to run the background session eviction loop.
    """
    if settings is None:
        settings = service.settings if service is not None else Settings()

    configure_logging(json_output=settings.json_logs, level=logging.INFO)

    if service is None:
        service = AnalysisService(settings)
    eviction_task: asyncio.Task[None] | None = None

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        nonlocal eviction_task
        await service.initialize()
        app.state.service = service
        app.state.settings = settings

        if evict_sessions:
            eviction_task = asyncio.create_task(
                _eviction_loop(service, EVICTION_INTERVAL_SECONDS)
            )
        logger.info("web_server_started", **service.describe())

        yield

        # Shutdown
        if eviction_task:
            eviction_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await eviction_task
        await service.close()
        logger.info("web_server_stopped")

    app = FastAPI(title="CMA Analyst", lifespan=lifespan)

    # Security headers
    app.add_middleware(SecurityHeadersMiddleware)

    # Register routes
    from cma_analyst.web.routes import router

    app.include_router(router)

    return app
