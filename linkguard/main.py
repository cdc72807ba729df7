"""
linkguard FastAPI application.

Entry point for the security API server.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from linkguard import db
from linkguard.config import SecurityConfig, settings
from linkguard.errors import StoreUnavailable
from linkguard.routes import security as security_routes
from linkguard.services.magic_link_guard import MagicLinkGuard
from linkguard.storage import postgres_stores

logger = logging.getLogger(__name__)


async def _stop_task(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI application.

    Handles startup and shutdown logic:
    - Initialize database pool (unless a guard was installed up front)
    - Start the audit dispatcher and the periodic retention sweep
    - Flush queued audit events and close the pool on shutdown
    """
    owns_pool = getattr(app.state, "guard", None) is None
    if owns_pool:
        await db.init_pool()
        app.state.guard = MagicLinkGuard(postgres_stores(), SecurityConfig.from_settings())
    guard: MagicLinkGuard = app.state.guard

    audit_task = asyncio.create_task(guard.audit.run())
    logger.info("Audit dispatcher started")

    sweep_task = None
    if settings.SWEEP_INTERVAL_SECONDS > 0:
        sweep_task = asyncio.create_task(guard.sweeper.run_periodically(settings.SWEEP_INTERVAL_SECONDS))
        logger.info("Retention sweep every %ds", settings.SWEEP_INTERVAL_SECONDS)

    yield

    await _stop_task(sweep_task)
    drained = await guard.audit.shutdown(audit_task)
    logger.info("Audit dispatcher stopped (%d events flushed)", drained)

    if owns_pool:
        await db.close_pool()
        logger.info("Database pool closed")


def create_app(guard: MagicLinkGuard | None = None) -> FastAPI:
    """Build the app. Pass a guard to run on other storage (tests, single process)."""
    app = FastAPI(
        title="linkguard",
        docs_url=None,
        redoc_url=None,
        lifespan=lifespan,
    )
    app.state.guard = guard

    app.include_router(security_routes.router)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
        logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Security store unavailable. Please try again."},
        )

    @app.get("/health")
    async def health():
        """Health check endpoint for uptime monitoring."""
        return {"status": "ok"}

    return app


app = create_app()
