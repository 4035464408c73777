"""FastAPI application entry point for SafeDeal.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       start the auto-confirm sweep when enabled.
    2. Running: Serve the REST polling API at /api/v1/*.
    3. Shutdown: Stop the sweep, close database and Redis connections.

Run with:
    uv run uvicorn safedeal.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from safedeal import __version__
from safedeal.config import get_settings
from safedeal.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from safedeal.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (optional: only idempotency keys depend on it)
    from safedeal.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Auto-confirm sweep
    from safedeal.services.auto_confirm import run_auto_confirm_loop

    sweeper: asyncio.Task | None = None
    if settings.auto_confirm_enabled:
        sweeper = asyncio.create_task(run_auto_confirm_loop(settings=settings))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="SafeDeal",
        description=(
            "Safe transactions and buyer/seller messaging for a marketplace. "
            "Clients poll; the server never pushes."
        ),
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from safedeal.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from safedeal.api.routes.conversations import router as conversations_router
    from safedeal.api.routes.health import router as health_router
    from safedeal.api.routes.sync import router as sync_router
    from safedeal.api.routes.transactions import router as transactions_router

    app.include_router(health_router)
    app.include_router(transactions_router)
    app.include_router(conversations_router)
    app.include_router(sync_router)

    return app


# The app instance used by Uvicorn
app = create_app()
