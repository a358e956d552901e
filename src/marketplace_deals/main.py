"""FastAPI application entry point for the marketplace deal coordinator.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode).
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uvicorn marketplace_deals.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from marketplace_deals.config import get_settings
from marketplace_deals.logging_config import get_logger, setup_logging

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
        notification_backend=settings.notification_backend,
    )

    # 2. Initialize database
    from marketplace_deals.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (idempotency keys + notification channel)
    from marketplace_deals.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Marketplace Deals",
        description=(
            "Transaction lifecycle coordinator for a service marketplace: "
            "quotes, revisions and escrow kept in step."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from marketplace_deals.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from marketplace_deals.api.routes.health import router as health_router
    from marketplace_deals.api.routes.projects import router as projects_router
    from marketplace_deals.api.routes.quotes import router as quotes_router

    app.include_router(health_router)
    app.include_router(projects_router)
    app.include_router(quotes_router)

    return app


# The app instance used by Uvicorn
app = create_app()
