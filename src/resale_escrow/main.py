"""FastAPI application entry point for the resale escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode),
       and start the background deadline sweep.
    2. Running: Serve the REST API at /api/v1/* and /health.
    3. Shutdown: Stop the sweep, then close database and Redis connections.

Run with:
    uv run uvicorn resale_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from resale_escrow.config import get_settings
from resale_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    # 1. Setup structured logging
    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
        environment=settings.app_env,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
    )

    # 2. Initialize database
    from resale_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis (idempotency keys, rate limits)
    from resale_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Deadline sweep
    from resale_escrow.api.deps import get_payment_service
    from resale_escrow.orchestration.deadline_sweep import DeadlineSweep

    sweep = None
    if settings.sweep_enabled:
        sweep = DeadlineSweep(payments=get_payment_service())
        sweep.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if sweep is not None:
        await sweep.stop()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory: creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Resale Escrow",
        description=(
            "Ticket resale with escrowed payments, seller verification "
            "and dispute resolution."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from resale_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from resale_escrow.api.routes.admin import router as admin_router
    from resale_escrow.api.routes.disputes import router as disputes_router
    from resale_escrow.api.routes.health import router as health_router
    from resale_escrow.api.routes.listings import router as listings_router
    from resale_escrow.api.routes.orders import router as orders_router
    from resale_escrow.api.routes.transfers import router as transfers_router
    from resale_escrow.api.routes.verification import router as verification_router

    app.include_router(health_router)
    for router in (
        listings_router,
        orders_router,
        transfers_router,
        disputes_router,
        verification_router,
        admin_router,
    ):
        app.include_router(router, prefix=API_PREFIX)

    return app


# The app instance used by Uvicorn
app = create_app()
