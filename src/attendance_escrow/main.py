"""FastAPI application entry point for the attendance escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, the ledger client and
       the background jobs (sweeps, reconciliation, escrow consumer).
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Stop background jobs, close database and Redis connections.

Run with:
    uv run uvicorn attendance_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from attendance_escrow.config import get_settings
from attendance_escrow.logging_config import get_logger, setup_logging

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
        ledger_backend=settings.ledger_backend,
    )

    # 2. Initialize database
    from attendance_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    # 3. Initialize Redis
    from attendance_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    # 4. Ledger client
    from attendance_escrow.ledger import close_ledger, init_ledger

    ledger = init_ledger(settings)

    # 5. Background jobs
    jobs = None
    if settings.background_jobs_enabled:
        from attendance_escrow.api.deps import get_confirmation_cache
        from attendance_escrow.orchestration.background import BackgroundJobs

        jobs = BackgroundJobs(settings, ledger, get_confirmation_cache(settings))
        jobs.start()

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    # Shutdown
    logger.info("app.shutting_down")
    if jobs is not None:
        await jobs.stop()
    close_ledger()
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory — creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Attendance Escrow",
        description=(
            "Event and ticket lifecycles with refundable on-chain attendance stakes."
        ),
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    # --- Middleware ---
    from attendance_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    # --- REST API Routes ---
    from attendance_escrow.api.routes.escrow import router as escrow_router
    from attendance_escrow.api.routes.events import router as events_router
    from attendance_escrow.api.routes.health import router as health_router
    from attendance_escrow.api.routes.tickets import router as tickets_router

    app.include_router(health_router)
    app.include_router(events_router)
    app.include_router(tickets_router)
    app.include_router(escrow_router)

    return app


# The app instance used by Uvicorn
app = create_app()
