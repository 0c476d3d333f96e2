"""Health check endpoint.

Verifies connectivity to PostgreSQL, Redis and the escrow ledger, returns
structured status. Used by Docker healthchecks, load balancers, and monitoring.
"""

from __future__ import annotations

from fastapi import APIRouter
from sqlalchemy import text

from attendance_escrow.logging_config import get_logger
from attendance_escrow.schemas.escrow import HealthResponse

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Returns the health status of the application and its dependencies.",
)
async def health_check() -> HealthResponse:
    """Check connectivity to PostgreSQL, Redis and the ledger RPC."""
    db_status = "unknown"
    redis_status = "unknown"
    ledger_status = "unknown"

    # Check PostgreSQL
    try:
        from attendance_escrow.infrastructure.database.engine import _get_engine

        engine = _get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as exc:
        db_status = f"unhealthy: {exc}"
        logger.error("health.db_check_failed", error=str(exc))

    # Check Redis (optional: the confirmation cache falls back to memory)
    try:
        from attendance_escrow.infrastructure.redis_client import get_redis

        redis = get_redis()
        await redis.ping()
        redis_status = "healthy"
    except Exception as exc:
        redis_status = f"unhealthy: {exc}"
        logger.warning("health.redis_check_failed", error=str(exc))

    # Check ledger
    try:
        from attendance_escrow.ledger import get_ledger

        block = await get_ledger().block_number()
        ledger_status = f"healthy (block {block})"
    except Exception as exc:
        ledger_status = f"unhealthy: {exc}"
        logger.error("health.ledger_check_failed", error=str(exc))

    ready = db_status == "healthy" and ledger_status.startswith("healthy")
    overall = "ok" if ready and redis_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        version="0.1.0",
        database=db_status,
        redis=redis_status,
        ledger=ledger_status,
    )
