"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject database sessions,
the ledger client, the confirmation cache, and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends

from attendance_escrow.config import Settings, get_settings
from attendance_escrow.infrastructure.database.engine import get_async_session
from attendance_escrow.infrastructure.redis_client import get_redis, redis_available
from attendance_escrow.ledger import get_ledger
from attendance_escrow.services.confirmation_cache import (
    InMemoryConfirmationCache,
    RedisConfirmationCache,
)
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession

    from attendance_escrow.domain.ledger_protocol import EscrowLedger
    from attendance_escrow.services.confirmation_cache import ConfirmationCache

_memory_cache: InMemoryConfirmationCache | None = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session for a request."""
    async for session in get_async_session():
        yield session


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()


def get_ledger_client() -> EscrowLedger:
    """Provide the escrow ledger client."""
    return get_ledger()


def get_confirmation_cache(settings: Settings = Depends(get_app_settings)) -> ConfirmationCache:
    """Shared Redis cache when Redis is up, otherwise a per-process one."""
    global _memory_cache
    if redis_available():
        return RedisConfirmationCache(get_redis(), ttl_seconds=settings.confirmation_cache_ttl_seconds)
    if _memory_cache is None:
        _memory_cache = InMemoryConfirmationCache(
            ttl_seconds=settings.confirmation_cache_ttl_seconds,
            max_entries=settings.confirmation_cache_max_entries,
        )
    return _memory_cache


def get_coordinator(
    session: AsyncSession = Depends(get_db_session),
    ledger: EscrowLedger = Depends(get_ledger_client),
    cache: ConfirmationCache = Depends(get_confirmation_cache),
    settings: Settings = Depends(get_app_settings),
) -> EscrowSettlementCoordinator:
    """Provide an EscrowSettlementCoordinator bound to the current session."""
    return EscrowSettlementCoordinator(session, ledger, cache, settings)
