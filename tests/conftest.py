"""Shared test fixtures for the attendance escrow test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - A controllable clock shared by engines, coordinator and ledger
    - A fresh SimulatedEscrowLedger and confirmation cache per test
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from factories import OWNER_WALLET, FakeClock
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from attendance_escrow.config import Settings
from attendance_escrow.infrastructure.database.orm_models import Base
from attendance_escrow.ledger import SimulatedEscrowLedger
from attendance_escrow.services.confirmation_cache import InMemoryConfirmationCache
from attendance_escrow.services.escrow_coordinator import EscrowSettlementCoordinator
from attendance_escrow.services.event_lifecycle import EventLifecycleEngine
from attendance_escrow.services.ticket_lifecycle import TicketLifecycleEngine

# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        escrow_owner_address=OWNER_WALLET,
        ledger_timeout_seconds=0.5,
        ledger_retry_min_wait_seconds=0,
        ledger_retry_max_wait_seconds=0,
        background_jobs_enabled=False,
    )


@pytest.fixture
def ledger(clock: FakeClock) -> SimulatedEscrowLedger:
    return SimulatedEscrowLedger(OWNER_WALLET, clock=clock)


@pytest.fixture
def cache() -> InMemoryConfirmationCache:
    return InMemoryConfirmationCache(ttl_seconds=60, max_entries=100)


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def event_engine(session, clock) -> EventLifecycleEngine:
    return EventLifecycleEngine(session, clock=clock)


@pytest.fixture
def ticket_engine(session, clock) -> TicketLifecycleEngine:
    return TicketLifecycleEngine(session, clock=clock)


@pytest.fixture
def coordinator(session, ledger, cache, settings, clock) -> EscrowSettlementCoordinator:
    return EscrowSettlementCoordinator(session, ledger, cache, settings, clock=clock)
