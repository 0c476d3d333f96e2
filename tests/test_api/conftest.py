"""API fixtures: the FastAPI app wired to the in-memory database and simulated ledger."""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from factories import OWNER_WALLET

from attendance_escrow.api.deps import (
    get_app_settings,
    get_confirmation_cache,
    get_db_session,
    get_ledger_client,
)
from attendance_escrow.ledger import SimulatedEscrowLedger
from attendance_escrow.main import create_app


@pytest.fixture
def api_ledger() -> SimulatedEscrowLedger:
    # Routes run on the wall clock
    return SimulatedEscrowLedger(OWNER_WALLET)


@pytest.fixture
def app(session_factory, settings, cache, api_ledger):
    application = create_app()

    async def _session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _session
    application.dependency_overrides[get_app_settings] = lambda: settings
    application.dependency_overrides[get_ledger_client] = lambda: api_ledger
    application.dependency_overrides[get_confirmation_cache] = lambda: cache
    return application


@pytest_asyncio.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
