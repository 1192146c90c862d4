"""Test fixtures for clock API tests.

The app is driven through httpx's ASGITransport, which does not run the
lifespan; each test installs its own ``ClockRuntime`` on ``app.state``.
"""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pokerclock.api.deps import ClockRuntime
from pokerclock.clock.driver import ReconciliationDriver
from pokerclock.clock.models import ClockPolicy, TournamentInfo
from pokerclock.clock.service import ClockService
from pokerclock.config import get_settings
from pokerclock.main import app
from pokerclock.utils.security import create_access_token
from pokerclock.ws.manager import ConnectionManager


@pytest.fixture
def clock_service(clock_store, publisher, fake_clock) -> ClockService:
    return ClockService(clock_store, publisher, ClockPolicy(), clock=fake_clock)


@pytest.fixture
def runtime(clock_service, clock_store, publisher) -> ClockRuntime:
    return ClockRuntime(
        service=clock_service,
        broadcaster=publisher,
        manager=ConnectionManager(redis=None, max_connections=5),
        driver=ReconciliationDriver(clock_service, clock_store),
    )


@pytest_asyncio.fixture
async def test_client(runtime) -> AsyncGenerator[AsyncClient, None]:
    app.state.clock_runtime = runtime
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def tournament(clock_store, schedule_factory, snapshot_factory, t0) -> TournamentInfo:
    info = TournamentInfo(
        id="t-1",
        name="Sunday Major",
        schedule=schedule_factory(60, 120, 60),
        last_level_rebuy=2,
    )
    clock_store.add_tournament(info, snapshot_factory(remaining=60, last_updated=t0))
    return info


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('admin-1', is_admin=True)}"}


@pytest.fixture
def player_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token('player-1')}"}


@pytest.fixture
def api_key_headers() -> dict[str, str]:
    return {"X-API-Key": get_settings().internal_api_key}
