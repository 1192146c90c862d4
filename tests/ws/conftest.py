"""WebSocket test fixtures and utilities."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio

from pokerclock.api.deps import ClockRuntime
from pokerclock.clock.broadcaster import ClockBroadcaster
from pokerclock.clock.driver import ReconciliationDriver
from pokerclock.clock.models import ClockPolicy, TournamentInfo, Viewer
from pokerclock.clock.service import ClockService
from pokerclock.ws.connection import WebSocketConnection
from pokerclock.ws.events import EventType
from pokerclock.ws.manager import ConnectionManager
from pokerclock.ws.messages import MessageEnvelope


# =============================================================================
# Mock Classes
# =============================================================================


class MockWebSocket:
    """Mock WebSocket for testing."""

    def __init__(self):
        self.accepted = False
        self.closed = False
        self.close_code = None
        self.close_reason = None
        self.sent_messages: list[dict[str, Any]] = []
        self.receive_queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True
        self.close_code = code
        self.close_reason = reason

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("WebSocket closed")
        self.sent_messages.append(data)

    async def receive_json(self) -> dict[str, Any]:
        if self.closed:
            raise RuntimeError("WebSocket closed")
        return await self.receive_queue.get()

    def add_message(self, message: dict[str, Any]) -> None:
        self.receive_queue.put_nowait(message)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent_messages]


class MockPubSub:
    """Mock Redis pub/sub."""

    def __init__(self):
        self._subscribed: set[str] = set()
        self.closed = False

    async def psubscribe(self, pattern: str) -> None:
        self._subscribed.add(pattern)

    async def punsubscribe(self, pattern: str) -> None:
        self._subscribed.discard(pattern)

    async def aclose(self) -> None:
        self.closed = True

    async def get_message(
        self,
        ignore_subscribe_messages: bool = True,
        timeout: float = 1.0,
    ) -> dict[str, Any] | None:
        await asyncio.sleep(0.01)
        return None


class MockRedis:
    """Mock Redis client: records publishes."""

    def __init__(self):
        self.published: list[tuple[str, str]] = []
        self.fail_publish = False

    async def ping(self) -> bool:
        return True

    async def publish(self, channel: str, message: str) -> int:
        if self.fail_publish:
            raise ConnectionError("redis down")
        self.published.append((channel, message))
        return 1

    def pubsub(self) -> MockPubSub:
        return MockPubSub()


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest_asyncio.fixture
async def connection_manager(mock_redis: MockRedis) -> AsyncGenerator[ConnectionManager, None]:
    """Connection manager with mock Redis."""
    manager = ConnectionManager(mock_redis, max_connections=10)
    await manager.start()
    yield manager
    await manager.stop()


@pytest.fixture
def broadcaster(connection_manager: ConnectionManager) -> ClockBroadcaster:
    return ClockBroadcaster(connection_manager)


@pytest.fixture
def clock_service(clock_store, broadcaster, fake_clock) -> ClockService:
    return ClockService(clock_store, broadcaster, ClockPolicy(), clock=fake_clock)


@pytest.fixture
def runtime(clock_service, clock_store, broadcaster, connection_manager) -> ClockRuntime:
    return ClockRuntime(
        service=clock_service,
        broadcaster=broadcaster,
        manager=connection_manager,
        driver=ReconciliationDriver(clock_service, clock_store),
    )


@pytest.fixture
def tournament(clock_store, schedule_factory, snapshot_factory, t0) -> TournamentInfo:
    info = TournamentInfo(id="t-1", name="Sunday Major", schedule=schedule_factory(60, 120, 60))
    clock_store.add_tournament(info, snapshot_factory(remaining=60, last_updated=t0))
    return info


@pytest.fixture
def connect(connection_manager: ConnectionManager):
    """Factory: register a connection backed by a MockWebSocket."""

    async def _connect(viewer: Viewer | None = None) -> WebSocketConnection:
        conn = WebSocketConnection(
            websocket=MockWebSocket(),
            connection_id=str(uuid4()),
            viewer=viewer,
        )
        await connection_manager.connect(conn)
        return conn

    return _connect


@pytest.fixture
def envelope():
    """Factory: incoming client message as a dict."""

    def _envelope(
        event_type: EventType,
        payload: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        return MessageEnvelope.create(
            event_type=event_type,
            payload=payload or {},
            request_id=request_id,
        ).to_dict()

    return _envelope
