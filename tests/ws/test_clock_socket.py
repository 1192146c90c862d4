"""Clock socket tests: handler routing through the gateway dispatcher."""

from datetime import timedelta

import pytest

from pokerclock.utils.security import create_access_token
from pokerclock.ws.events import EventType
from pokerclock.ws.gateway import HandlerRegistry, dispatch
from pokerclock.ws.handlers import ClockHandler, SystemHandler


@pytest.fixture
def registry(runtime):
    return HandlerRegistry(runtime)


class TestJoin:
    @pytest.mark.asyncio
    async def test_join_sends_sync_then_subscribes(self, registry, connect, envelope, broadcaster, tournament):
        conn = await connect()
        await dispatch(
            registry,
            conn,
            envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1", "userId": "u-1"}, request_id="r-1"),
        )

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "clock-sync"
        assert message["requestId"] == "r-1"
        assert message["payload"]["clock_state"]["current_level"] == 1
        assert "rules" in message["payload"]
        assert broadcaster.viewer_count("t-1") == 1

    @pytest.mark.asyncio
    async def test_join_returns_corrected_snapshot(self, registry, connect, envelope, tournament, fake_clock):
        fake_clock.advance(70)
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1"}))

        state = conn.websocket.sent_messages[0]["payload"]["clock_state"]
        assert state["current_level"] == 2
        assert state["time_remaining_seconds"] == 110

    @pytest.mark.asyncio
    async def test_join_unknown_tournament_is_error(self, registry, connect, envelope, broadcaster):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "nope"}))

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "error"
        assert message["payload"]["errorCode"] == "TOURNAMENT_NOT_FOUND"
        assert broadcaster.viewer_count("nope") == 0

    @pytest.mark.asyncio
    async def test_join_without_tournament_id(self, registry, connect, envelope):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {}))

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "INVALID_COMMAND"

    @pytest.mark.asyncio
    async def test_leave_stops_pushes(self, registry, connect, envelope, broadcaster, tournament):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1"}))
        await dispatch(registry, conn, envelope(EventType.LEAVE_TOURNAMENT, {"tournamentId": "t-1"}))

        assert broadcaster.viewer_count("t-1") == 0


class TestCommands:
    @pytest.mark.asyncio
    async def test_admin_pause_is_broadcast(
        self, registry, connect, envelope, tournament, admin, clock_store, fake_clock
    ):
        viewer = await connect()
        await dispatch(registry, viewer, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1"}))
        operator = await connect(admin)

        fake_clock.advance(5)
        await dispatch(registry, operator, envelope(EventType.PAUSE_CLOCK, {"tournamentId": "t-1"}))

        assert viewer.websocket.types() == ["clock-sync", "clock-pause-toggled", "clock-update"]
        assert operator.websocket.sent_messages == []
        assert clock_store.clocks["t-1"].is_paused is True
        assert clock_store.clocks["t-1"].time_remaining_seconds == 55

    @pytest.mark.asyncio
    async def test_non_admin_command_is_rejected(self, registry, connect, envelope, tournament, player, clock_store):
        before = clock_store.clocks["t-1"]
        conn = await connect(player)
        await dispatch(
            registry,
            conn,
            envelope(EventType.SET_LEVEL, {"tournamentId": "t-1", "newLevel": 3}, request_id="r-2"),
        )

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "error"
        assert message["requestId"] == "r-2"
        assert message["payload"]["errorCode"] == "FORBIDDEN"
        assert clock_store.clocks["t-1"] == before

    @pytest.mark.asyncio
    async def test_anonymous_command_requires_auth(self, registry, connect, envelope, tournament):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.RESUME_CLOCK, {"tournamentId": "t-1"}))

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "UNAUTHORIZED"

    @pytest.mark.asyncio
    async def test_adjust_time_validates_number(self, registry, connect, envelope, tournament, admin):
        conn = await connect(admin)
        await dispatch(
            registry,
            conn,
            envelope(EventType.ADJUST_TIME, {"tournamentId": "t-1", "newSeconds": "soon"}),
        )

        message = conn.websocket.sent_messages[0]
        assert message["payload"]["errorCode"] == "INVALID_COMMAND"
        assert "newSeconds" in message["payload"]["message"]

    @pytest.mark.asyncio
    async def test_adjust_and_set_level(self, registry, connect, envelope, tournament, admin, clock_store):
        conn = await connect(admin)
        await dispatch(registry, conn, envelope(EventType.ADJUST_TIME, {"tournamentId": "t-1", "newSeconds": 15}))
        assert clock_store.clocks["t-1"].time_remaining_seconds == 15

        await dispatch(registry, conn, envelope(EventType.SET_LEVEL, {"tournamentId": "t-1", "new_level": 2}))
        assert clock_store.clocks["t-1"].current_level == 2
        assert clock_store.clocks["t-1"].time_remaining_seconds == 120


class TestSystem:
    @pytest.mark.asyncio
    async def test_ping_returns_pong(self, registry, connect, envelope):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.PING, request_id="r-3"))

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "pong"
        assert message["requestId"] == "r-3"
        assert conn.last_ping_at is not None

    @pytest.mark.asyncio
    async def test_auth_upgrades_connection(self, registry, connect, envelope):
        conn = await connect()
        token = create_access_token("admin-9", is_admin=True)
        await dispatch(registry, conn, envelope(EventType.AUTH, {"token": token}))

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "auth-result"
        assert message["payload"]["isAdmin"] is True
        assert conn.is_admin is True
        assert conn.user_id == "admin-9"

    @pytest.mark.asyncio
    async def test_auth_with_bad_token(self, registry, connect, envelope):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.AUTH, {"token": "not-a-jwt"}))

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "UNAUTHORIZED"
        assert conn.viewer is None

    @pytest.mark.asyncio
    async def test_expired_token_is_rejected(self, registry, connect, envelope):
        conn = await connect()
        token = create_access_token("u-1", expires_delta=timedelta(seconds=-10))
        await dispatch(registry, conn, envelope(EventType.AUTH, {"token": token}))

        assert conn.websocket.sent_messages[0]["type"] == "error"


class TestDispatch:
    @pytest.mark.asyncio
    async def test_non_object_message(self, registry, connect):
        conn = await connect()
        await dispatch(registry, conn, ["not", "an", "object"])

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_unknown_event_type(self, registry, connect):
        conn = await connect()
        await dispatch(registry, conn, {"type": "launch-rocket", "payload": {}})

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "INVALID_REQUEST"

    @pytest.mark.asyncio
    async def test_server_only_event_from_client(self, registry, connect, envelope):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.CLOCK_UPDATE, {}))

        message = conn.websocket.sent_messages[0]
        assert message["type"] == "error"
        assert "cannot be sent by client" in message["payload"]["message"]

    @pytest.mark.asyncio
    async def test_handler_crash_becomes_internal_error(self, registry, connect, envelope, runtime, monkeypatch):
        async def boom(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(runtime.service, "join", boom)
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1"}))

        assert conn.websocket.sent_messages[0]["payload"]["errorCode"] == "INTERNAL_ERROR"

    @pytest.mark.asyncio
    async def test_registry_routes(self, registry):
        assert isinstance(registry.get_handler(EventType.PING), SystemHandler)
        assert isinstance(registry.get_handler(EventType.PAUSE_CLOCK), ClockHandler)
        assert registry.get_handler(EventType.CLOCK_SYNC) is None


class TestManager:
    @pytest.mark.asyncio
    async def test_disconnect_drops_subscriptions(
        self, registry, connect, envelope, broadcaster, connection_manager, tournament
    ):
        conn = await connect()
        await dispatch(registry, conn, envelope(EventType.JOIN_TOURNAMENT, {"tournamentId": "t-1"}))
        await connection_manager.disconnect(conn.connection_id)

        assert broadcaster.viewer_count("t-1") == 0
        assert connection_manager.connection_count == 0

    @pytest.mark.asyncio
    async def test_heartbeat_closes_stale_connections(self, connect, connection_manager):
        conn = await connect()
        stale = await connection_manager.check_heartbeats(now=conn.connected_at + timedelta(seconds=61))

        assert stale == [conn.connection_id]
        assert conn.websocket.close_code == 4000
