"""Connection manager with Redis pub/sub for multi-instance support.

Every instance keeps its own local registry of sockets and channel
members. ``broadcast_to_channel`` delivers locally and publishes the same
message on ``ws:pubsub:{channel}`` so the other instances deliver it to
their own local members.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from redis.asyncio import Redis

from pokerclock.config import get_settings
from pokerclock.middleware.prometheus import record_ws_connection, record_ws_message_sent
from pokerclock.utils.json_utils import json_dumps, json_loads
from pokerclock.ws.connection import WebSocketConnection

logger = logging.getLogger(__name__)

PUBSUB_PREFIX = "ws:pubsub:"
HEARTBEAT_CHECK_INTERVAL = 5
SERVER_TIMEOUT = 60  # PING 없이 60초 경과 시 연결 종료


class ConnectionLimitExceeded(Exception):
    """Raised when connection limits are exceeded."""


class ConnectionManager:
    """Manages viewer sockets and cross-instance channel fan-out."""

    def __init__(self, redis: Redis, max_connections: int | None = None):
        self.redis = redis
        self._max_connections = max_connections or get_settings().ws_max_connections

        self._connections: dict[str, WebSocketConnection] = {}  # connection_id -> Connection
        self._channel_members: dict[str, set[str]] = {}  # channel -> set[connection_id]

        self._pubsub_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._running = False
        self._instance_id = str(uuid4())[:8]

    @property
    def instance_id(self) -> str:
        return self._instance_id

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        await self._start_pubsub_listener()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_monitor())
        logger.info(f"ConnectionManager started (instance: {self._instance_id})")

    async def stop(self) -> None:
        """Stop background tasks and close every local socket."""
        self._running = False

        for task in (self._pubsub_task, self._heartbeat_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._pubsub_task = None
        self._heartbeat_task = None

        connection_count = len(self._connections)
        for conn_id in list(self._connections):
            conn = self._connections.get(conn_id)
            if conn:
                await conn.close(1001, "Server shutting down")
            await self.disconnect(conn_id)

        logger.info(
            f"ConnectionManager stopped (instance: {self._instance_id}, "
            f"connections closed: {connection_count})"
        )

    # =========================================================================
    # Connection Lifecycle
    # =========================================================================

    async def connect(self, conn: WebSocketConnection) -> None:
        if len(self._connections) >= self._max_connections:
            logger.warning(
                f"Connection limit reached ({self._max_connections}). "
                f"Rejecting {conn.connection_id}"
            )
            raise ConnectionLimitExceeded(
                f"Maximum connections ({self._max_connections}) reached"
            )

        self._connections[conn.connection_id] = conn
        record_ws_connection(connected=True)
        logger.info(
            f"Connection {conn.connection_id} registered "
            f"(total: {len(self._connections)}/{self._max_connections})"
        )

    async def disconnect(self, connection_id: str) -> None:
        """Unregister a connection and drop all of its channel memberships."""
        conn = self._connections.get(connection_id)
        if not conn:
            return

        for channel in list(conn.subscribed_channels):
            await self.unsubscribe(connection_id, channel)

        self._connections.pop(connection_id, None)
        record_ws_connection(connected=False)
        logger.info(
            f"Connection {connection_id} disconnected "
            f"(remaining: {len(self._connections)})"
        )

    def get_connection(self, connection_id: str) -> WebSocketConnection | None:
        return self._connections.get(connection_id)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    # =========================================================================
    # Channel Management
    # =========================================================================

    async def subscribe(self, connection_id: str, channel: str) -> bool:
        conn = self._connections.get(connection_id)
        if not conn:
            return False

        self._channel_members.setdefault(channel, set()).add(connection_id)
        conn.subscribed_channels.add(channel)
        logger.debug(f"Connection {connection_id} subscribed to {channel}")
        return True

    async def unsubscribe(self, connection_id: str, channel: str) -> bool:
        conn = self._connections.get(connection_id)
        if not conn:
            return False

        members = self._channel_members.get(channel)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._channel_members[channel]

        conn.subscribed_channels.discard(channel)
        logger.debug(f"Connection {connection_id} unsubscribed from {channel}")
        return True

    def get_channel_connections(self, channel: str) -> list[WebSocketConnection]:
        conn_ids = self._channel_members.get(channel, set())
        return [self._connections[cid] for cid in conn_ids if cid in self._connections]

    # =========================================================================
    # Broadcasting
    # =========================================================================

    async def broadcast_to_channel(
        self,
        channel: str,
        message: dict[str, Any],
        exclude_connection: str | None = None,
    ) -> int:
        """Broadcast to all subscribers of a channel (cross-instance).

        Returns count of messages sent to local subscribers. A Redis failure
        is logged; local subscribers are still served.
        """
        try:
            await self.redis.publish(
                f"{PUBSUB_PREFIX}{channel}",
                json_dumps({
                    "source_instance": self._instance_id,
                    "exclude_connection": exclude_connection,
                    "message": message,
                }),
            )
        except Exception as e:
            logger.error(f"Failed to publish to {channel}: {e}")

        return await self._send_to_local_channel(channel, message, exclude_connection)

    async def send_to_connection(self, connection_id: str, message: dict[str, Any]) -> bool:
        conn = self._connections.get(connection_id)
        if conn and await conn.send(message):
            record_ws_message_sent(message.get("type", "unknown"))
            return True
        return False

    async def _send_to_local_channel(
        self,
        channel: str,
        message: dict[str, Any],
        exclude_connection: str | None = None,
    ) -> int:
        targets = [
            conn
            for conn in self.get_channel_connections(channel)
            if conn.connection_id != exclude_connection
        ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(conn.send(message) for conn in targets),
            return_exceptions=True,
        )
        sent = sum(1 for r in results if r is True)
        for _ in range(sent):
            record_ws_message_sent(message.get("type", "unknown"))
        return sent

    # =========================================================================
    # Pub/Sub
    # =========================================================================

    async def _start_pubsub_listener(self) -> None:
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(f"{PUBSUB_PREFIX}*")

        async def listener() -> None:
            try:
                while self._running:
                    try:
                        message = await pubsub.get_message(
                            ignore_subscribe_messages=True,
                            timeout=1.0,
                        )
                        if message and message["type"] == "pmessage":
                            await self._handle_pubsub_message(message)
                    except asyncio.CancelledError:
                        raise
                    except Exception as e:
                        logger.error(f"Pub/sub listener error: {e}")
                        await asyncio.sleep(1)
            finally:
                await pubsub.punsubscribe(f"{PUBSUB_PREFIX}*")
                await pubsub.aclose()

        self._pubsub_task = asyncio.create_task(listener())

    async def _handle_pubsub_message(self, message: dict[str, Any]) -> None:
        try:
            channel = message.get("channel", b"")
            if isinstance(channel, bytes):
                channel = channel.decode()
            channel = str(channel)[len(PUBSUB_PREFIX):]

            data = json_loads(message.get("data") or b"{}")

            # 자기 자신이 발행한 메시지는 이미 로컬로 전송됨
            if data.get("source_instance") == self._instance_id:
                return

            await self._send_to_local_channel(
                channel,
                data["message"],
                data.get("exclude_connection"),
            )
        except Exception as e:
            logger.error(f"Error handling pub/sub message: {e}")

    # =========================================================================
    # Heartbeat
    # =========================================================================

    async def _heartbeat_monitor(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(HEARTBEAT_CHECK_INTERVAL)
                await self.check_heartbeats()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Heartbeat monitor error: {e}")

    async def check_heartbeats(self, now: datetime | None = None) -> list[str]:
        """Close sockets that sent no PING for SERVER_TIMEOUT seconds."""
        now = now or datetime.now(timezone.utc)
        timeout = timedelta(seconds=SERVER_TIMEOUT)

        stale = [
            conn_id
            for conn_id, conn in self._connections.items()
            if now - (conn.last_ping_at or conn.connected_at) > timeout
        ]
        for conn_id in stale:
            logger.warning(f"Connection {conn_id} timed out (no PING for {SERVER_TIMEOUT}s)")
            conn = self._connections.get(conn_id)
            if conn:
                await conn.close(4000, "Connection timeout")
            await self.disconnect(conn_id)
        return stale
