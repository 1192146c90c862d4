"""WebSocket connection model."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from pokerclock.clock.models import Viewer

logger = logging.getLogger(__name__)


@dataclass
class WebSocketConnection:
    """A single viewer socket.

    ``viewer`` stays None for anonymous displays (lobby screens); those may
    watch clocks but never issue commands.
    """

    websocket: WebSocket
    connection_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    viewer: Viewer | None = None
    subscribed_channels: set[str] = field(default_factory=set)
    last_ping_at: datetime | None = None

    @property
    def user_id(self) -> str | None:
        return self.viewer.user_id if self.viewer else None

    @property
    def is_admin(self) -> bool:
        return bool(self.viewer and self.viewer.is_admin)

    async def send(self, message: dict[str, Any]) -> bool:
        """Send message to client. Returns False if failed."""
        try:
            await self.websocket.send_json(message)
            return True
        except Exception as e:
            logger.warning(f"Failed to send message to {self.connection_id}: {e}")
            return False

    async def close(self, code: int = 1000, reason: str = "") -> None:
        try:
            await self.websocket.close(code, reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.connection_id}: {e}")

    def update_ping(self) -> None:
        self.last_ping_at = datetime.now(timezone.utc)

    def is_subscribed(self, channel: str) -> bool:
        return channel in self.subscribed_channels
