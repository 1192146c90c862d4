"""System event handlers (ping, auth)."""

import logging

from pokerclock.utils.security import viewer_from_token
from pokerclock.ws.connection import WebSocketConnection
from pokerclock.ws.events import EventType
from pokerclock.ws.handlers.base import BaseHandler
from pokerclock.ws.messages import MessageEnvelope, create_error_message
from pokerclock.utils.errors import ErrorCode

logger = logging.getLogger(__name__)


class SystemHandler(BaseHandler):
    """Handles ping and in-band authentication.

    Viewers may connect anonymously and watch; ``auth {token}`` upgrades the
    socket to an identified viewer (admins can then send clock commands).
    """

    @property
    def handled_events(self) -> tuple[EventType, ...]:
        return (EventType.PING, EventType.AUTH)

    async def handle(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> MessageEnvelope | None:
        if event.type == EventType.PING:
            conn.update_ping()
            return MessageEnvelope.create(
                event_type=EventType.PONG,
                payload={},
                request_id=event.request_id,
                trace_id=event.trace_id,
            )
        if event.type == EventType.AUTH:
            return self._handle_auth(conn, event)
        return None

    def _handle_auth(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> MessageEnvelope:
        token = event.payload.get("token")
        viewer = viewer_from_token(token) if token else None
        if viewer is None:
            logger.warning(f"Socket auth failed: conn={conn.connection_id}")
            return create_error_message(
                error_code=ErrorCode.UNAUTHORIZED.value,
                message="Invalid or expired token",
                request_id=event.request_id,
                trace_id=event.trace_id,
            )

        conn.viewer = viewer
        logger.info(
            f"Socket authenticated: user={viewer.user_id}, admin={viewer.is_admin}, "
            f"conn={conn.connection_id}"
        )
        return MessageEnvelope.create(
            event_type=EventType.AUTH_RESULT,
            payload={
                "success": True,
                "userId": viewer.user_id,
                "isAdmin": viewer.is_admin,
            },
            request_id=event.request_id,
            trace_id=event.trace_id,
        )
