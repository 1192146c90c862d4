"""WebSocket gateway endpoint for clock viewers.

Connection flow:
1. Client connects to ``/ws/clock`` (optionally ``?token=`` for admins)
2. Server accepts and registers the socket
3. Client may send ``auth {token}`` at any time to identify itself
4. Client sends ``join-tournament {tournamentId, userId}``
5. Server answers with ``clock-sync`` and subscribes the socket
6. Server pushes ``clock-update`` / ``level-changed`` / ... until leave
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import uuid4

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

from pokerclock.api.deps import ClockRuntime
from pokerclock.middleware.prometheus import record_ws_message_received
from pokerclock.utils.errors import ErrorCode
from pokerclock.utils.security import viewer_from_token
from pokerclock.ws.connection import WebSocketConnection
from pokerclock.ws.events import EventType
from pokerclock.ws.handlers import BaseHandler, ClockHandler, SystemHandler
from pokerclock.ws.manager import ConnectionLimitExceeded
from pokerclock.ws.messages import MessageEnvelope, create_error_message

logger = logging.getLogger(__name__)
router = APIRouter(tags=["WebSocket"])

CLIENT_TO_SERVER_EVENTS = frozenset({
    EventType.PING,
    EventType.AUTH,
    EventType.JOIN_TOURNAMENT,
    EventType.LEAVE_TOURNAMENT,
    EventType.PAUSE_CLOCK,
    EventType.RESUME_CLOCK,
    EventType.ADJUST_TIME,
    EventType.SET_LEVEL,
})


class HandlerRegistry:
    """Maps event types to handlers."""

    def __init__(self, runtime: ClockRuntime):
        self._handlers: dict[EventType, BaseHandler] = {}
        self._register(SystemHandler(runtime.manager))
        self._register(ClockHandler(runtime.manager, runtime.service, runtime.broadcaster))

    def _register(self, handler: BaseHandler) -> None:
        for event_type in handler.handled_events:
            self._handlers[event_type] = handler

    def get_handler(self, event_type: EventType) -> BaseHandler | None:
        return self._handlers.get(event_type)


async def dispatch(
    registry: HandlerRegistry,
    conn: WebSocketConnection,
    data: Any,
) -> None:
    """Parse one incoming message, run its handler and send any reply."""
    try:
        if not isinstance(data, dict):
            raise ValueError("message must be a JSON object")
        event = MessageEnvelope.from_dict(data)
    except (KeyError, ValueError) as e:
        logger.warning(f"Invalid message format: {e}")
        await conn.send(
            create_error_message(
                error_code=ErrorCode.INVALID_REQUEST.value,
                message=f"Invalid message format: {e}",
            ).to_dict()
        )
        return

    record_ws_message_received(event.type.value)

    handler = registry.get_handler(event.type)
    if event.type not in CLIENT_TO_SERVER_EVENTS or handler is None:
        await conn.send(
            create_error_message(
                error_code=ErrorCode.INVALID_REQUEST.value,
                message=f"Event {event.type.value} cannot be sent by client",
                request_id=event.request_id,
                trace_id=event.trace_id,
            ).to_dict()
        )
        return

    try:
        response = await handler.handle(conn, event)
    except Exception as e:
        logger.exception(f"Handler error: {e}")
        response = create_error_message(
            error_code=ErrorCode.INTERNAL_ERROR.value,
            message="Internal handler error",
            request_id=event.request_id,
            trace_id=event.trace_id,
        )

    if response:
        await conn.send(response.to_dict())


@router.websocket("/ws/clock")
async def clock_websocket(websocket: WebSocket):
    """Clock viewer socket."""
    runtime: ClockRuntime = websocket.app.state.clock_runtime
    await websocket.accept()

    token = websocket.query_params.get("token")
    conn = WebSocketConnection(
        websocket=websocket,
        connection_id=str(uuid4()),
        viewer=viewer_from_token(token) if token else None,
    )

    try:
        await runtime.manager.connect(conn)
    except ConnectionLimitExceeded as e:
        await websocket.close(1013, str(e))
        return

    registry = HandlerRegistry(runtime)
    logger.info(f"Clock socket connected: conn={conn.connection_id}, user={conn.user_id}")

    try:
        while True:
            data = await websocket.receive_json()
            await dispatch(registry, conn, data)
    except WebSocketDisconnect as e:
        logger.info(f"Clock socket disconnected: conn={conn.connection_id}, code={e.code}")
    except Exception as e:
        logger.exception(f"Clock socket error: {e}")
    finally:
        await runtime.manager.disconnect(conn.connection_id)


@router.get("/ws/stats")
async def websocket_stats(request: Request) -> dict[str, Any]:
    """Connection statistics for this instance."""
    runtime: ClockRuntime = request.app.state.clock_runtime
    return {
        "instance_id": runtime.manager.instance_id,
        "connections": runtime.manager.connection_count,
        "drivers": {
            driver.name: driver.metrics.to_dict() for driver in runtime.drivers
        },
    }
