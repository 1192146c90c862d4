"""Clock event handler.

join-tournament / leave-tournament are open to every viewer. pause-clock,
resume-clock, adjust-time and set-level go through ``ClockService``, which
rejects non-admins; the rejection comes back to the sender as an
``error`` event.
"""

from __future__ import annotations

import logging
from typing import Any

from pokerclock.clock.broadcaster import ClockBroadcaster
from pokerclock.clock.service import ClockService
from pokerclock.utils.errors import ClockError, InvalidCommandError
from pokerclock.ws.connection import WebSocketConnection
from pokerclock.ws.events import EventType
from pokerclock.ws.handlers.base import BaseHandler
from pokerclock.ws.manager import ConnectionManager
from pokerclock.ws.messages import MessageEnvelope, create_error_message

logger = logging.getLogger(__name__)


def _payload_value(payload: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if payload.get(key) is not None:
            return payload[key]
    return None


def _tournament_id(payload: dict[str, Any]) -> str:
    value = _payload_value(payload, "tournamentId", "tournament_id")
    if value is None or not str(value).strip():
        raise InvalidCommandError("tournamentId is required")
    return str(value)


def _int_field(payload: dict[str, Any], *keys: str) -> int:
    value = _payload_value(payload, *keys)
    if value is None or isinstance(value, bool):
        raise InvalidCommandError(f"{keys[0]} is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidCommandError(f"{keys[0]} must be a number", {"value": repr(value)})


class ClockHandler(BaseHandler):
    """Routes clock socket events into the clock service."""

    def __init__(
        self,
        manager: ConnectionManager,
        service: ClockService,
        broadcaster: ClockBroadcaster,
    ):
        super().__init__(manager)
        self.service = service
        self.broadcaster = broadcaster

    @property
    def handled_events(self) -> tuple[EventType, ...]:
        return (
            EventType.JOIN_TOURNAMENT,
            EventType.LEAVE_TOURNAMENT,
            EventType.PAUSE_CLOCK,
            EventType.RESUME_CLOCK,
            EventType.ADJUST_TIME,
            EventType.SET_LEVEL,
        )

    async def handle(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> MessageEnvelope | None:
        try:
            if event.type == EventType.JOIN_TOURNAMENT:
                return await self._handle_join(conn, event)
            if event.type == EventType.LEAVE_TOURNAMENT:
                await self.broadcaster.unsubscribe(conn.connection_id, _tournament_id(event.payload))
                return None
            return await self._handle_command(conn, event)
        except ClockError as e:
            logger.info(
                f"Clock event {event.type.value} rejected for conn={conn.connection_id}: "
                f"{e.code} {e.message}"
            )
            return create_error_message(
                error_code=e.code,
                message=e.message,
                details=e.details,
                request_id=event.request_id,
                trace_id=event.trace_id,
            )

    async def _handle_join(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> None:
        tournament_id = _tournament_id(event.payload)
        user_id = _payload_value(event.payload, "userId", "user_id") or conn.user_id

        view = await self.service.join(tournament_id, user_id)

        # 보정된 스냅샷을 먼저 보내고 그 다음 채널 구독
        await self.broadcaster.send_sync(
            conn.connection_id,
            view.tournament,
            view.snapshot,
            extra={"rules": view.rules.to_dict()},
            request_id=event.request_id,
        )
        await self.broadcaster.subscribe(conn.connection_id, tournament_id)
        logger.info(f"Viewer joined clock: tournament={tournament_id}, conn={conn.connection_id}")
        return None

    async def _handle_command(
        self,
        conn: WebSocketConnection,
        event: MessageEnvelope,
    ) -> None:
        tournament_id = _tournament_id(event.payload)
        viewer = conn.viewer

        if event.type == EventType.PAUSE_CLOCK:
            await self.service.pause(tournament_id, viewer)
        elif event.type == EventType.RESUME_CLOCK:
            await self.service.resume(tournament_id, viewer)
        elif event.type == EventType.ADJUST_TIME:
            new_seconds = _int_field(event.payload, "newSeconds", "new_seconds")
            await self.service.adjust_time(tournament_id, viewer, new_seconds)
        elif event.type == EventType.SET_LEVEL:
            new_level = _int_field(event.payload, "newLevel", "new_level")
            await self.service.set_level(tournament_id, viewer, new_level)

        # 결과는 서비스가 채널로 브로드캐스트
        return None
