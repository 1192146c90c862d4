"""
Synchronization Broadcaster.

Turns clock transitions into viewer pushes on the tournament's clock
channel (``tournament:{id}:clock``). Every push carries the full snapshot
so a viewer can overwrite its local state from any single message.

─── 이벤트 매핑 ───
LEVEL_CHANGED (1..n)   →  one ``level-changed`` with the final level and
                          every level passed on the way
PAUSED / RESUMED       →  ``clock-pause-toggled``
SCHEDULE_EXHAUSTED     →  ``schedule-exhausted``
any change             →  ``clock-update`` (always last)
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from pokerclock.clock.engine import clock_state
from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    ClockEventType,
    ClockSnapshot,
    ClockUpdate,
    TournamentInfo,
)
from pokerclock.clock.schedule import resolve_level
from pokerclock.ws.events import EventType
from pokerclock.ws.manager import ConnectionManager
from pokerclock.ws.messages import MessageEnvelope, create_error_message

logger = logging.getLogger(__name__)


class ClockPublisher(Protocol):
    """What the clock service needs from a broadcaster."""

    async def publish_update(self, tournament: TournamentInfo, update: ClockUpdate) -> int:
        ...

    async def publish_tournament_ended(
        self,
        tournament: TournamentInfo,
        snapshot: ClockSnapshot,
    ) -> int:
        ...


def clock_channel(tournament_id: str) -> str:
    return f"tournament:{tournament_id}:clock"


# ─────────────────────────────────────────────────────────────────
# 페이로드
# ─────────────────────────────────────────────────────────────────


def _level_dict(tournament: TournamentInfo, level: int) -> Optional[Dict[str, Any]]:
    entry = resolve_level(tournament.schedule, level)
    return None if entry is END_OF_SCHEDULE else entry.to_dict()


def clock_payload(tournament: TournamentInfo, snapshot: ClockSnapshot) -> Dict[str, Any]:
    """Base payload shared by every clock push."""
    return {
        "tournament_id": tournament.id,
        "clock_state": snapshot.to_dict(),
        "state": clock_state(snapshot, tournament.schedule).value,
        "blind_level": _level_dict(tournament, snapshot.current_level),
        "next_blind_level": _level_dict(tournament, snapshot.current_level + 1),
    }


def level_changed_payload(tournament: TournamentInfo, update: ClockUpdate) -> Dict[str, Any]:
    changes = update.events_of(ClockEventType.LEVEL_CHANGED)
    first, last = changes[0].data, changes[-1].data
    duration_seconds = last.get("duration_seconds")
    payload = clock_payload(tournament, update.snapshot)
    payload.update({
        "new_level": last["level"],
        "previous_level": first["from_level"],
        "levels_passed": [c.data["level"] for c in changes],
        "duration_seconds": duration_seconds,
        "duration_minutes": (
            round(duration_seconds / 60, 2) if duration_seconds is not None else None
        ),
        "manual": any(c.data.get("manual") for c in changes),
    })
    return payload


def build_update_messages(
    tournament: TournamentInfo,
    update: ClockUpdate,
) -> List[MessageEnvelope]:
    """Messages to push for one transition; empty when nothing changed."""
    if not update.changed:
        return []

    messages: List[MessageEnvelope] = []
    if update.events_of(ClockEventType.LEVEL_CHANGED):
        messages.append(
            MessageEnvelope.create(
                EventType.LEVEL_CHANGED,
                level_changed_payload(tournament, update),
            )
        )

    if update.events_of(ClockEventType.PAUSED) or update.events_of(ClockEventType.RESUMED):
        payload = clock_payload(tournament, update.snapshot)
        payload["is_paused"] = update.snapshot.is_paused
        messages.append(MessageEnvelope.create(EventType.CLOCK_PAUSE_TOGGLED, payload))

    if update.exhausted:
        payload = clock_payload(tournament, update.snapshot)
        payload["level"] = update.snapshot.current_level
        messages.append(MessageEnvelope.create(EventType.SCHEDULE_EXHAUSTED, payload))

    messages.append(
        MessageEnvelope.create(EventType.CLOCK_UPDATE, clock_payload(tournament, update.snapshot))
    )
    return messages


# ─────────────────────────────────────────────────────────────────
# 브로드캐스터
# ─────────────────────────────────────────────────────────────────


class ClockBroadcaster:
    """Pushes clock snapshots to viewers through the ConnectionManager."""

    def __init__(self, manager: ConnectionManager):
        self.manager = manager

    async def subscribe(self, connection_id: str, tournament_id: str) -> bool:
        return await self.manager.subscribe(connection_id, clock_channel(tournament_id))

    async def unsubscribe(self, connection_id: str, tournament_id: str) -> bool:
        return await self.manager.unsubscribe(connection_id, clock_channel(tournament_id))

    def viewer_count(self, tournament_id: str) -> int:
        return len(self.manager.get_channel_connections(clock_channel(tournament_id)))

    async def send_sync(
        self,
        connection_id: str,
        tournament: TournamentInfo,
        snapshot: ClockSnapshot,
        extra: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> bool:
        """Send ``clock-sync`` (full corrected snapshot) to one viewer."""
        payload = clock_payload(tournament, snapshot)
        if extra:
            payload.update(extra)
        message = MessageEnvelope.create(EventType.CLOCK_SYNC, payload, request_id=request_id)
        return await self.manager.send_to_connection(connection_id, message.to_dict())

    async def send_error(
        self,
        connection_id: str,
        error_code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> bool:
        envelope = create_error_message(error_code, message, details, request_id=request_id)
        return await self.manager.send_to_connection(connection_id, envelope.to_dict())

    async def publish_update(self, tournament: TournamentInfo, update: ClockUpdate) -> int:
        """Push a transition to every viewer; returns local deliveries."""
        channel = clock_channel(tournament.id)
        sent = 0
        for message in build_update_messages(tournament, update):
            sent += await self.manager.broadcast_to_channel(channel, message.to_dict())
        if sent:
            logger.debug(f"Clock push for {tournament.id}: {sent} local deliveries")
        return sent

    async def publish_tournament_ended(
        self,
        tournament: TournamentInfo,
        snapshot: ClockSnapshot,
    ) -> int:
        payload = clock_payload(tournament, snapshot)
        payload["level"] = snapshot.current_level
        message = MessageEnvelope.create(EventType.TOURNAMENT_ENDED, payload)
        return await self.manager.broadcast_to_channel(
            clock_channel(tournament.id),
            message.to_dict(),
        )


__all__ = [
    "ClockBroadcaster",
    "ClockPublisher",
    "build_update_messages",
    "clock_channel",
    "clock_payload",
]
