"""
Client Display Adapter.

One place for what every viewer (lobby screen, table overlay, admin
console) does with clock pushes: keep the last authoritative snapshot,
count down locally between pushes for display only, and overwrite the
local state whenever the server speaks.

─── 규칙 ───
- 서버 스냅샷이 항상 우선 (local countdown is cosmetic)
- tick() never goes below 0 and never runs while paused or ended
- level changes are detected by comparing consecutive server snapshots
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from pokerclock.clock.models import ClockSnapshot, ClockState

logger = logging.getLogger(__name__)

LevelChangedCallback = Callable[[int, int, Dict[str, Any]], None]

# 스냅샷을 담고 있는 소켓 이벤트
SNAPSHOT_EVENTS = frozenset({
    "clock-sync",
    "clock-update",
    "level-changed",
    "schedule-exhausted",
    "tournament-ended",
    "clock-pause-toggled",
})


def format_seconds(seconds: int) -> str:
    """``MM:SS``; minutes are not wrapped into hours."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class ClockDisplay:
    """Local view of one tournament clock.

    Usage:
        display = ClockDisplay("t-1")
        display.on_level_changed(lambda old, new, payload: ...)
        display.apply_message(envelope)     # every server push
        display.tick()                      # once per second
        label = display.formatted_time
    """

    def __init__(self, tournament_id: str):
        self.tournament_id = tournament_id
        self.snapshot: Optional[ClockSnapshot] = None
        self.state: Optional[ClockState] = None
        self.blind_level: Optional[Dict[str, Any]] = None
        self.next_blind_level: Optional[Dict[str, Any]] = None
        self.rules: Optional[Dict[str, Any]] = None
        self._display_remaining = 0
        self._callbacks: List[LevelChangedCallback] = []

    # =========================================================================
    # Server input
    # =========================================================================

    def on_level_changed(self, callback: LevelChangedCallback) -> None:
        self._callbacks.append(callback)

    def apply_server_snapshot(
        self,
        snapshot: ClockSnapshot,
        state: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Overwrite local state with an authoritative snapshot."""
        if snapshot.tournament_id != self.tournament_id:
            logger.debug(
                f"Ignoring snapshot for {snapshot.tournament_id} "
                f"(display is {self.tournament_id})"
            )
            return

        previous = self.snapshot
        self.snapshot = snapshot
        self._display_remaining = max(0, snapshot.time_remaining_seconds)
        if state:
            self.state = ClockState(state)
        else:
            self.state = ClockState.PAUSED if snapshot.is_paused else ClockState.RUNNING

        if previous is not None and previous.current_level != snapshot.current_level:
            for callback in self._callbacks:
                try:
                    callback(previous.current_level, snapshot.current_level, payload or {})
                except Exception as e:
                    logger.error(f"Level change callback failed: {e}")

    def apply_message(self, message: Dict[str, Any]) -> bool:
        """Apply a socket envelope or an HTTP clock response.

        Returns:
            True when the message carried a snapshot for this tournament
        """
        if "type" in message:
            if message["type"] not in SNAPSHOT_EVENTS:
                return False
            payload = message.get("payload") or {}
            raw = payload.get("clock_state")
            level_key, next_key = "blind_level", "next_blind_level"
        else:
            payload = message
            raw = payload.get("clockState")
            level_key, next_key = "level", "nextLevel"

        if not raw:
            return False

        snapshot = ClockSnapshot.from_dict(raw)
        if snapshot.tournament_id != self.tournament_id:
            return False

        if level_key in payload:
            self.blind_level = payload.get(level_key)
        if next_key in payload:
            self.next_blind_level = payload.get(next_key)
        if "rules" in payload:
            self.rules = payload.get("rules")

        self.apply_server_snapshot(snapshot, payload.get("state"), payload)
        return True

    # =========================================================================
    # Local countdown
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self.state == ClockState.RUNNING

    def tick(self, seconds: int = 1) -> int:
        """Cosmetic countdown between pushes; returns displayed seconds."""
        if self.snapshot is None or not self.is_running:
            return self._display_remaining
        self._display_remaining = max(0, self._display_remaining - max(0, seconds))
        return self._display_remaining

    @property
    def remaining_seconds(self) -> int:
        return self._display_remaining

    @property
    def current_level(self) -> Optional[int]:
        return self.snapshot.current_level if self.snapshot else None

    @property
    def formatted_time(self) -> str:
        return format_seconds(self._display_remaining)
