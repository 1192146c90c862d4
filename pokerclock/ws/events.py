"""WebSocket event names used on the clock socket."""

from enum import Enum


class EventType(str, Enum):
    """All clock socket event types (wire names)."""

    # System
    PING = "ping"
    PONG = "pong"
    AUTH = "auth"
    AUTH_RESULT = "auth-result"
    ERROR = "error"

    # Client → server (commands)
    JOIN_TOURNAMENT = "join-tournament"
    LEAVE_TOURNAMENT = "leave-tournament"
    PAUSE_CLOCK = "pause-clock"  # admin
    RESUME_CLOCK = "resume-clock"  # admin
    ADJUST_TIME = "adjust-time"  # admin, {newSeconds}
    SET_LEVEL = "set-level"  # admin, {newLevel}

    # Server → client (pushes)
    CLOCK_SYNC = "clock-sync"  # 입장 시 전체 스냅샷
    CLOCK_UPDATE = "clock-update"
    LEVEL_CHANGED = "level-changed"
    SCHEDULE_EXHAUSTED = "schedule-exhausted"
    TOURNAMENT_ENDED = "tournament-ended"
    CLOCK_PAUSE_TOGGLED = "clock-pause-toggled"


ADMIN_COMMANDS = frozenset({
    EventType.PAUSE_CLOCK,
    EventType.RESUME_CLOCK,
    EventType.ADJUST_TIME,
    EventType.SET_LEVEL,
})
