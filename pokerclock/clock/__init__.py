"""Tournament clock: state model, schedule lookup and pure transitions."""

from pokerclock.clock.engine import (
    adjust_time,
    advance,
    clock_state,
    initialize_clock,
    pause,
    resume,
    set_level,
)
from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    BlindLevel,
    ClockEvent,
    ClockEventType,
    ClockPolicy,
    ClockSnapshot,
    ClockState,
    ClockUpdate,
    TournamentInfo,
    Viewer,
)

__all__ = [
    "END_OF_SCHEDULE",
    "BlindLevel",
    "ClockEvent",
    "ClockEventType",
    "ClockPolicy",
    "ClockSnapshot",
    "ClockState",
    "ClockUpdate",
    "TournamentInfo",
    "Viewer",
    "adjust_time",
    "advance",
    "clock_state",
    "initialize_clock",
    "pause",
    "resume",
    "set_level",
]
