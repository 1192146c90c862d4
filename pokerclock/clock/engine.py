"""
Level Advancement Engine.

Pure transitions over ``ClockSnapshot``. Every function takes the current
snapshot, the tournament's level schedule and ``now`` and returns a
``ClockUpdate`` (new snapshot, events, changed flag). Nothing here does I/O
and nothing raises for bad data: missing schedules, negative inputs and
out-of-range levels are clamped.

─── 상태 ───
RUNNING  →  time elapses, levels advance in a loop
PAUSED   →  time frozen until resume
ENDED    →  last level reached zero (clock stuck at 0 until a manual command)

─── 타임스탬프 ───
``advance`` moves ``last_updated`` by exactly the whole seconds it consumed,
so the sub-second remainder carries over and a second call with the same
``now`` is a no-op. Manual commands stamp ``now``. No transition ever moves
``last_updated`` backwards.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import List, Optional

from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    ClockEvent,
    ClockEventType,
    ClockPolicy,
    ClockSnapshot,
    ClockState,
    ClockUpdate,
    LevelSchedule,
    ensure_utc,
)
from pokerclock.clock.projector import project
from pokerclock.clock.schedule import (
    DEFAULT_POLICY,
    duration_of,
    level_duration,
    resolve_level,
)


# ─────────────────────────────────────────────────────────────────
# 헬퍼
# ─────────────────────────────────────────────────────────────────


def _stamp(previous: ClockSnapshot, now: datetime) -> datetime:
    now = ensure_utc(now)
    return now if now > previous.last_updated else previous.last_updated


def is_exhausted(snapshot: ClockSnapshot, schedule: Optional[LevelSchedule]) -> bool:
    """Clock sits at zero with no level left to move to."""
    if snapshot.time_remaining_seconds > 0:
        return False
    return resolve_level(schedule, snapshot.current_level + 1) is END_OF_SCHEDULE


def clock_state(snapshot: ClockSnapshot, schedule: Optional[LevelSchedule]) -> ClockState:
    if is_exhausted(snapshot, schedule):
        return ClockState.ENDED
    if snapshot.is_paused:
        return ClockState.PAUSED
    return ClockState.RUNNING


def _level_changed(
    tournament_id: str,
    from_level: int,
    to_level: int,
    schedule: Optional[LevelSchedule],
    policy: ClockPolicy,
    manual: bool = False,
) -> ClockEvent:
    entry = resolve_level(schedule, to_level)
    blind_level = None if entry is END_OF_SCHEDULE else entry.to_dict()
    return ClockEvent(
        event_type=ClockEventType.LEVEL_CHANGED,
        tournament_id=tournament_id,
        data={
            "from_level": from_level,
            "level": to_level,
            "blind_level": blind_level,
            "duration_seconds": duration_of(schedule, to_level, policy),
            "manual": manual,
        },
    )


def _exhaustion_events(
    before: ClockSnapshot,
    after: ClockSnapshot,
    schedule: Optional[LevelSchedule],
) -> List[ClockEvent]:
    # 전이 시점에만 한 번 발생
    if is_exhausted(after, schedule) and not is_exhausted(before, schedule):
        return [
            ClockEvent(
                event_type=ClockEventType.SCHEDULE_EXHAUSTED,
                tournament_id=after.tournament_id,
                data={"level": after.current_level},
            )
        ]
    return []


def _result(
    before: ClockSnapshot,
    after: ClockSnapshot,
    events: List[ClockEvent],
) -> ClockUpdate:
    return ClockUpdate(snapshot=after, events=tuple(events), changed=after != before)


# ─────────────────────────────────────────────────────────────────
# 전이
# ─────────────────────────────────────────────────────────────────


def initialize_clock(
    tournament_id: str,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
    start_paused: bool = False,
) -> ClockUpdate:
    """Seed a clock at level 1 with that level's full duration."""
    now = ensure_utc(now)
    snapshot = ClockSnapshot(
        tournament_id=tournament_id,
        current_level=1,
        time_remaining_seconds=duration_of(schedule, 1, policy) or 0,
        is_paused=start_paused,
        last_updated=now,
        paused_at=now if start_paused else None,
    )
    event = ClockEvent(
        event_type=ClockEventType.INITIALIZED,
        tournament_id=tournament_id,
        data={"level": 1, "time_remaining_seconds": snapshot.time_remaining_seconds},
    )
    return ClockUpdate(snapshot=snapshot, events=(event,), changed=True)


def advance(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    """Project a running clock to ``now``, stepping through as many levels as needed.

    A gap spanning several levels is consumed level by level against each
    next level's full duration; one LEVEL_CHANGED event is emitted per
    step. When no next level exists the clock clamps to 0 at the current
    level and SCHEDULE_EXHAUSTED is emitted once.
    """
    if snapshot.is_paused:
        return ClockUpdate(snapshot=snapshot)

    projection = project(snapshot, now)
    if projection.seconds_elapsed == 0:
        return ClockUpdate(snapshot=snapshot)

    if is_exhausted(snapshot, schedule):
        # 이미 0 에서 멈춘 시계: 기록할 것이 없음
        return ClockUpdate(snapshot=snapshot)

    tournament_id = snapshot.tournament_id
    level = snapshot.current_level
    remaining = projection.raw_remaining
    events: List[ClockEvent] = []

    if resolve_level(schedule, level) is END_OF_SCHEDULE:
        # 스케줄 없음/범위 밖: 0 에서 멈춤
        remaining = 0

    while remaining <= 0:
        next_entry = resolve_level(schedule, level + 1)
        if next_entry is END_OF_SCHEDULE:
            remaining = 0
            break
        deficit = -remaining
        level += 1
        remaining = level_duration(next_entry, policy) - deficit
        events.append(_level_changed(tournament_id, level - 1, level, schedule, policy))

    consumed_until = snapshot.last_updated + timedelta(seconds=projection.seconds_elapsed)
    updated = snapshot.with_level(level, remaining).with_timestamp(
        _stamp(snapshot, consumed_until)
    )
    events.extend(_exhaustion_events(snapshot, updated, schedule))
    return _result(snapshot, updated, events)


def pause(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    """Freeze the clock after first reconciling running time up to ``now``."""
    if snapshot.is_paused:
        return ClockUpdate(snapshot=snapshot)

    advanced = advance(snapshot, schedule, now, policy)
    paused = advanced.snapshot.with_paused(_stamp(advanced.snapshot, now))
    events = list(advanced.events)
    events.append(
        ClockEvent(
            event_type=ClockEventType.PAUSED,
            tournament_id=snapshot.tournament_id,
            data={
                "level": paused.current_level,
                "time_remaining_seconds": paused.time_remaining_seconds,
            },
        )
    )
    return _result(snapshot, paused, events)


def resume(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    """Restart a paused clock; time spent paused is never consumed."""
    if not snapshot.is_paused:
        return ClockUpdate(snapshot=snapshot)

    stamp = _stamp(snapshot, now)
    pause_seconds = 0
    if snapshot.paused_at is not None:
        pause_seconds = max(0, int(math.floor((stamp - snapshot.paused_at).total_seconds())))

    resumed = snapshot.with_resumed(stamp, pause_seconds)
    event = ClockEvent(
        event_type=ClockEventType.RESUMED,
        tournament_id=snapshot.tournament_id,
        data={
            "level": resumed.current_level,
            "time_remaining_seconds": resumed.time_remaining_seconds,
            "paused_seconds": pause_seconds,
        },
    )
    return _result(snapshot, resumed, [event])


def adjust_time(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    new_seconds: int,
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    """Overwrite the remaining time of the current level (negative clamps to 0)."""
    remaining = max(0, int(new_seconds))
    adjusted = snapshot.with_remaining(remaining).with_timestamp(_stamp(snapshot, now))
    events = [
        ClockEvent(
            event_type=ClockEventType.TIME_ADJUSTED,
            tournament_id=snapshot.tournament_id,
            data={
                "level": adjusted.current_level,
                "previous_seconds": snapshot.time_remaining_seconds,
                "time_remaining_seconds": remaining,
            },
        )
    ]
    events.extend(_exhaustion_events(snapshot, adjusted, schedule))
    return _result(snapshot, adjusted, events)


def set_level(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    new_level: int,
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    """Jump to ``new_level`` with its full duration (0 past the schedule).

    Levels below 1 clamp to 1. Pause state is kept.
    """
    level = max(1, int(new_level))
    remaining = duration_of(schedule, level, policy) or 0
    updated = snapshot.with_level(level, remaining).with_timestamp(_stamp(snapshot, now))
    events = [
        _level_changed(
            snapshot.tournament_id,
            snapshot.current_level,
            level,
            schedule,
            policy,
            manual=True,
        )
    ]
    events.extend(_exhaustion_events(snapshot, updated, schedule))
    return _result(snapshot, updated, events)


def toggle_pause(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> ClockUpdate:
    if snapshot.is_paused:
        return resume(snapshot, schedule, now, policy)
    return pause(snapshot, schedule, now, policy)


def update_clock(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    now: datetime,
    policy: ClockPolicy = DEFAULT_POLICY,
    current_level: Optional[int] = None,
    time_remaining_seconds: Optional[int] = None,
    is_paused: Optional[bool] = None,
) -> ClockUpdate:
    """Partial update: level, then remaining time, then pause state.

    Setting the level or the remaining time also starts the clock, in
    which case ``is_paused`` is ignored. Exhaustion is judged on the final
    snapshot only.
    """
    current = snapshot
    events: List[ClockEvent] = []

    def step(update: ClockUpdate) -> None:
        nonlocal current
        current = update.snapshot
        events.extend(
            e for e in update.events if e.event_type != ClockEventType.SCHEDULE_EXHAUSTED
        )

    if current_level is not None:
        step(set_level(current, schedule, current_level, now, policy))
    if time_remaining_seconds is not None:
        step(adjust_time(current, schedule, time_remaining_seconds, now, policy))

    if current_level is not None or time_remaining_seconds is not None:
        step(resume(current, schedule, now, policy))
    elif is_paused is True:
        step(pause(current, schedule, now, policy))
    elif is_paused is False:
        step(resume(current, schedule, now, policy))

    events.extend(_exhaustion_events(snapshot, current, schedule))
    return _result(snapshot, current, events)
