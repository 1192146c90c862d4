"""
Level Schedule Resolver.

Maps a level number to its BlindLevel entry. Level numbers are 1-based
positions in the schedule; the ``level`` field stored inside an entry is
informational only.

─── 입력 형식 ───
The tournament row stores ``blind_structure`` as JSON. Entries may carry
``duration_seconds`` or (fractional) ``duration_minutes``; minutes are
rounded half-up to whole seconds.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, List, Optional, Union

from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    BlindLevel,
    ClockPolicy,
    LevelSchedule,
    EndOfSchedule,
)
from pokerclock.utils.errors import ConfigurationError
from pokerclock.utils.json_utils import json_loads

LevelLookup = Union[BlindLevel, EndOfSchedule]

DEFAULT_POLICY = ClockPolicy()


def resolve_level(schedule: Optional[LevelSchedule], level: int) -> LevelLookup:
    """Return the entry for ``level`` or END_OF_SCHEDULE.

    An absent or empty schedule resolves every level to END_OF_SCHEDULE.
    """
    if not schedule or level < 1 or level > len(schedule):
        return END_OF_SCHEDULE
    return schedule[level - 1]


def level_duration(entry: BlindLevel, policy: ClockPolicy = DEFAULT_POLICY) -> int:
    """Duration of a level in seconds, defaulting absent/non-positive values."""
    if entry.duration_seconds is None or entry.duration_seconds <= 0:
        return policy.default_level_duration_seconds
    return entry.duration_seconds


def duration_of(
    schedule: Optional[LevelSchedule],
    level: int,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> Optional[int]:
    """Duration of ``level`` or None when it lies past the schedule."""
    entry = resolve_level(schedule, level)
    if entry is END_OF_SCHEDULE:
        return None
    return level_duration(entry, policy)


def last_level(schedule: Optional[LevelSchedule]) -> int:
    return len(schedule) if schedule else 0


# ─────────────────────────────────────────────────────────────────
# 파싱
# ─────────────────────────────────────────────────────────────────


def _first(data: dict, *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_int(value: Any, field_name: str, position: int) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid {field_name} at level {position}",
            {"level": position, "field": field_name, "value": repr(value)},
        )


def _as_float(value: Any, field_name: str, position: int) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid {field_name} at level {position}",
            {"level": position, "field": field_name, "value": repr(value)},
        )


def _minutes_to_seconds(minutes: float) -> int:
    # half-up, matching how stored schedules were authored
    return int(math.floor(minutes * 60 + 0.5))


def _parse_entry(raw: Any, position: int) -> BlindLevel:
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Level {position} is not an object",
            {"level": position},
        )

    duration_seconds: Optional[int] = None
    seconds = _first(raw, "duration_seconds", "durationSeconds")
    minutes = _first(raw, "duration_minutes", "durationMinutes", "duration")
    if seconds is not None:
        duration_seconds = int(_as_float(seconds, "duration_seconds", position))
    elif minutes is not None:
        duration_seconds = _minutes_to_seconds(_as_float(minutes, "duration_minutes", position))

    return BlindLevel(
        level=position,
        small_blind=_as_int(_first(raw, "small_blind", "smallBlind"), "small_blind", position),
        big_blind=_as_int(_first(raw, "big_blind", "bigBlind"), "big_blind", position),
        ante=_as_int(_first(raw, "ante", "antes"), "ante", position),
        duration_seconds=duration_seconds,
        is_break=bool(_first(raw, "is_break", "isBreak", "break")),
        addons_allowed=bool(_first(raw, "addons_allowed", "addonsAllowed", "allow_addon")),
    )


def parse_schedule(raw: Any) -> LevelSchedule:
    """Build a schedule from the stored ``blind_structure`` value.

    Accepts a list of dicts, a JSON string of one, or None (empty schedule).

    Raises:
        ConfigurationError: When the value or an entry cannot be interpreted.
    """
    if raw is None or raw == "":
        return ()
    if isinstance(raw, (str, bytes)):
        try:
            raw = json_loads(raw)
        except ValueError:
            raise ConfigurationError("blind_structure is not valid JSON")
    if isinstance(raw, dict) and "levels" in raw:
        raw = raw["levels"]
    if not isinstance(raw, list):
        raise ConfigurationError("blind_structure must be a list of levels")
    return tuple(_parse_entry(item, i) for i, item in enumerate(raw, start=1))


def schedule_to_json(schedule: Iterable[BlindLevel]) -> List[dict]:
    return [level.to_dict() for level in schedule]


def create_standard_blind_structure(
    starting_sb: int = 25,
    levels: int = 15,
    duration_minutes: int = 15,
    break_every: int = 0,
    break_minutes: int = 10,
) -> LevelSchedule:
    """표준 블라인드 구조 생성.

    Args:
        starting_sb: 시작 스몰 블라인드
        levels: 플레이 레벨 수 (브레이크 제외)
        duration_minutes: 레벨당 시간 (분)
        break_every: N 레벨마다 브레이크 삽입 (0이면 없음)
        break_minutes: 브레이크 시간 (분)

    Returns:
        BlindLevel 튜플 (1-based 순서)
    """
    result: List[BlindLevel] = []
    sb = starting_sb

    for i in range(1, levels + 1):
        if i >= 5:
            ante = max(sb // 4, 25)
        else:
            ante = 0

        if i >= 10:
            duration = max(duration_minutes - 3, 8)
        elif i >= 7:
            duration = max(duration_minutes - 2, 10)
        else:
            duration = duration_minutes

        result.append(BlindLevel(
            level=len(result) + 1,
            small_blind=sb,
            big_blind=sb * 2,
            ante=ante,
            duration_seconds=duration * 60,
            addons_allowed=False,
        ))

        if break_every and i % break_every == 0 and i < levels:
            result.append(BlindLevel(
                level=len(result) + 1,
                duration_seconds=break_minutes * 60,
                is_break=True,
                addons_allowed=(i == break_every),  # 첫 브레이크에서 애드온
            ))

        # 다음 레벨 SB (약 1.3~1.5배, 단위 반올림, 항상 증가)
        if sb < 100:
            unit, factor = 25, 1.5
        elif sb < 500:
            unit, factor = 50, 1.4
        else:
            unit, factor = 100, 1.3
        rounded = (int(sb * factor) + unit // 2) // unit * unit
        sb = max(rounded, sb + unit)

    return tuple(result)
