"""Tournament rules that depend on the clock (rebuy / add-on windows)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    ClockPolicy,
    ClockSnapshot,
    LevelSchedule,
)
from pokerclock.clock.schedule import DEFAULT_POLICY, resolve_level


def effective_last_rebuy_level(
    last_level_rebuy: Optional[int],
    policy: ClockPolicy = DEFAULT_POLICY,
) -> int:
    if last_level_rebuy is None:
        return policy.default_last_level_rebuy
    return last_level_rebuy


def can_rebuy(
    snapshot: ClockSnapshot,
    last_level_rebuy: Optional[int] = None,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> bool:
    """Rebuys are open up to and including the last rebuy level."""
    return snapshot.current_level <= effective_last_rebuy_level(last_level_rebuy, policy)


def can_addon(snapshot: ClockSnapshot, schedule: Optional[LevelSchedule]) -> bool:
    """Add-ons are open on levels flagged ``addons_allowed``.

    Schedules that flag no level at all fall back to the house rule:
    add-ons only while the clock is paused on level 1.
    """
    if schedule and any(level.addons_allowed for level in schedule):
        entry = resolve_level(schedule, snapshot.current_level)
        return entry is not END_OF_SCHEDULE and entry.addons_allowed
    return snapshot.is_paused and snapshot.current_level == 1


def rebuy_status_message(
    snapshot: ClockSnapshot,
    last_level_rebuy: Optional[int] = None,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> str:
    last = effective_last_rebuy_level(last_level_rebuy, policy)
    if snapshot.current_level <= last:
        return f"Rebuys open until the end of level {last}"
    return f"Rebuy period closed after level {last}"


def addon_status_message(snapshot: ClockSnapshot, schedule: Optional[LevelSchedule]) -> str:
    if can_addon(snapshot, schedule):
        return "Add-ons available"
    return "Add-ons not available at this level"


@dataclass(frozen=True)
class RulesInfo:
    can_rebuy: bool
    can_addon: bool
    last_level_rebuy: int
    rebuy_message: str
    addon_message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "can_rebuy": self.can_rebuy,
            "can_addon": self.can_addon,
            "last_level_rebuy": self.last_level_rebuy,
            "rebuy_message": self.rebuy_message,
            "addon_message": self.addon_message,
        }


def rules_for(
    snapshot: ClockSnapshot,
    schedule: Optional[LevelSchedule],
    last_level_rebuy: Optional[int] = None,
    policy: ClockPolicy = DEFAULT_POLICY,
) -> RulesInfo:
    return RulesInfo(
        can_rebuy=can_rebuy(snapshot, last_level_rebuy, policy),
        can_addon=can_addon(snapshot, schedule),
        last_level_rebuy=effective_last_rebuy_level(last_level_rebuy, policy),
        rebuy_message=rebuy_status_message(snapshot, last_level_rebuy, policy),
        addon_message=addon_status_message(snapshot, schedule),
    )
