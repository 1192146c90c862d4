"""
Clock Data Models.

Immutable state representations for the tournament clock.
All transitions go through ``pokerclock.clock.engine``; nothing mutates a
snapshot in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Dict, Optional, Tuple


# ─────────────────────────────────────────────────────────────────
# 시간 유틸리티
# ─────────────────────────────────────────────────────────────────


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive timestamps are read as UTC (legacy rows were written without zone).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_z(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string (``Z`` or offset, or none) into aware UTC."""
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


# ─────────────────────────────────────────────────────────────────
# 열거형
# ─────────────────────────────────────────────────────────────────


class ClockEventType(Enum):
    """Events produced by clock transitions."""

    INITIALIZED = auto()
    LEVEL_CHANGED = auto()
    SCHEDULE_EXHAUSTED = auto()  # 마지막 레벨 시간 소진
    PAUSED = auto()
    RESUMED = auto()
    TIME_ADJUSTED = auto()
    TOURNAMENT_FINISHED = auto()


class ClockState(str, Enum):
    """Derived display state of a clock."""

    RUNNING = "running"
    PAUSED = "paused"
    ENDED = "ended"


class EndOfSchedule:
    """Sentinel returned when a level number lies past the schedule."""

    _instance: Optional["EndOfSchedule"] = None

    def __new__(cls) -> "EndOfSchedule":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_SCHEDULE"

    def __bool__(self) -> bool:
        return False


END_OF_SCHEDULE = EndOfSchedule()


# ─────────────────────────────────────────────────────────────────
# 블라인드 레벨 / 스케줄
# ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BlindLevel:
    """One entry of a tournament's level schedule.

    ``duration_seconds`` may be None or non-positive; the resolver then
    applies the policy default.
    """

    level: int
    small_blind: int = 0
    big_blind: int = 0
    ante: int = 0
    duration_seconds: Optional[int] = None
    is_break: bool = False
    addons_allowed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        duration_minutes = None
        if self.duration_seconds is not None:
            duration_minutes = round(self.duration_seconds / 60, 2)
        return {
            "level": self.level,
            "small_blind": self.small_blind,
            "big_blind": self.big_blind,
            "ante": self.ante,
            "duration_seconds": self.duration_seconds,
            "duration_minutes": duration_minutes,
            "is_break": self.is_break,
            "addons_allowed": self.addons_allowed,
        }


LevelSchedule = Tuple[BlindLevel, ...]


@dataclass(frozen=True)
class ClockPolicy:
    """Every clock default in one place, built once from settings."""

    default_level_duration_seconds: int = 1200
    min_reconcile_elapsed_seconds: int = 10
    default_last_level_rebuy: int = 5
    auto_finish_on_schedule_exhausted: bool = False

    @classmethod
    def from_settings(cls, settings: Any) -> "ClockPolicy":
        return cls(
            default_level_duration_seconds=settings.clock_default_level_duration_seconds,
            min_reconcile_elapsed_seconds=settings.clock_min_reconcile_elapsed_seconds,
            default_last_level_rebuy=settings.clock_default_last_level_rebuy,
            auto_finish_on_schedule_exhausted=settings.clock_auto_finish_on_exhausted,
        )

    def with_threshold(self, seconds: int) -> "ClockPolicy":
        return replace(self, min_reconcile_elapsed_seconds=seconds)


# ─────────────────────────────────────────────────────────────────
# 스냅샷
# ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClockSnapshot:
    """Persisted clock state of one tournament.

    ``time_remaining_seconds`` is the remaining time of ``current_level`` as
    of ``last_updated``; a running clock is projected forward from there.
    """

    tournament_id: str
    current_level: int
    time_remaining_seconds: int
    is_paused: bool
    last_updated: datetime
    total_pause_time_seconds: int = 0
    paused_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "last_updated", ensure_utc(self.last_updated))
        if self.paused_at is not None:
            object.__setattr__(self, "paused_at", ensure_utc(self.paused_at))

    def with_level(self, level: int, remaining: int) -> "ClockSnapshot":
        return replace(self, current_level=level, time_remaining_seconds=remaining)

    def with_remaining(self, remaining: int) -> "ClockSnapshot":
        return replace(self, time_remaining_seconds=remaining)

    def with_timestamp(self, now: datetime) -> "ClockSnapshot":
        return replace(self, last_updated=now)

    def with_paused(self, now: datetime) -> "ClockSnapshot":
        return replace(self, is_paused=True, paused_at=now, last_updated=now)

    def with_resumed(self, now: datetime, pause_seconds: int) -> "ClockSnapshot":
        return replace(
            self,
            is_paused=False,
            paused_at=None,
            last_updated=now,
            total_pause_time_seconds=self.total_pause_time_seconds + pause_seconds,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tournament_id": self.tournament_id,
            "current_level": self.current_level,
            "time_remaining_seconds": self.time_remaining_seconds,
            "is_paused": self.is_paused,
            "last_updated": isoformat_z(self.last_updated),
            "total_pause_time_seconds": self.total_pause_time_seconds,
            "paused_at": isoformat_z(self.paused_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClockSnapshot":
        paused_at = data.get("paused_at")
        return cls(
            tournament_id=str(data["tournament_id"]),
            current_level=int(data["current_level"]),
            time_remaining_seconds=int(data["time_remaining_seconds"]),
            is_paused=bool(data["is_paused"]),
            last_updated=parse_timestamp(data["last_updated"]),
            total_pause_time_seconds=int(data.get("total_pause_time_seconds") or 0),
            paused_at=parse_timestamp(paused_at) if paused_at else None,
        )


# ─────────────────────────────────────────────────────────────────
# 이벤트 / 결과
# ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClockEvent:
    """Event produced by a clock transition."""

    event_type: ClockEventType
    tournament_id: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.name,
            "tournament_id": self.tournament_id,
            "data": self.data,
        }


@dataclass(frozen=True)
class ClockUpdate:
    """Result of an engine transition."""

    snapshot: ClockSnapshot
    events: Tuple[ClockEvent, ...] = ()
    changed: bool = False

    def events_of(self, event_type: ClockEventType) -> Tuple[ClockEvent, ...]:
        return tuple(e for e in self.events if e.event_type == event_type)

    @property
    def level_changes(self) -> int:
        return len(self.events_of(ClockEventType.LEVEL_CHANGED))

    @property
    def exhausted(self) -> bool:
        return bool(self.events_of(ClockEventType.SCHEDULE_EXHAUSTED))


# ─────────────────────────────────────────────────────────────────
# 토너먼트 / 뷰어
# ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TournamentInfo:
    """What the clock needs to know about a tournament."""

    id: str
    name: str = ""
    status: str = "active"
    schedule: LevelSchedule = ()
    last_level_rebuy: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_closed(self) -> bool:
        return self.status in ("finished", "cancelled")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "blind_structure": [level.to_dict() for level in self.schedule],
            "last_level_rebuy": self.last_level_rebuy,
        }


@dataclass(frozen=True)
class Viewer:
    """An authenticated client; only admins may issue clock commands."""

    user_id: str
    is_admin: bool = False
