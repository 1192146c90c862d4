"""
Clock Service.

One entry point for everything that reads or changes a tournament clock:
HTTP routes, the WebSocket handler and the reconciliation driver all go
through here.

─── 동시성 ───
- In-process: one ``asyncio.Lock`` per tournament, so two advancements of
  the same clock never interleave. Locks are held weakly and dropped once
  idle.
- Across processes: conditional writes (latest ``last_updated`` wins).
  A losing writer re-reads and recomputes, up to ``write_retries`` times.

─── 권한 ───
Every mutating command requires ``Viewer.is_admin``; the snapshot is left
untouched on rejection.
"""

from __future__ import annotations

import asyncio
import weakref
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from pokerclock.clock import engine
from pokerclock.clock.broadcaster import ClockPublisher
from pokerclock.clock.models import (
    END_OF_SCHEDULE,
    ClockPolicy,
    ClockSnapshot,
    ClockUpdate,
    LevelSchedule,
    TournamentInfo,
    Viewer,
    utcnow,
)
from pokerclock.clock.projector import project, should_reconcile
from pokerclock.clock.rules import RulesInfo, rules_for
from pokerclock.clock.schedule import resolve_level
from pokerclock.clock.store import ClockStore, WriteResult
from pokerclock.logging_config import get_logger
from pokerclock.middleware.prometheus import (
    record_clock_command,
    record_level_changes,
)
from pokerclock.utils.errors import (
    AuthenticationRequiredError,
    ClockNotFoundError,
    TournamentNotActiveError,
    TournamentNotFoundError,
    UnauthorizedError,
    WriteConflictError,
)

logger = get_logger(__name__)

Transition = Callable[[ClockSnapshot, LevelSchedule, datetime], ClockUpdate]


class ReconcileOutcome(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    SKIPPED_PAUSED = "skipped_paused"
    SKIPPED_THRESHOLD = "skipped_threshold"
    NO_CLOCK = "no_clock"


@dataclass(frozen=True)
class ReconcileResult:
    tournament_id: str
    outcome: ReconcileOutcome
    snapshot: Optional[ClockSnapshot] = None
    level_changes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "tournament_id": self.tournament_id,
            "status": self.outcome.value,
            "level_changes": self.level_changes,
        }
        if self.snapshot is not None:
            result["current_level"] = self.snapshot.current_level
            result["time_remaining_seconds"] = self.snapshot.time_remaining_seconds
        return result


@dataclass(frozen=True)
class ClockView:
    """Corrected clock as returned to callers."""

    tournament: TournamentInfo
    snapshot: ClockSnapshot
    rules: RulesInfo

    def to_dict(self) -> Dict[str, Any]:
        current = resolve_level(self.tournament.schedule, self.snapshot.current_level)
        upcoming = resolve_level(self.tournament.schedule, self.snapshot.current_level + 1)
        return {
            "tournament": self.tournament.to_dict(),
            "clockState": self.snapshot.to_dict(),
            "state": engine.clock_state(self.snapshot, self.tournament.schedule).value,
            "level": None if current is END_OF_SCHEDULE else current.to_dict(),
            "nextLevel": None if upcoming is END_OF_SCHEDULE else upcoming.to_dict(),
            "rules": self.rules.to_dict(),
        }


class ClockService:
    """Command and query surface over one ClockStore.

    Usage:
        service = ClockService(store, broadcaster, ClockPolicy())
        view = await service.join("t-1")
        await service.pause("t-1", admin_viewer)
    """

    def __init__(
        self,
        store: ClockStore,
        publisher: Optional[ClockPublisher] = None,
        policy: Optional[ClockPolicy] = None,
        write_retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.publisher = publisher
        self.policy = policy or ClockPolicy()
        self.write_retries = max(1, write_retries)
        self._clock = clock
        # 대기자/보유자가 없으면 락도 사라짐
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _now(self) -> datetime:
        return self._clock()

    def _lock_for(self, tournament_id: str) -> asyncio.Lock:
        lock = self._locks.get(tournament_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tournament_id] = lock
        return lock

    @staticmethod
    def _require_admin(viewer: Optional[Viewer]) -> Viewer:
        if viewer is None:
            raise AuthenticationRequiredError()
        if not viewer.is_admin:
            raise UnauthorizedError()
        return viewer

    async def _require_tournament(self, tournament_id: str) -> TournamentInfo:
        tournament = await self.store.get_tournament(tournament_id)
        if tournament is None:
            raise TournamentNotFoundError(tournament_id)
        if not tournament.schedule:
            logger.warning("clock_schedule_empty", tournament_id=tournament_id)
        return tournament

    @staticmethod
    def _require_open(tournament: TournamentInfo) -> None:
        # 종료/취소된 토너먼트의 시계는 읽기 전용
        if tournament.is_closed:
            raise TournamentNotActiveError(tournament.id, tournament.status)

    async def _require_clock(self, tournament_id: str) -> ClockSnapshot:
        snapshot = await self.store.read_clock(tournament_id)
        if snapshot is None:
            raise ClockNotFoundError(tournament_id)
        return snapshot

    def _view(self, tournament: TournamentInfo, snapshot: ClockSnapshot) -> ClockView:
        return ClockView(
            tournament=tournament,
            snapshot=snapshot,
            rules=rules_for(snapshot, tournament.schedule, tournament.last_level_rebuy, self.policy),
        )

    async def _publish(self, tournament: TournamentInfo, update: ClockUpdate) -> None:
        if self.publisher is None or not update.changed:
            return
        try:
            await self.publisher.publish_update(tournament, update)
        except Exception as e:
            # 저장은 이미 끝남; 다음 푸시가 상태를 덮어씀
            logger.error("clock_publish_failed", tournament_id=tournament.id, error=str(e))

    async def _after_write(
        self,
        tournament: TournamentInfo,
        update: ClockUpdate,
        source: str,
    ) -> None:
        record_level_changes(update.level_changes, source)
        if update.level_changes:
            logger.info(
                "clock_level_changed",
                tournament_id=tournament.id,
                level=update.snapshot.current_level,
                steps=update.level_changes,
                source=source,
            )
        await self._publish(tournament, update)

        if update.exhausted:
            logger.info(
                "clock_schedule_exhausted",
                tournament_id=tournament.id,
                level=update.snapshot.current_level,
            )
            if self.policy.auto_finish_on_schedule_exhausted:
                await self._finish_tournament(tournament, update.snapshot)

    async def _finish_tournament(self, tournament: TournamentInfo, snapshot: ClockSnapshot) -> None:
        await self.store.finish_tournament(tournament.id)
        logger.info("tournament_finished", tournament_id=tournament.id)
        if self.publisher is None:
            return
        try:
            await self.publisher.publish_tournament_ended(tournament, snapshot)
        except Exception as e:
            logger.error("clock_publish_failed", tournament_id=tournament.id, error=str(e))

    async def _apply(
        self,
        tournament: TournamentInfo,
        transition: Transition,
        source: str,
    ) -> ClockUpdate:
        """Read-modify-write with retry on write conflict. Caller holds the lock."""
        for attempt in range(1, self.write_retries + 1):
            snapshot = await self._require_clock(tournament.id)
            update = transition(snapshot, tournament.schedule, self._now())
            if not update.changed:
                return update

            if await self.store.write_clock(update.snapshot) == WriteResult.OK:
                await self._after_write(tournament, update, source)
                return update

            logger.info(
                "clock_write_retry",
                tournament_id=tournament.id,
                attempt=attempt,
                source=source,
            )

        raise WriteConflictError(tournament.id, self.write_retries)

    async def _command(
        self,
        name: str,
        tournament_id: str,
        viewer: Optional[Viewer],
        transition: Transition,
    ) -> ClockView:
        try:
            self._require_admin(viewer)
        except (AuthenticationRequiredError, UnauthorizedError):
            record_clock_command(name, "rejected")
            logger.warning(
                "clock_command_rejected",
                tournament_id=tournament_id,
                command=name,
                user_id=viewer.user_id if viewer else None,
            )
            raise

        async with self._lock_for(tournament_id):
            tournament = await self._require_tournament(tournament_id)
            self._require_open(tournament)
            update = await self._apply(tournament, transition, "manual")

        record_clock_command(name, "ok")
        logger.info(
            "clock_command_applied",
            tournament_id=tournament_id,
            command=name,
            user_id=viewer.user_id,
            level=update.snapshot.current_level,
            time_remaining_seconds=update.snapshot.time_remaining_seconds,
            is_paused=update.snapshot.is_paused,
        )
        return self._view(tournament, update.snapshot)

    # =========================================================================
    # Queries
    # =========================================================================

    async def join(self, tournament_id: str, user_id: Optional[str] = None) -> ClockView:
        """Corrected clock for a joining viewer (compute-on-join).

        The correction is persisted when it crosses a level boundary or
        the reconcile threshold; otherwise it is only returned. A closed
        tournament's clock is returned as stored.
        """
        async with self._lock_for(tournament_id):
            tournament = await self._require_tournament(tournament_id)
            snapshot = await self._require_clock(tournament_id)
            if tournament.is_closed:
                return self._view(tournament, snapshot)

            now = self._now()
            update = engine.advance(snapshot, tournament.schedule, now, self.policy)

            if update.changed and (
                update.events or should_reconcile(project(snapshot, now), self.policy)
            ):
                update = await self._apply(
                    tournament,
                    lambda s, sched, n: engine.advance(s, sched, n, self.policy),
                    "reconcile",
                )

        logger.debug("clock_joined", tournament_id=tournament_id, user_id=user_id)
        return self._view(tournament, update.snapshot)

    async def get_state(self, tournament_id: str) -> ClockView:
        return await self.join(tournament_id)

    # =========================================================================
    # Commands (admin)
    # =========================================================================

    async def initialize(
        self,
        tournament_id: str,
        viewer: Optional[Viewer],
        start_paused: bool = False,
    ) -> ClockView:
        """Create (or reset) the clock at level 1 with its full duration."""
        self._require_admin(viewer)
        async with self._lock_for(tournament_id):
            tournament = await self._require_tournament(tournament_id)
            self._require_open(tournament)
            update = engine.initialize_clock(
                tournament_id,
                tournament.schedule,
                self._now(),
                self.policy,
                start_paused=start_paused,
            )
            await self.store.create_clock(update.snapshot)
            await self._publish(tournament, update)

        record_clock_command("initialize", "ok")
        logger.info(
            "clock_initialized",
            tournament_id=tournament_id,
            user_id=viewer.user_id,
            time_remaining_seconds=update.snapshot.time_remaining_seconds,
        )
        return self._view(tournament, update.snapshot)

    async def pause(self, tournament_id: str, viewer: Optional[Viewer]) -> ClockView:
        return await self._command(
            "pause",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.pause(s, sched, now, self.policy),
        )

    async def resume(self, tournament_id: str, viewer: Optional[Viewer]) -> ClockView:
        return await self._command(
            "resume",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.resume(s, sched, now, self.policy),
        )

    async def toggle_pause(self, tournament_id: str, viewer: Optional[Viewer]) -> ClockView:
        # 현재 상태는 락 안에서 다시 읽음
        return await self._command(
            "toggle_pause",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.toggle_pause(s, sched, now, self.policy),
        )

    async def update_clock(
        self,
        tournament_id: str,
        viewer: Optional[Viewer],
        current_level: Optional[int] = None,
        time_remaining_seconds: Optional[int] = None,
        is_paused: Optional[bool] = None,
    ) -> ClockView:
        """Partial clock update; a new level or time restarts the clock."""
        return await self._command(
            "update",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.update_clock(
                s,
                sched,
                now,
                self.policy,
                current_level=current_level,
                time_remaining_seconds=time_remaining_seconds,
                is_paused=is_paused,
            ),
        )

    async def adjust_time(
        self,
        tournament_id: str,
        viewer: Optional[Viewer],
        new_seconds: int,
    ) -> ClockView:
        return await self._command(
            "adjust_time",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.adjust_time(s, sched, new_seconds, now, self.policy),
        )

    async def set_level(
        self,
        tournament_id: str,
        viewer: Optional[Viewer],
        new_level: int,
    ) -> ClockView:
        return await self._command(
            "set_level",
            tournament_id,
            viewer,
            lambda s, sched, now: engine.set_level(s, sched, new_level, now, self.policy),
        )

    # =========================================================================
    # Reconciliation
    # =========================================================================

    async def reconcile_tournament(
        self,
        tournament: TournamentInfo,
        now: Optional[datetime] = None,
        min_elapsed_seconds: Optional[int] = None,
    ) -> ReconcileResult:
        """Advance one active tournament's clock if enough time has passed.

        Missing clocks are skipped (never auto-created). Paused clocks are
        skipped without any read-modify-write.
        """
        policy = self.policy
        if min_elapsed_seconds is not None:
            policy = policy.with_threshold(min_elapsed_seconds)

        async with self._lock_for(tournament.id):
            snapshot = await self.store.read_clock(tournament.id)
            if snapshot is None:
                return ReconcileResult(tournament.id, ReconcileOutcome.NO_CLOCK)
            if snapshot.is_paused:
                return ReconcileResult(tournament.id, ReconcileOutcome.SKIPPED_PAUSED, snapshot)

            at = now or self._now()
            if not should_reconcile(project(snapshot, at), policy):
                return ReconcileResult(tournament.id, ReconcileOutcome.SKIPPED_THRESHOLD, snapshot)

            update = engine.advance(snapshot, tournament.schedule, at, self.policy)
            if not update.changed:
                return ReconcileResult(tournament.id, ReconcileOutcome.UNCHANGED, snapshot)

            if await self.store.write_clock(update.snapshot) != WriteResult.OK:
                # 더 최신 쓰기가 이김; 다음 주기에 그 기준으로 다시 계산
                logger.info("clock_reconcile_superseded", tournament_id=tournament.id)
                return ReconcileResult(tournament.id, ReconcileOutcome.UNCHANGED, snapshot)

            await self._after_write(tournament, update, "reconcile")

        return ReconcileResult(
            tournament.id,
            ReconcileOutcome.UPDATED,
            update.snapshot,
            update.level_changes,
        )
