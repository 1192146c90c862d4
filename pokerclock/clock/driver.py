"""
Periodic Reconciliation Driver.

Keeps every active tournament's clock moving with or without connected
viewers. Owned by the application lifespan (explicit ``start``/``stop``);
``run_once`` performs one pass and is what tests and ``POST /clock/sync``
call directly.

─── 동작 방식 ───────────────────────────────────────────────────────────

1. 활성 토너먼트 목록 조회 (status == active)
2. 토너먼트별 reconcile (병렬, 동시 실행 수 제한)
   - 시계 없음 → 건너뜀 (자동 생성하지 않음)
   - 일시정지 → 건너뜀 (읽기-수정-쓰기 없음)
   - 경과 < 임계값 → 건너뜀
3. 토너먼트별 실패는 격리: 로그 후 다음 주기에 재시도
4. 각 토너먼트 작업은 operation_timeout 안에 끝나야 함

─────────────────────────────────────────────────────────────────────────

Main path: 10 s interval, 10 s threshold. Fast path: same driver with a
1 s interval and 1 s threshold.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pokerclock.clock.models import TournamentInfo, utcnow
from pokerclock.clock.service import ClockService, ReconcileOutcome, ReconcileResult
from pokerclock.clock.store import ClockStore
from pokerclock.logging_config import get_logger, tournament_context
from pokerclock.middleware.prometheus import record_reconcile, record_sync_pass
from pokerclock.middleware.sentry import capture_clock_error
from pokerclock.utils.errors import ClockError, StoreUnavailableError

logger = get_logger(__name__)

FAILED = "failed"
DEFAULT_CONCURRENCY = 10


@dataclass
class DriverMetrics:
    """리컨실 드라이버 메트릭."""

    total_runs: int = 0
    total_updated: int = 0
    total_failed: int = 0
    total_level_changes: int = 0
    last_run_at: Optional[datetime] = None
    last_run_duration_ms: float = 0.0
    max_run_duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_runs": self.total_runs,
            "total_updated": self.total_updated,
            "total_failed": self.total_failed,
            "total_level_changes": self.total_level_changes,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_duration_ms": round(self.last_run_duration_ms, 2),
            "max_run_duration_ms": round(self.max_run_duration_ms, 2),
        }


@dataclass
class TournamentSyncResult:
    tournament_id: str
    status: str
    level_changes: int = 0
    current_level: Optional[int] = None
    time_remaining_seconds: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_result(cls, result: ReconcileResult) -> "TournamentSyncResult":
        snapshot = result.snapshot
        return cls(
            tournament_id=result.tournament_id,
            status=result.outcome.value,
            level_changes=result.level_changes,
            current_level=snapshot.current_level if snapshot else None,
            time_remaining_seconds=snapshot.time_remaining_seconds if snapshot else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tournament_id": self.tournament_id,
            "status": self.status,
            "level_changes": self.level_changes,
        }
        if self.current_level is not None:
            data["current_level"] = self.current_level
            data["time_remaining_seconds"] = self.time_remaining_seconds
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class SyncReport:
    """Result of one reconciliation pass."""

    total_tournaments: int = 0
    results: List[TournamentSyncResult] = field(default_factory=list)
    error: Optional[str] = None
    duration_ms: float = 0.0

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def synced(self) -> int:
        return self.count(ReconcileOutcome.UPDATED.value)

    @property
    def failed(self) -> int:
        return self.count(FAILED)

    @property
    def level_changes(self) -> int:
        return sum(r.level_changes for r in self.results)

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error:
            message = f"Clock sync failed: {self.error}"
        else:
            message = (
                f"Synced {self.synced} of {self.total_tournaments} active tournaments"
            )
        return {
            "success": self.success,
            "message": message,
            "synced_tournaments": self.synced,
            "total_tournaments": self.total_tournaments,
            "failed_tournaments": self.failed,
            "level_changes": self.level_changes,
            "duration_ms": round(self.duration_ms, 2),
            "results": [r.to_dict() for r in self.results],
        }


class ReconciliationDriver:
    """Timer-driven reconcile loop over all active tournaments.

    Usage:
        driver = ReconciliationDriver(service, store, interval_seconds=10)
        await driver.start()
        ...
        await driver.stop()
    """

    def __init__(
        self,
        service: ClockService,
        store: ClockStore,
        interval_seconds: float = 10.0,
        min_elapsed_seconds: Optional[int] = None,
        operation_timeout_seconds: float = 5.0,
        concurrency: int = DEFAULT_CONCURRENCY,
        name: str = "main",
    ):
        self.service = service
        self.store = store
        self.interval_seconds = interval_seconds
        self.min_elapsed_seconds = min_elapsed_seconds
        self.operation_timeout_seconds = operation_timeout_seconds
        self.name = name
        self._semaphore = asyncio.Semaphore(max(1, concurrency))
        self._task: Optional[asyncio.Task] = None
        self._running = False
        self._metrics = DriverMetrics()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def metrics(self) -> DriverMetrics:
        return self._metrics

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"clock-driver-{self.name}")
        logger.info(
            "clock_driver_started",
            driver=self.name,
            interval_seconds=self.interval_seconds,
            min_elapsed_seconds=self.min_elapsed_seconds,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("clock_driver_stopped", driver=self.name, **self._metrics.to_dict())

    async def _run_loop(self) -> None:
        while self._running:
            started = time.monotonic()
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("clock_driver_pass_failed", driver=self.name)

            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.interval_seconds - elapsed))

    # =========================================================================
    # One pass
    # =========================================================================

    async def run_once(self, now: Optional[datetime] = None) -> SyncReport:
        """Reconcile every active tournament once.

        Args:
            now: Reference time for the whole pass (defaults to wall clock)
        """
        started = time.monotonic()
        at = now or utcnow()
        report = SyncReport()

        try:
            tournaments = await self.store.list_active_tournaments()
        except StoreUnavailableError as e:
            logger.warning("clock_driver_list_failed", driver=self.name, error=e.message)
            report.error = e.message
            self._finish(report, started, at)
            return report

        report.total_tournaments = len(tournaments)
        report.results = list(
            await asyncio.gather(*(self._reconcile_one(t, at) for t in tournaments))
        )
        self._finish(report, started, at)

        if report.synced or report.failed:
            logger.info(
                "clock_sync_pass",
                driver=self.name,
                total=report.total_tournaments,
                synced=report.synced,
                failed=report.failed,
                level_changes=report.level_changes,
                duration_ms=round(report.duration_ms, 2),
            )
        return report

    async def _reconcile_one(self, tournament: TournamentInfo, now: datetime) -> TournamentSyncResult:
        async with self._semaphore:
            with tournament_context(tournament.id):
                try:
                    result = await asyncio.wait_for(
                        self.service.reconcile_tournament(
                            tournament,
                            now=now,
                            min_elapsed_seconds=self.min_elapsed_seconds,
                        ),
                        timeout=self.operation_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "clock_reconcile_timeout",
                        timeout_seconds=self.operation_timeout_seconds,
                    )
                    record_reconcile(FAILED)
                    return TournamentSyncResult(tournament.id, FAILED, error="timeout")
                except ClockError as e:
                    logger.warning("clock_reconcile_failed", error_code=e.code, error=e.message)
                    record_reconcile(FAILED)
                    return TournamentSyncResult(tournament.id, FAILED, error=e.message)
                except Exception as e:
                    # 한 토너먼트의 실패가 다른 토너먼트를 막지 않음
                    logger.exception("clock_reconcile_error")
                    capture_clock_error(e, tournament.id, "reconcile", {"driver": self.name})
                    record_reconcile(FAILED)
                    return TournamentSyncResult(tournament.id, FAILED, error=type(e).__name__)

        record_reconcile(result.outcome.value)
        return TournamentSyncResult.from_result(result)

    def _finish(self, report: SyncReport, started: float, at: datetime) -> None:
        report.duration_ms = (time.monotonic() - started) * 1000
        m = self._metrics
        m.total_runs += 1
        m.total_updated += report.synced
        m.total_failed += report.failed
        m.total_level_changes += report.level_changes
        m.last_run_at = at
        m.last_run_duration_ms = report.duration_ms
        m.max_run_duration_ms = max(m.max_run_duration_ms, report.duration_ms)
        record_sync_pass(report.duration_ms / 1000, report.total_tournaments)
