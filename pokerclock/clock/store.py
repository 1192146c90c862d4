"""
Clock State Store.

Durable keyed storage of one ``ClockSnapshot`` per tournament plus the
read-only tournament facts the clock needs (status, level schedule).

─── 동시성 ───
``write_clock`` is conditional: a snapshot is written only when its
``last_updated`` is not older than the stored one. A stale writer gets
``WriteResult.CONFLICT`` back and is expected to re-read and retry. No lock
is taken; the latest timestamp wins.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from enum import Enum
from typing import AsyncIterator, List, Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pokerclock.clock.models import ClockSnapshot, LevelSchedule, TournamentInfo, ensure_utc
from pokerclock.clock.schedule import parse_schedule
from pokerclock.logging_config import get_logger
from pokerclock.models import Tournament, TournamentClock, TournamentStatus
from pokerclock.utils.db import session_scope
from pokerclock.utils.errors import ConfigurationError, StoreUnavailableError

logger = get_logger(__name__)


class WriteResult(str, Enum):
    OK = "ok"
    CONFLICT = "conflict"


class ClockStore(Protocol):
    """Persistence consumed by the clock service and reconciliation driver."""

    async def read_clock(self, tournament_id: str) -> Optional[ClockSnapshot]:
        ...

    async def write_clock(self, snapshot: ClockSnapshot) -> WriteResult:
        ...

    async def create_clock(self, snapshot: ClockSnapshot) -> None:
        """Insert or replace the clock row (explicit initialization only)."""
        ...

    async def get_tournament(self, tournament_id: str) -> Optional[TournamentInfo]:
        ...

    async def list_active_tournaments(self) -> List[TournamentInfo]:
        ...

    async def finish_tournament(self, tournament_id: str) -> None:
        ...


def schedule_or_empty(tournament_id: str, raw: object) -> LevelSchedule:
    """Parse a stored schedule, degrading a malformed one to empty."""
    try:
        return parse_schedule(raw)
    except ConfigurationError as e:
        logger.warning(
            "blind_structure_invalid",
            tournament_id=tournament_id,
            error=e.message,
            details=e.details,
        )
        return ()


def row_to_snapshot(row: TournamentClock) -> ClockSnapshot:
    return ClockSnapshot(
        tournament_id=row.tournament_id,
        current_level=row.current_level,
        time_remaining_seconds=max(0, row.time_remaining_seconds),
        is_paused=row.is_paused,
        last_updated=ensure_utc(row.last_updated),
        total_pause_time_seconds=row.total_pause_time_seconds or 0,
        paused_at=ensure_utc(row.paused_at) if row.paused_at else None,
    )


def row_to_tournament(row: Tournament) -> TournamentInfo:
    return TournamentInfo(
        id=row.id,
        name=row.name,
        status=row.status,
        schedule=schedule_or_empty(row.id, row.blind_structure),
        last_level_rebuy=row.last_level_rebuy,
    )


def _snapshot_values(snapshot: ClockSnapshot) -> dict:
    return {
        "current_level": snapshot.current_level,
        "time_remaining_seconds": snapshot.time_remaining_seconds,
        "is_paused": snapshot.is_paused,
        "paused_at": snapshot.paused_at,
        "total_pause_time_seconds": snapshot.total_pause_time_seconds,
        "last_updated": snapshot.last_updated,
    }


class SqlClockStore:
    """``ClockStore`` backed by SQLAlchemy async sessions.

    Usage:
        store = SqlClockStore(async_session_factory)
        snapshot = await store.read_clock("t-1")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with session_scope(self._session_factory) as session:
                yield session
        except (SQLAlchemyError, OSError) as e:
            logger.warning("clock_store_error", operation=operation, error=str(e))
            raise StoreUnavailableError(
                details={"operation": operation, "error": type(e).__name__}
            ) from e

    async def read_clock(self, tournament_id: str) -> Optional[ClockSnapshot]:
        async with self._session("read_clock") as session:
            row = await session.get(TournamentClock, tournament_id)
            if row is None:
                return None
            return row_to_snapshot(row)

    async def write_clock(self, snapshot: ClockSnapshot) -> WriteResult:
        stmt = (
            update(TournamentClock)
            .where(TournamentClock.tournament_id == snapshot.tournament_id)
            .where(TournamentClock.last_updated <= snapshot.last_updated)
            .values(**_snapshot_values(snapshot))
            .execution_options(synchronize_session=False)
        )
        async with self._session("write_clock") as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                logger.info(
                    "clock_write_conflict",
                    tournament_id=snapshot.tournament_id,
                    last_updated=snapshot.last_updated.isoformat(),
                )
                return WriteResult.CONFLICT
        return WriteResult.OK

    async def create_clock(self, snapshot: ClockSnapshot) -> None:
        async with self._session("create_clock") as session:
            await session.merge(
                TournamentClock(
                    tournament_id=snapshot.tournament_id,
                    **_snapshot_values(snapshot),
                )
            )

    async def get_tournament(self, tournament_id: str) -> Optional[TournamentInfo]:
        async with self._session("get_tournament") as session:
            row = await session.get(Tournament, tournament_id)
            if row is None:
                return None
            return row_to_tournament(row)

    async def list_active_tournaments(self) -> List[TournamentInfo]:
        stmt = (
            select(Tournament)
            .where(Tournament.status == TournamentStatus.ACTIVE.value)
            .order_by(Tournament.id)
        )
        async with self._session("list_active_tournaments") as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [row_to_tournament(row) for row in rows]

    async def finish_tournament(self, tournament_id: str) -> None:
        stmt = (
            update(Tournament)
            .where(Tournament.id == tournament_id)
            .values(status=TournamentStatus.FINISHED.value)
            .execution_options(synchronize_session=False)
        )
        async with self._session("finish_tournament") as session:
            await session.execute(stmt)
