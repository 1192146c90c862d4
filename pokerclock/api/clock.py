"""
Clock API Router.

토너먼트 시계 조회/제어 엔드포인트. Every read returns the corrected
(compute-on-join) clock; every command needs an admin bearer token.
"""

import logging
from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from pokerclock.api.deps import (
    get_clock_service,
    get_driver,
    get_trace_id,
    get_viewer,
    get_viewer_optional,
    verify_sync_caller,
)
from pokerclock.clock.driver import ReconciliationDriver
from pokerclock.clock.models import Viewer
from pokerclock.clock.service import ClockService, ClockView

logger = logging.getLogger(__name__)


# =============================================================================
# Request Models
# =============================================================================


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class TournamentRequest(_CamelModel):
    """토너먼트 지정 요청 (pause / resume)."""

    tournament_id: str = Field(..., alias="tournamentId", min_length=1, max_length=64)


class JoinRequest(TournamentRequest):
    """시계 참가 요청."""

    user_id: Optional[str] = Field(default=None, alias="userId", max_length=64)


class AdjustTimeRequest(TournamentRequest):
    """남은 시간 조정 요청. Negative values are clamped to 0."""

    new_seconds: int = Field(..., alias="newSeconds")


class SetLevelRequest(TournamentRequest):
    """레벨 변경 요청. Values below 1 are clamped to 1."""

    new_level: int = Field(..., alias="newLevel")


class InitializeRequest(_CamelModel):
    start_paused: bool = Field(default=False, alias="startPaused")


class ClockUpdateRequest(_CamelModel):
    """시계 부분 수정. Setting the level or the time restarts the clock."""

    current_level: Optional[int] = Field(default=None, alias="currentLevel", ge=1)
    time_remaining_seconds: Optional[int] = Field(default=None, alias="timeRemainingSeconds", ge=0)
    is_paused: Optional[bool] = Field(default=None, alias="isPaused")


def _ok(view: ClockView, **extra: Any) -> Dict[str, Any]:
    return {"success": True, **view.to_dict(), **extra}


# =============================================================================
# API Router
# =============================================================================

router = APIRouter(prefix="/api", tags=["Clock"], dependencies=[Depends(get_trace_id)])

ServiceDep = Annotated[ClockService, Depends(get_clock_service)]
AdminDep = Annotated[Viewer, Depends(get_viewer)]


@router.post("/clock/join")
async def join_clock(request: JoinRequest, service: ServiceDep):
    """
    시계 참가 (compute-on-join).

    경과 시간을 반영한 시계를 돌려주고, 레벨 경계를 넘었거나
    임계값 이상 경과했으면 저장합니다.
    """
    view = await service.join(request.tournament_id, request.user_id)
    return _ok(view)


@router.get("/clock/state")
async def get_clock_state(
    service: ServiceDep,
    viewer: Annotated[Optional[Viewer], Depends(get_viewer_optional)],
    tournament_id: str = Query(..., alias="tournamentId", min_length=1, max_length=64),
):
    """현재 시계, 레벨, 다음 레벨, 리바이/애드온 규칙."""
    view = await service.join(tournament_id, viewer.user_id if viewer else None)
    return _ok(view)


@router.post("/clock/pause")
async def pause_clock(request: TournamentRequest, service: ServiceDep, viewer: AdminDep):
    view = await service.pause(request.tournament_id, viewer)
    return _ok(view)


@router.post("/clock/resume")
async def resume_clock(request: TournamentRequest, service: ServiceDep, viewer: AdminDep):
    view = await service.resume(request.tournament_id, viewer)
    return _ok(view)


@router.post("/clock/adjust")
async def adjust_clock(request: AdjustTimeRequest, service: ServiceDep, viewer: AdminDep):
    view = await service.adjust_time(request.tournament_id, viewer, request.new_seconds)
    return _ok(view)


@router.post("/clock/level")
async def set_clock_level(request: SetLevelRequest, service: ServiceDep, viewer: AdminDep):
    view = await service.set_level(request.tournament_id, viewer, request.new_level)
    return _ok(view)


@router.post("/clock/sync")
async def sync_clocks(
    driver: Annotated[ReconciliationDriver, Depends(get_driver)],
    caller: Annotated[str, Depends(verify_sync_caller)],
):
    """
    활성 토너먼트 전체 시계 동기화 (1회).

    외부 스케줄러(cron) 또는 관리자가 호출합니다.
    """
    report = await driver.run_once()
    logger.info(
        f"Clock sync requested by {caller}: "
        f"{report.synced}/{report.total_tournaments} synced, {report.failed} failed"
    )
    return report.to_dict()


# =============================================================================
# Tournament-scoped Endpoints
# =============================================================================


@router.get("/tournaments/{tournament_id}/clock")
async def get_tournament_clock(tournament_id: str, service: ServiceDep):
    view = await service.get_state(tournament_id)
    return _ok(view)


@router.post("/tournaments/{tournament_id}/clock/initialize")
async def initialize_tournament_clock(
    tournament_id: str,
    service: ServiceDep,
    viewer: AdminDep,
    request: Optional[InitializeRequest] = None,
):
    """시계 생성/초기화: 레벨 1, 전체 시간."""
    start_paused = request.start_paused if request else False
    view = await service.initialize(tournament_id, viewer, start_paused=start_paused)
    return _ok(view)


@router.put("/tournaments/{tournament_id}/clock")
async def update_tournament_clock(
    tournament_id: str,
    request: ClockUpdateRequest,
    service: ServiceDep,
    viewer: AdminDep,
):
    """레벨/남은 시간/일시정지 부분 수정."""
    view = await service.update_clock(
        tournament_id,
        viewer,
        current_level=request.current_level,
        time_remaining_seconds=request.time_remaining_seconds,
        is_paused=request.is_paused,
    )
    return _ok(view)


@router.put("/tournaments/{tournament_id}/clock/toggle-pause")
async def toggle_tournament_clock_pause(tournament_id: str, service: ServiceDep, viewer: AdminDep):
    view = await service.toggle_pause(tournament_id, viewer)
    return _ok(view)
