"""Dashboard endpoints: composed program view and selection state."""

from fastapi import APIRouter, Depends, Query

from pdash.compose.schemas import ProgramView
from pdash.dashboard.schemas import (
    ActiveProgramRequest,
    ActiveTeamRequest,
    NoticeResponse,
    ProgramsResponse,
    RefreshRequest,
    RefreshResponse,
)
from pdash.dependencies import get_dashboard_session
from pdash.session import DashboardSession

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get("/view", response_model=ProgramView)
async def program_view(
    program_id: str | None = Query(None, max_length=64),
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> ProgramView:
    """Current program view. Falls back to the active program when none is given."""
    return await session.composer.load(program_id)


@router.get("/programs", response_model=ProgramsResponse)
async def programs(
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> ProgramsResponse:
    return ProgramsResponse(
        active_program_id=session.composer.active_program_id,
        programs=await session.composer.programs(),
    )


@router.put("/active-program", response_model=ProgramView)
async def set_active_program(
    body: ActiveProgramRequest,
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> ProgramView:
    session.composer.set_active_program(body.program_id)
    return await session.composer.load()


@router.put("/programs/{program_id}/team", response_model=ProgramView)
async def set_active_team(
    program_id: str,
    body: ActiveTeamRequest,
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> ProgramView:
    """Pick which of the user's teams is shown for a program."""
    session.composer.set_active_team(program_id, body.team_id)
    return await session.composer.load(program_id)


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    body: RefreshRequest,
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> RefreshResponse:
    invalidated = session.composer.refresh(body.scope)
    return RefreshResponse(scope=body.scope, invalidated=invalidated)


@router.get("/notifications", response_model=list[NoticeResponse])
async def notifications(
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> list[NoticeResponse]:
    """Pending notices from recent writes; reading them clears the queue."""
    return [
        NoticeResponse(level=notice.level, message=notice.message, created_at=notice.created_at)
        for notice in session.notifier.drain()
    ]
