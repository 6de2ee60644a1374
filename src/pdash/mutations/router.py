"""Write endpoints. Payloads are validated by the mutation service, not FastAPI."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from pdash.dependencies import get_dashboard_session
from pdash.session import DashboardSession

router = APIRouter(prefix="/api/v1", tags=["Mutations"])

Payload = dict[str, Any]


@router.put("/profile")
async def update_profile(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> dict[str, Any]:
    profile = await session.mutations.update_profile(payload)
    return profile.model_dump(mode="json", by_alias=True)


@router.post("/metadata")
async def update_metadata(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> dict[str, Any]:
    return await session.mutations.update_metadata(payload)


@router.post("/onboarding")
async def update_onboarding(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.update_onboarding_status(payload.get("completed"))


@router.post("/teams", status_code=201)
async def create_team(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.create_team(payload)


@router.patch("/teams/{team_id}")
async def update_team(
    team_id: str,
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.update_team(team_id, payload)


@router.post("/teams/{team_id}/invite")
async def invite_member(
    team_id: str,
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.invite_member(team_id, payload)


@router.post("/submissions", status_code=201)
async def create_submission(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.create_submission(payload)


@router.post("/rewards/claim")
async def claim_reward(
    payload: Payload = Body(...),  # noqa: B008
    session: DashboardSession = Depends(get_dashboard_session),  # noqa: B008
) -> Any:
    return await session.mutations.claim_reward(payload)
