"""View composer: derives the current program view from cached sources.

``compose_view`` is a pure function of the source query states.
``ViewComposer`` owns the per-session selection state (active program,
active team per program), issues the source reads, and pre-warms the
submissions cache in the background once a team and real milestones are
known.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from pdash.compose.fallback import generate_fallback_milestones
from pdash.compose.normalize import classify_participation, is_team_based, participation_type_of
from pdash.compose.schemas import (
    InitiativeSummary,
    MilestoneList,
    MilestoneSource,
    ProgramView,
    SourceLoading,
    ViewStatus,
)
from pdash.compose.selection import (
    list_program_initiatives,
    order_milestones,
    program_cohort_ids,
    program_key,
    resolve_team,
    select_program_participation,
    teams_for_program,
)
from pdash.config import Settings
from pdash.errors import AuthError, NotFoundCondition
from pdash.query.cache import QueryState, QueryStatus
from pdash.query.queries import DashboardQueries
from pdash.records.schemas import Participation

logger = structlog.get_logger()

REQUIRED_SOURCES = ("profile", "teams", "applications", "participation")


class RefreshScope(str, Enum):
    PROFILE = "profile"
    TEAMS = "teams"
    APPLICATIONS = "applications"
    PROGRAM = "program"
    ALL = "all"


def _pending(state: QueryState) -> bool:
    """Not fetched yet, or first fetch still in flight."""
    return state.status in (QueryStatus.IDLE, QueryStatus.LOADING) and state.updated_at is None


def _usable(state: QueryState) -> Any:
    if state.is_error:
        return None
    return state.data


def _degraded(state: QueryState) -> bool:
    return state.is_error and not isinstance(state.error, NotFoundCondition)


def raise_for_auth(*states: QueryState | None) -> None:
    """Authentication failures end composition; every other failure degrades."""
    for state in states:
        if state is not None and isinstance(state.error, AuthError):
            raise state.error


def compose_view(
    *,
    profile: QueryState,
    teams: QueryState,
    applications: QueryState,
    participation: QueryState,
    milestones: QueryState | None,
    program_id: str | None = None,
    selected_team_id: str | None = None,
    fallback_enabled: bool = True,
    now: datetime | None = None,
) -> ProgramView:
    """Compose a ``ProgramView`` from the latest state of each source."""
    raise_for_auth(profile, teams, applications, participation, milestones)

    sources = {
        "profile": profile,
        "teams": teams,
        "applications": applications,
        "participation": participation,
    }
    if milestones is not None:
        sources["milestones"] = milestones
    degraded = [name for name, state in sources.items() if _degraded(state)]

    all_teams = _usable(teams) or []
    participations: list[Participation] = _usable(participation) or []
    chosen = select_program_participation(participations, program_id)
    cohort = chosen.cohort if chosen else None

    loading = SourceLoading(
        profile=_pending(profile),
        teams=_pending(teams),
        applications=_pending(applications),
        participation=_pending(participation),
        milestones=cohort is not None and milestones is not None and _pending(milestones),
    )
    required_pending = any(getattr(loading, name) for name in REQUIRED_SOURCES)

    view = ProgramView(
        profile=_usable(profile),
        applications=_usable(applications) or [],
        has_participation=bool(participations),
        has_program_data=cohort is not None or any(team.cohort_ids for team in all_teams),
        loading=loading,
        degraded_sources=degraded,
    )

    if chosen is None:
        view.status = ViewStatus.LOADING if required_pending else ViewStatus.NOT_PARTICIPATING
        return view

    key = program_key(chosen)
    participation_type = participation_type_of(cohort)
    team_based = is_team_based(participation_type)
    available = teams_for_program(all_teams, program_cohort_ids(participations, key))
    team = resolve_team(all_teams, available, selected_team_id, chosen)

    if team_based and team is not None and cohort is not None and cohort.id not in team.cohort_ids:
        logger.warning("team_not_linked_to_cohort", team_id=team.id, cohort_id=cohort.id)

    view.program_id = key
    view.cohort = cohort
    view.initiative_name = _initiative_name(chosen)
    view.participation_type = participation_type
    view.participation_kind = classify_participation(participation_type)
    view.is_team_based = team_based
    view.team = team
    view.available_teams = available
    view.user_has_multiple_teams = len(available) > 1
    view.milestones = resolve_milestones(
        milestones,
        program_name=view.initiative_name,
        fallback_enabled=fallback_enabled,
        now=now,
    )
    view.status = ViewStatus.LOADING if required_pending else ViewStatus.READY
    return view


def _initiative_name(participation: Participation) -> str:
    cohort = participation.cohort
    if cohort is None:
        return "Program"
    if cohort.initiative is not None and cohort.initiative.name:
        return cohort.initiative.name
    return cohort.name or "Program"


def resolve_milestones(
    state: QueryState | None,
    *,
    program_name: str,
    fallback_enabled: bool,
    now: datetime | None = None,
) -> MilestoneList:
    """Real milestones when there are any; the placeholder timeline when the cohort has none."""
    if state is None:
        return MilestoneList()
    empty = (state.is_success and not state.data) or isinstance(state.error, NotFoundCondition)
    if empty:
        if not fallback_enabled:
            return MilestoneList()
        logger.info("fallback_milestones_used", program=program_name)
        return MilestoneList(
            source=MilestoneSource.FALLBACK,
            items=generate_fallback_milestones(program_name, now),
        )
    items = _usable(state)
    if items:
        return MilestoneList(source=MilestoneSource.REMOTE, items=order_milestones(items))
    return MilestoneList()


class ViewComposer:
    """Stateful coordinator for one dashboard session."""

    def __init__(
        self,
        queries: DashboardQueries,
        settings: Settings,
        *,
        now: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._queries = queries
        self._settings = settings
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._active_program_id: str | None = None
        self._active_teams: dict[str, str] = {}
        self._prefetch_task: asyncio.Task[None] | None = None
        self._prefetch_target: tuple[str, tuple[str, ...]] | None = None
        self._closed = False
        self.last_view: ProgramView | None = None

    # --- Selection state ---

    @property
    def active_program_id(self) -> str | None:
        return self._active_program_id

    def set_active_program(self, program_id: str | None) -> None:
        self._active_program_id = program_id or None
        logger.info("active_program_set", program_id=self._active_program_id)

    def set_active_team(self, program_id: str, team_id: str | None) -> None:
        if team_id:
            self._active_teams[program_id] = team_id
        else:
            self._active_teams.pop(program_id, None)
        logger.info("active_team_set", program_id=program_id, team_id=team_id)

    def active_team_for(self, program_id: str | None) -> str | None:
        if program_id is None:
            return None
        return self._active_teams.get(program_id)

    # --- Composition ---

    async def load(self, program_id: str | None = None, *, force: bool = False) -> ProgramView:
        """Read every source (concurrently where independent) and compose the view."""
        requested = program_id or self._active_program_id
        profile, teams, applications, participation = await asyncio.gather(
            self._queries.profile(force=force),
            self._queries.teams(force=force),
            self._queries.applications(force=force),
            self._queries.participation(force=force),
        )
        raise_for_auth(profile, teams, applications, participation)

        chosen = select_program_participation(_usable(participation) or [], requested)
        cohort_id = chosen.cohort.id if chosen and chosen.cohort else None
        milestones = await self._queries.milestones(cohort_id, force=force) if cohort_id else None

        view = self._compose(profile, teams, applications, participation, milestones, requested, chosen)
        if not self._closed:
            self.last_view = view
            self._schedule_prefetch(view)
        return view

    def snapshot(self, program_id: str | None = None) -> ProgramView:
        """Compose from whatever is cached right now, without fetching."""
        requested = program_id or self._active_program_id
        participation = self._queries.peek("participation")
        chosen = select_program_participation(_usable(participation) or [], requested)
        cohort_id = chosen.cohort.id if chosen and chosen.cohort else None
        return self._compose(
            self._queries.peek("profile"),
            self._queries.peek("teams"),
            self._queries.peek("applications"),
            participation,
            self._queries.peek("milestones", cohort_id=cohort_id) if cohort_id else None,
            requested,
            chosen,
        )

    async def programs(self) -> list[InitiativeSummary]:
        state = await self._queries.participation()
        raise_for_auth(state)
        return list_program_initiatives(_usable(state) or [])

    def refresh(self, scope: RefreshScope) -> int:
        """Invalidate the sources behind one area of the view."""
        if scope == RefreshScope.ALL:
            count = self._queries.invalidate_all()
        elif scope == RefreshScope.PROFILE:
            count = self._queries.invalidate("profile")
        elif scope == RefreshScope.TEAMS:
            count = self._queries.invalidate("teams") + self._queries.invalidate("team_cohorts")
        elif scope == RefreshScope.APPLICATIONS:
            count = self._queries.invalidate("applications")
        else:
            count = (
                self._queries.invalidate("participation")
                + self._queries.invalidate("milestones")
                + self._queries.invalidate("team_submissions")
            )
        logger.info("view_refreshed", scope=scope.value, entries=count)
        return count

    async def close(self) -> None:
        """Stop background work; later loads no longer record views."""
        self._closed = True
        task = self._prefetch_task
        self._prefetch_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _compose(
        self,
        profile: QueryState,
        teams: QueryState,
        applications: QueryState,
        participation: QueryState,
        milestones: QueryState | None,
        requested: str | None,
        chosen: Participation | None,
    ) -> ProgramView:
        key = program_key(chosen) if chosen else None
        return compose_view(
            profile=profile,
            teams=teams,
            applications=applications,
            participation=participation,
            milestones=milestones,
            program_id=requested,
            selected_team_id=self.active_team_for(key),
            fallback_enabled=self._settings.fallback_milestones_enabled,
            now=self._now(),
        )

    # --- Background submissions prefetch ---

    def _schedule_prefetch(self, view: ProgramView) -> None:
        if not self._settings.prefetch_submissions or view.team is None:
            return
        if view.milestones.source != MilestoneSource.REMOTE:
            return
        milestone_ids = tuple(m.id for m in view.milestones.items if m.id)
        if not milestone_ids:
            return
        target = (view.team.id, milestone_ids)
        if target == self._prefetch_target and self._prefetch_task is not None and not self._prefetch_task.done():
            return
        if self._prefetch_task is not None and not self._prefetch_task.done():
            self._prefetch_task.cancel()
        self._prefetch_target = target
        self._prefetch_task = asyncio.create_task(
            self._prefetch_submissions(view.team.id, milestone_ids),
            name="prefetch:team_submissions",
        )

    async def _prefetch_submissions(self, team_id: str, milestone_ids: tuple[str, ...]) -> None:
        size = max(1, self._settings.prefetch_batch_size)
        await self._sleep(self._settings.prefetch_initial_delay_seconds)
        for start in range(0, len(milestone_ids), size):
            if self._closed:
                return
            if start:
                await self._sleep(self._settings.prefetch_batch_delay_seconds)
            batch = milestone_ids[start : start + size]
            results = await asyncio.gather(
                *(
                    self._queries.prefetch("team_submissions", team_id=team_id, milestone_id=milestone_id)
                    for milestone_id in batch
                ),
                return_exceptions=True,
            )
            for milestone_id, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(
                        "submission_prefetch_failed",
                        team_id=team_id,
                        milestone_id=milestone_id,
                        error=str(result),
                    )
        logger.debug("submission_prefetch_done", team_id=team_id, milestones=len(milestone_ids))
