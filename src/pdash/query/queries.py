"""Typed read operations over the query cache, one per resource."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

import structlog

from pdash.query.cache import QueryCache, QueryState
from pdash.query.resources import ResourceSpec
from pdash.records.schemas import Submission

logger = structlog.get_logger()


class DashboardQueries:
    """Resource reads for one dashboard session."""

    def __init__(self, cache: QueryCache, specs: dict[str, ResourceSpec]) -> None:
        self.cache = cache
        self.specs = specs

    def spec(self, name: str) -> ResourceSpec:
        try:
            return self.specs[name]
        except KeyError:
            msg = f"Unknown resource: {name}"
            raise KeyError(msg) from None

    async def _fetch(self, name: str, params: dict[str, Any], force: bool) -> QueryState:
        return await self.cache.fetch(self.spec(name), params, force=force)

    # --- Identity and enrollment ---

    async def profile(self, *, force: bool = False) -> QueryState:
        return await self._fetch("profile", {}, force)

    async def teams(self, *, force: bool = False) -> QueryState:
        return await self._fetch("teams", {}, force)

    async def applications(self, *, force: bool = False) -> QueryState:
        return await self._fetch("applications", {}, force)

    async def participation(self, *, force: bool = False) -> QueryState:
        return await self._fetch("participation", {}, force)

    async def user_metadata(self, *, force: bool = False) -> QueryState:
        return await self._fetch("user_metadata", {}, force)

    # --- Program data ---

    async def milestones(self, cohort_id: str | None, *, force: bool = False) -> QueryState:
        return await self._fetch("milestones", {"cohort_id": cohort_id}, force)

    async def team_cohorts(self, team_id: str | None, *, force: bool = False) -> QueryState:
        return await self._fetch("team_cohorts", {"team_id": team_id}, force)

    async def team_submissions(
        self,
        team_id: str | None,
        milestone_id: str | None = None,
        *,
        force: bool = False,
    ) -> QueryState:
        """Submissions for a team, optionally narrowed to one milestone.

        Reading all of a team's submissions also fills the per-milestone
        entries that are not cached yet.
        """
        state = await self._fetch("team_submissions", {"team_id": team_id, "milestone_id": milestone_id}, force)
        if milestone_id is None and state.is_success:
            self._seed_by_milestone(team_id, state.data or [])
        return state

    def _seed_by_milestone(self, team_id: str | None, submissions: list[Submission]) -> None:
        grouped: dict[str, list[Submission]] = defaultdict(list)
        for submission in submissions:
            if submission.milestone_id:
                grouped[submission.milestone_id].append(submission)
        spec = self.spec("team_submissions")
        seeded = sum(
            self.cache.seed(spec, {"team_id": team_id, "milestone_id": milestone_id}, items)
            for milestone_id, items in grouped.items()
        )
        if seeded:
            logger.debug("submissions_seeded", team_id=team_id, milestones=seeded)

    # --- Lookups ---

    async def majors(self, *, force: bool = False) -> QueryState:
        return await self._fetch("majors", {}, force)

    async def institution_lookup(self, query: str | None, *, force: bool = False) -> QueryState:
        return await self._fetch("institution_lookup", {"query": (query or "").strip() or None}, force)

    async def initiative_conflicts(
        self,
        contact_id: str | None,
        initiative: str | None = None,
        *,
        force: bool = False,
    ) -> QueryState:
        return await self._fetch("initiative_conflicts", {"contact_id": contact_id, "initiative": initiative}, force)

    # --- Points and rewards ---

    async def point_transactions(
        self,
        contact_id: str | None = None,
        team_id: str | None = None,
        *,
        force: bool = False,
    ) -> QueryState:
        return await self._fetch("point_transactions", {"contact_id": contact_id, "team_id": team_id}, force)

    async def achievements(self, *, force: bool = False) -> QueryState:
        return await self._fetch("achievements", {}, force)

    async def rewards(self, *, force: bool = False) -> QueryState:
        return await self._fetch("rewards", {}, force)

    async def claimed_rewards(
        self,
        contact_id: str | None = None,
        team_id: str | None = None,
        *,
        force: bool = False,
    ) -> QueryState:
        return await self._fetch("claimed_rewards", {"contact_id": contact_id, "team_id": team_id}, force)

    # --- Cache control ---

    async def prefetch(self, name: str, **params: Any) -> None:
        """Warm an entry. Failures are recorded in the cache, never raised."""
        await self.cache.fetch(self.spec(name), self._params(name, params))

    def peek(self, name: str, **params: Any) -> QueryState:
        return self.cache.peek(self.spec(name), self._params(name, params))

    def set(self, name: str, data: Any, **params: Any) -> None:
        self.cache.set_data(self.spec(name), self._params(name, params), data)

    def invalidate(self, name: str, *params_prefix: Any) -> int:
        self.spec(name)
        return self.cache.invalidate(name, tuple(params_prefix))

    def invalidate_all(self) -> int:
        return self.cache.invalidate_all()

    def _params(self, name: str, params: dict[str, Any]) -> dict[str, Any]:
        spec = self.spec(name)
        return {param: params.get(param) for param in spec.params}
