"""Resource table for the record-store queries.

One ``ResourceSpec`` per cached resource: where it lives, which parameters
key it, how long it stays fresh, how it is retried, and how its payload is
unwrapped into canonical records.

| resource              | staleness | retries | unwrap key      |
|-----------------------|-----------|---------|-----------------|
| profile               | 5 min     | 2       | profile         |
| teams                 | 5 min     | 2       | teams           |
| applications          | 5 min     | 2       | applications    |
| participation         | 10 min    | 2       | participation   |
| milestones            | 15 min    | 2       | milestones      |
| team_submissions      | 3 min     | 2       | submissions     |
| team_cohorts          | 5 min     | 2       | cohorts         |
| majors                | 1 h       | 2       | majors          |
| user_metadata         | 10 min    | 2       | (whole body)    |
| institution_lookup    | 1 h       | 1       | institutions    |
| initiative_conflicts  | 5 min     | 1       | conflicts       |
| point_transactions    | 5 min     | 2       | transactions    |
| achievements          | 1 h       | 2       | achievements    |
| rewards               | 15 min    | 2       | rewards         |
| claimed_rewards       | 5 min     | 2       | claimedRewards  |
"""

from __future__ import annotations

import dataclasses
import string
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pdash.config import Settings
from pdash.errors import FetchError, ParseError
from pdash.records.schemas import (
    Achievement,
    Application,
    ClaimedReward,
    Cohort,
    InitiativeConflict,
    Institution,
    Major,
    Milestone,
    Participation,
    PointTransaction,
    Profile,
    Reward,
    Submission,
    Team,
)

Params = Mapping[str, Any]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry count and exponential backoff for one resource."""

    retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 30.0
    # Never retried regardless of error class
    non_retryable_statuses: frozenset[int] = frozenset({400, 401, 403, 404, 429})

    def should_retry(self, error: FetchError, attempt: int) -> bool:
        """Whether a failure on the given zero-based attempt earns another try."""
        if attempt >= self.retries:
            return False
        if error.status is not None and error.status in self.non_retryable_statuses:
            return False
        return error.retryable

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * 2**attempt, self.max_delay)


def _always(_params: Params) -> bool:
    return True


def requires(*names: str) -> Callable[[Params], bool]:
    """Enabled only once every named parameter is known."""

    def check(params: Params) -> bool:
        return all(params.get(name) for name in names)

    return check


def requires_any(*names: str) -> Callable[[Params], bool]:
    """Enabled once at least one of the named parameters is known."""

    def check(params: Params) -> bool:
        return any(params.get(name) for name in names)

    return check


def _lookup_query_ready(params: Params) -> bool:
    query = params.get("query")
    return bool(query) and len(str(query).strip()) >= 3


def _check_submission_meta(payload: Any) -> None:
    """The submissions endpoint reports failures inside a 200 body."""
    if isinstance(payload, dict):
        meta = payload.get("meta") or {}
        if isinstance(meta, dict) and meta.get("error"):
            message = meta.get("errorMessage") or "Submissions API error"
            raise FetchError(f"{meta.get('errorCode', 'UNKNOWN')}: {message}")


def unwrap(payload: Any, keys: tuple[str, ...]) -> Any:
    """Return the payload under the first matching key, or the payload itself."""
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                return payload[key]
    return payload


@dataclass(frozen=True)
class ResourceSpec:
    """Description of one cached record-store resource."""

    name: str
    path: str
    params: tuple[str, ...] = ()
    # (parameter name, query-string name) for parameters sent as ?key=value
    query: tuple[tuple[str, str], ...] = ()
    staleness_seconds: float = 300
    gc_seconds: float = 3600
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    unwrap_keys: tuple[str, ...] = ()
    model: type[BaseModel] | None = None
    many: bool = False
    enabled: Callable[[Params], bool] = _always
    guard: Callable[[Any], None] | None = None

    @property
    def path_params(self) -> tuple[str, ...]:
        return tuple(name for _, name, _, _ in string.Formatter().parse(self.path) if name)

    def key(self, params: Params) -> tuple[Any, ...]:
        return tuple(params.get(name) for name in self.params)

    def is_enabled(self, params: Params) -> bool:
        return all(params.get(name) for name in self.path_params) and self.enabled(params)

    def request(self, params: Params) -> tuple[str, dict[str, Any]]:
        """Build the request path and query string for a parameter set."""
        path = self.path.format(**{name: quote(str(params[name]), safe="") for name in self.path_params})
        query = {
            query_name: params.get(param)
            for param, query_name in self.query
            if params.get(param) not in (None, "")
        }
        return path, query

    def normalize(self, payload: Any) -> Any:
        """Unwrap a raw payload and validate it into canonical records."""
        if self.guard is not None:
            self.guard(payload)
        body = unwrap(payload, self.unwrap_keys)
        if self.many:
            if body is None:
                body = []
            if not isinstance(body, list):
                raise ParseError(f"{self.name}: expected a list, got {type(body).__name__}")
        try:
            if self.model is None:
                return body
            if self.many:
                return [self.model.model_validate(item) for item in body]
            return self.model.model_validate(body)
        except PydanticValidationError as exc:
            raise ParseError(f"{self.name}: unexpected record shape ({exc.error_count()} errors)") from exc


PROFILE = ResourceSpec(
    name="profile",
    path="/api/user/profile",
    staleness_seconds=5 * 60,
    unwrap_keys=("profile",),
    model=Profile,
)

TEAMS = ResourceSpec(
    name="teams",
    path="/api/teams",
    staleness_seconds=5 * 60,
    unwrap_keys=("teams",),
    model=Team,
    many=True,
)

APPLICATIONS = ResourceSpec(
    name="applications",
    path="/api/user/check-application",
    staleness_seconds=5 * 60,
    unwrap_keys=("applications",),
    model=Application,
    many=True,
)

PARTICIPATION = ResourceSpec(
    name="participation",
    path="/api/user/participation",
    staleness_seconds=10 * 60,
    unwrap_keys=("participation",),
    model=Participation,
    many=True,
)

MILESTONES = ResourceSpec(
    name="milestones",
    path="/api/cohorts/{cohort_id}/milestones",
    params=("cohort_id",),
    staleness_seconds=15 * 60,
    unwrap_keys=("milestones",),
    model=Milestone,
    many=True,
)

TEAM_SUBMISSIONS = ResourceSpec(
    name="team_submissions",
    path="/api/teams/{team_id}/submissions",
    params=("team_id", "milestone_id"),
    query=(("milestone_id", "milestoneId"),),
    staleness_seconds=3 * 60,
    gc_seconds=30 * 60,
    unwrap_keys=("submissions",),
    model=Submission,
    many=True,
    guard=_check_submission_meta,
)

TEAM_COHORTS = ResourceSpec(
    name="team_cohorts",
    path="/api/teams/{team_id}/cohorts",
    params=("team_id",),
    staleness_seconds=5 * 60,
    unwrap_keys=("cohorts",),
    model=Cohort,
    many=True,
)

MAJORS = ResourceSpec(
    name="majors",
    path="/api/user/majors",
    staleness_seconds=60 * 60,
    unwrap_keys=("majors",),
    model=Major,
    many=True,
)

USER_METADATA = ResourceSpec(
    name="user_metadata",
    path="/api/user/metadata",
    staleness_seconds=10 * 60,
)

INSTITUTION_LOOKUP = ResourceSpec(
    name="institution_lookup",
    path="/api/institution-lookup",
    params=("query",),
    query=(("query", "q"),),
    staleness_seconds=60 * 60,
    retry=RetryPolicy(retries=1),
    unwrap_keys=("institutions",),
    model=Institution,
    many=True,
    enabled=_lookup_query_ready,
)

INITIATIVE_CONFLICTS = ResourceSpec(
    name="initiative_conflicts",
    path="/api/user/check-initiative-conflicts",
    params=("contact_id", "initiative"),
    query=(("contact_id", "contactId"), ("initiative", "initiative")),
    staleness_seconds=5 * 60,
    gc_seconds=30 * 60,
    retry=RetryPolicy(retries=1),
    unwrap_keys=("conflicts",),
    model=InitiativeConflict,
    many=True,
    enabled=requires("contact_id"),
)

POINT_TRANSACTIONS = ResourceSpec(
    name="point_transactions",
    path="/api/points/transactions",
    params=("contact_id", "team_id"),
    query=(("contact_id", "contactId"), ("team_id", "teamId")),
    staleness_seconds=5 * 60,
    unwrap_keys=("transactions",),
    model=PointTransaction,
    many=True,
    enabled=requires_any("contact_id", "team_id"),
)

ACHIEVEMENTS = ResourceSpec(
    name="achievements",
    path="/api/points/achievements",
    staleness_seconds=60 * 60,
    unwrap_keys=("achievements",),
    model=Achievement,
    many=True,
)

REWARDS = ResourceSpec(
    name="rewards",
    path="/api/rewards",
    staleness_seconds=15 * 60,
    unwrap_keys=("rewards",),
    model=Reward,
    many=True,
)

CLAIMED_REWARDS = ResourceSpec(
    name="claimed_rewards",
    path="/api/rewards/claimed",
    params=("contact_id", "team_id"),
    query=(("contact_id", "contactId"), ("team_id", "teamId")),
    staleness_seconds=5 * 60,
    unwrap_keys=("claimedRewards", "claimed_rewards"),
    model=ClaimedReward,
    many=True,
    enabled=requires_any("contact_id", "team_id"),
)

RESOURCES: dict[str, ResourceSpec] = {
    spec.name: spec
    for spec in (
        PROFILE,
        TEAMS,
        APPLICATIONS,
        PARTICIPATION,
        MILESTONES,
        TEAM_SUBMISSIONS,
        TEAM_COHORTS,
        MAJORS,
        USER_METADATA,
        INSTITUTION_LOOKUP,
        INITIATIVE_CONFLICTS,
        POINT_TRANSACTIONS,
        ACHIEVEMENTS,
        REWARDS,
        CLAIMED_REWARDS,
    )
}


def build_resource_table(settings: Settings) -> dict[str, ResourceSpec]:
    """Apply configured staleness overrides and backoff delays to the table."""
    table: dict[str, ResourceSpec] = {}
    for name, spec in RESOURCES.items():
        retry = dataclasses.replace(
            spec.retry,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
        )
        staleness = settings.staleness_overrides.get(name, spec.staleness_seconds)
        table[name] = dataclasses.replace(spec, retry=retry, staleness_seconds=staleness)
    return table
