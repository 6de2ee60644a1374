"""Composed view shapes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from pdash.compose.normalize import DEFAULT_PARTICIPATION_TYPE, ParticipationKind
from pdash.records.schemas import Application, Cohort, Milestone, Profile, Team


class MilestoneSource(str, Enum):
    REMOTE = "remote"
    FALLBACK = "fallback"
    NONE = "none"


class MilestoneList(BaseModel):
    """Milestones for the active cohort, tagged with where they came from."""

    source: MilestoneSource = MilestoneSource.NONE
    items: list[Milestone] = Field(default_factory=list)

    @property
    def is_fallback(self) -> bool:
        return self.source == MilestoneSource.FALLBACK


class ViewStatus(str, Enum):
    READY = "ready"
    LOADING = "loading"
    NOT_PARTICIPATING = "not_participating"


class InitiativeSummary(BaseModel):
    """One program the user participates in."""

    id: str
    name: str
    participation_type: str = DEFAULT_PARTICIPATION_TYPE
    is_team_based: bool = False
    team_id: str | None = None
    cohort_id: str | None = None


class SourceLoading(BaseModel):
    """Per-source loading flags for progressive rendering."""

    profile: bool = False
    teams: bool = False
    applications: bool = False
    participation: bool = False
    milestones: bool = False

    @property
    def any(self) -> bool:
        return self.profile or self.teams or self.applications or self.participation or self.milestones


class ProgramView(BaseModel):
    """The current program as the dashboard renders it."""

    status: ViewStatus = ViewStatus.LOADING
    program_id: str | None = None
    cohort: Cohort | None = None
    initiative_name: str = "Program"
    participation_type: str = DEFAULT_PARTICIPATION_TYPE
    participation_kind: ParticipationKind = ParticipationKind.INDIVIDUAL
    is_team_based: bool = False
    team: Team | None = None
    available_teams: list[Team] = Field(default_factory=list)
    user_has_multiple_teams: bool = False
    milestones: MilestoneList = Field(default_factory=MilestoneList)
    has_program_data: bool = False
    has_participation: bool = False
    applications: list[Application] = Field(default_factory=list)
    profile: Profile | None = None
    loading: SourceLoading = Field(default_factory=SourceLoading)
    degraded_sources: list[str] = Field(default_factory=list)
