"""Canonical record shapes returned by the record store.

The record store hands back loosely shaped JSON (camelCase keys, spreadsheet
column names with spaces, lookups wrapped in single-item arrays). These
models are the one shape everything above the query cache works with.
Unknown fields are kept so nothing the store sends is lost.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def parse_when(value: Any) -> datetime | None:
    """Parse an ISO date or datetime string into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _first_of(value: Any) -> Any:
    # Linked-record lookups arrive as single-item arrays
    if isinstance(value, list):
        return value[0] if value else None
    return value


class RecordModel(BaseModel):
    """Base for record-store entities: camelCase aliases, extra fields kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


class Provenance(str, Enum):
    """Where a record came from."""

    REMOTE = "remote"
    FALLBACK = "fallback"


class MilestoneStatus(str, Enum):
    NOT_STARTED = "not-started"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"


_STATUS_ALIASES = {
    "completed": MilestoneStatus.COMPLETED,
    "complete": MilestoneStatus.COMPLETED,
    "done": MilestoneStatus.COMPLETED,
    "submitted": MilestoneStatus.COMPLETED,
    "in-progress": MilestoneStatus.IN_PROGRESS,
    "in progress": MilestoneStatus.IN_PROGRESS,
    "active": MilestoneStatus.IN_PROGRESS,
    "current": MilestoneStatus.IN_PROGRESS,
}


# ---------------------------------------------------------------------------
# Profile
# ---------------------------------------------------------------------------


class Profile(RecordModel):
    contact_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    degree_type: str | None = None
    major: str | None = None
    major_name: str | None = None
    graduation_year: int | str | None = None
    institution_id: str | None = None
    institution_name: str | None = None
    education_id: str | None = None

    @field_validator("major", "institution_id", "education_id", mode="before")
    @classmethod
    def _unwrap_link(cls, v: Any) -> Any:
        return _first_of(v)

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)


# ---------------------------------------------------------------------------
# Programs
# ---------------------------------------------------------------------------


class InitiativeDetails(RecordModel):
    id: str | None = None
    name: str | None = None
    participation_type: str | None = Field(
        None,
        validation_alias=AliasChoices("Participation Type", "participationType", "participation_type"),
    )


class Cohort(RecordModel):
    id: str
    name: str | None = None
    # Raw "current" flag as stored; interpretation lives in the composer
    current_flag: Any = Field(
        None,
        validation_alias=AliasChoices("Current Cohort", "Is Current", "isCurrent", "currentCohort", "current_flag"),
    )
    start_date: datetime | None = None
    end_date: datetime | None = None
    participation_type: str | None = None
    initiative: InitiativeDetails | None = Field(
        None,
        validation_alias=AliasChoices("initiativeDetails", "initiative"),
    )

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> datetime | None:
        return parse_when(v)


class Participation(RecordModel):
    id: str | None = None
    cohort: Cohort | None = None
    team_id: str | None = None
    status: str | None = None

    @field_validator("team_id", mode="before")
    @classmethod
    def _unwrap_team(cls, v: Any) -> Any:
        return _first_of(v)


class Application(RecordModel):
    id: str | None = None
    cohort_id: str | None = None
    status: str | None = None

    @field_validator("cohort_id", mode="before")
    @classmethod
    def _unwrap_cohort(cls, v: Any) -> Any:
        return _first_of(v)


class Milestone(RecordModel):
    id: str | None = None
    name: str | None = None
    number: int | None = Field(None, validation_alias=AliasChoices("number", "Number", "sequence"))
    due_date: datetime | None = None
    status: MilestoneStatus = MilestoneStatus.NOT_STARTED
    description: str | None = None
    score: float | None = None
    progress: float | None = None
    completed_date: datetime | None = None
    cohort_id: str | None = None
    provenance: Provenance = Provenance.REMOTE

    @field_validator("due_date", "completed_date", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> datetime | None:
        return parse_when(v)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> MilestoneStatus:
        if isinstance(v, MilestoneStatus):
            return v
        return _STATUS_ALIASES.get(str(v or "").strip().lower(), MilestoneStatus.NOT_STARTED)

    @field_validator("number", mode="before")
    @classmethod
    def _parse_number(cls, v: Any) -> int | None:
        if v is None or v == "":
            return None
        try:
            return int(float(v))
        except (TypeError, ValueError):
            return None


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamMember(RecordModel):
    id: str | None = None
    contact_id: str | None = None
    name: str | None = None
    email: str | None = None
    status: str | None = None
    points: float = 0


class Team(RecordModel):
    id: str
    name: str | None = None
    description: str | None = None
    cohort_ids: list[str] = Field(default_factory=list)
    members: list[TeamMember] = Field(default_factory=list)
    points: float | None = None

    @field_validator("cohort_ids", mode="before")
    @classmethod
    def _coerce_ids(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return list(v)

    @property
    def total_points(self) -> float:
        if self.points is not None:
            return self.points
        return sum(member.points for member in self.members)


class Submission(RecordModel):
    id: str | None = None
    team_id: str | None = None
    milestone_id: str | None = None
    link: str | None = None
    file_urls: list[str] = Field(default_factory=list)
    comments: str | None = None
    created_at: datetime | None = None

    @field_validator("team_id", "milestone_id", mode="before")
    @classmethod
    def _unwrap_links(cls, v: Any) -> Any:
        return _first_of(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_created(cls, v: Any) -> datetime | None:
        return parse_when(v)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class Major(RecordModel):
    id: str
    name: str | None = None


class Institution(RecordModel):
    id: str
    name: str | None = None
    domain: str | None = None


class InitiativeConflict(RecordModel):
    initiative: str | None = None
    cohort_id: str | None = None
    message: str | None = None


# ---------------------------------------------------------------------------
# Points and rewards ledger
# ---------------------------------------------------------------------------


class PointTransaction(RecordModel):
    id: str | None = None
    points: float = 0
    description: str | None = None
    contact_id: str | None = None
    team_id: str | None = None
    date: datetime | None = None

    @field_validator("contact_id", "team_id", mode="before")
    @classmethod
    def _unwrap_links(cls, v: Any) -> Any:
        return _first_of(v)

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> datetime | None:
        return parse_when(v)


class Achievement(RecordModel):
    id: str | None = None
    name: str | None = None
    points: float = 0
    type: str | None = None


class Reward(RecordModel):
    id: str
    name: str | None = None
    description: str | None = None
    cost: float = 0
    available: bool = True


class ClaimedReward(RecordModel):
    id: str | None = None
    reward_id: str | None = None
    team_id: str | None = None
    contact_id: str | None = None
    status: str | None = None
    claimed_at: datetime | None = None

    @field_validator("reward_id", "team_id", "contact_id", mode="before")
    @classmethod
    def _unwrap_links(cls, v: Any) -> Any:
        return _first_of(v)

    @field_validator("claimed_at", mode="before")
    @classmethod
    def _parse_claimed(cls, v: Any) -> datetime | None:
        return parse_when(v)
