"""Request payloads for record-store writes, validated before any network call."""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Record-store identifiers: "rec" followed by 14 alphanumerics
RECORD_ID_PATTERN = re.compile(r"^rec[A-Za-z0-9]{14}$")
GRADUATION_YEAR_WINDOW = 10


def check_record_reference(value: Any) -> str | None:
    """Accept a record id, or an explicit empty value that clears the reference."""
    if value is None:
        return None
    if not isinstance(value, str):
        msg = "must be a record id"
        raise ValueError(msg)
    value = value.strip()
    if value == "":
        return None
    if not RECORD_ID_PATTERN.match(value):
        msg = "must be a record id (rec followed by 14 letters or digits) or empty"
        raise ValueError(msg)
    return value


def check_graduation_year(value: Any, today: date | None = None) -> int | None:
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return None
    text = str(value).strip()
    if not re.fullmatch(r"[0-9]{4}", text):
        msg = "must be a four-digit year"
        raise ValueError(msg)
    year = int(text)
    current = (today or date.today()).year
    if abs(year - current) > GRADUATION_YEAR_WINDOW:
        msg = f"must be between {current - GRADUATION_YEAR_WINDOW} and {current + GRADUATION_YEAR_WINDOW}"
        raise ValueError(msg)
    return year


class MutationModel(BaseModel):
    """Base for write payloads: camelCase on the wire, unknown keys dropped."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
    )

    def to_payload(self, *, partial: bool = False, exclude: set[str] | None = None) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=partial, exclude=exclude)


# ---------------------------------------------------------------------------
# Profile and user
# ---------------------------------------------------------------------------


class ProfileUpdate(MutationModel):
    """Partial profile update; only fields present in the request are sent."""

    contact_id: str | None = None
    first_name: str | None = Field(None, max_length=100)
    last_name: str | None = Field(None, max_length=100)
    degree_type: str | None = None
    graduation_year: int | None = None
    major: str | None = None
    institution_id: str | None = None
    education_id: str | None = None

    @field_validator("graduation_year", mode="before")
    @classmethod
    def validate_graduation_year(cls, v: Any) -> int | None:
        return check_graduation_year(v)

    @field_validator("major", "institution_id", "education_id", mode="before")
    @classmethod
    def validate_reference(cls, v: Any) -> str | None:
        return check_record_reference(v)


class OnboardingUpdate(MutationModel):
    completed: bool


# ---------------------------------------------------------------------------
# Teams
# ---------------------------------------------------------------------------


class TeamUpdate(MutationModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=2000)


class TeamInvite(MutationModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class TeamCreate(MutationModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=2000)
    cohort_id: str | None = None

    @field_validator("cohort_id", mode="before")
    @classmethod
    def validate_cohort(cls, v: Any) -> str | None:
        return check_record_reference(v)


# ---------------------------------------------------------------------------
# Submissions and rewards
# ---------------------------------------------------------------------------


class SubmissionCreate(MutationModel):
    team_id: str = Field(..., min_length=1)
    milestone_id: str = Field(..., min_length=1)
    file_urls: list[str] = Field(default_factory=list)
    link: str = ""
    comments: str = ""

    @model_validator(mode="after")
    def require_content(self) -> SubmissionCreate:
        if not self.file_urls and not self.link:
            msg = "Please provide either files or a link for your submission"
            raise ValueError(msg)
        return self


class RewardClaim(MutationModel):
    reward_id: str = Field(..., min_length=1)
    team_id: str | None = None
    contact_id: str | None = None
    notes: str | None = Field(None, max_length=1000)
