"""Dashboard request/response schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from pdash.compose.composer import RefreshScope
from pdash.compose.schemas import InitiativeSummary
from pdash.mutations.notifier import NoticeLevel


class ProgramsResponse(BaseModel):
    """Programs the user participates in, plus the explicitly selected one."""

    active_program_id: str | None = None
    programs: list[InitiativeSummary]


class ActiveProgramRequest(BaseModel):
    program_id: str | None = Field(None, max_length=64)


class ActiveTeamRequest(BaseModel):
    team_id: str | None = Field(None, max_length=64)


class RefreshRequest(BaseModel):
    scope: RefreshScope = RefreshScope.ALL


class RefreshResponse(BaseModel):
    scope: RefreshScope
    invalidated: int


class NoticeResponse(BaseModel):
    level: NoticeLevel
    message: str
    created_at: datetime
