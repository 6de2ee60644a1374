"""Normalization of loosely typed program fields."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pdash.records.schemas import Cohort

DEFAULT_PARTICIPATION_TYPE = "Individual"

_TRUTHY_STRINGS = frozenset({"true", "yes", "1"})
_TEAM_MARKERS = ("team", "group", "collaborative")


class ParticipationKind(str, Enum):
    INDIVIDUAL = "individual"
    TEAM = "team"


def is_truthy_flag(value: Any) -> bool:
    """Interpret a record-store flag stored as bool, number, string, or lookup list."""
    if isinstance(value, list):
        return len(value) == 1 and is_truthy_flag(value[0])
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY_STRINGS
    return False


def participation_type_of(cohort: Cohort | None) -> str:
    """Cohort's own participation type, then its initiative's, then Individual."""
    if cohort is None:
        return DEFAULT_PARTICIPATION_TYPE
    if cohort.participation_type and cohort.participation_type.strip():
        return cohort.participation_type
    if cohort.initiative and cohort.initiative.participation_type and cohort.initiative.participation_type.strip():
        return cohort.initiative.participation_type
    return DEFAULT_PARTICIPATION_TYPE


def is_team_based(participation_type: str | None) -> bool:
    if not participation_type:
        return False
    normalized = participation_type.strip().lower()
    return any(marker in normalized for marker in _TEAM_MARKERS)


def classify_participation(participation_type: str | None) -> ParticipationKind:
    return ParticipationKind.TEAM if is_team_based(participation_type) else ParticipationKind.INDIVIDUAL
