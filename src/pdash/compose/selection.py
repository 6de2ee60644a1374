"""Pure selection rules: active participation, program, team, milestone order.

Active participation is resolved by trying each strategy in
``PARTICIPATION_STRATEGIES`` in order and taking the first hit.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import datetime, timezone

from pdash.compose.normalize import is_team_based, is_truthy_flag, participation_type_of
from pdash.compose.schemas import InitiativeSummary
from pdash.records.schemas import Milestone, Participation, Team

ParticipationStrategy = Callable[[Sequence[Participation]], Participation | None]

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def current_flagged(participations: Sequence[Participation]) -> Participation | None:
    """First record whose cohort is flagged current."""
    for participation in participations:
        if participation.cohort is not None and is_truthy_flag(participation.cohort.current_flag):
            return participation
    return None


def first_record(participations: Sequence[Participation]) -> Participation | None:
    return participations[0] if participations else None


PARTICIPATION_STRATEGIES: tuple[ParticipationStrategy, ...] = (current_flagged, first_record)


def select_active_participation(
    participations: Sequence[Participation],
    strategies: Iterable[ParticipationStrategy] = PARTICIPATION_STRATEGIES,
) -> Participation | None:
    """Resolve the active participation, or None when there is none at all."""
    for strategy in strategies:
        chosen = strategy(participations)
        if chosen is not None:
            return chosen
    return None


def program_key(participation: Participation) -> str | None:
    """Program identifier: the initiative id, else the cohort id."""
    cohort = participation.cohort
    if cohort is None:
        return None
    if cohort.initiative is not None and cohort.initiative.id:
        return cohort.initiative.id
    return cohort.id


def list_program_initiatives(participations: Sequence[Participation]) -> list[InitiativeSummary]:
    """One summary per distinct program, in participation order."""
    seen: set[str] = set()
    result: list[InitiativeSummary] = []
    for participation in participations:
        key = program_key(participation)
        if key is None or key in seen:
            continue
        seen.add(key)
        cohort = participation.cohort
        initiative = cohort.initiative if cohort else None
        participation_type = participation_type_of(cohort)
        result.append(
            InitiativeSummary(
                id=key,
                name=(initiative.name if initiative and initiative.name else None)
                or (cohort.name if cohort and cohort.name else "Unknown Initiative"),
                participation_type=participation_type,
                is_team_based=is_team_based(participation_type),
                team_id=participation.team_id,
                cohort_id=cohort.id if cohort else None,
            )
        )
    return result


def select_program_participation(
    participations: Sequence[Participation],
    program_id: str | None,
) -> Participation | None:
    """Participation for ``program_id``, or the active participation when unset or unknown."""
    if program_id:
        for participation in participations:
            if program_key(participation) == program_id:
                return participation
    return select_active_participation(participations)


def program_cohort_ids(participations: Sequence[Participation], program_id: str | None) -> list[str]:
    ids: list[str] = []
    for participation in participations:
        if program_key(participation) == program_id and participation.cohort and participation.cohort.id not in ids:
            ids.append(participation.cohort.id)
    return ids


def teams_for_program(teams: Sequence[Team], cohort_ids: Sequence[str]) -> list[Team]:
    """Teams linked to at least one of the program's cohorts."""
    wanted = set(cohort_ids)
    return [team for team in teams if wanted.intersection(team.cohort_ids)]


def resolve_team(
    teams: Sequence[Team],
    available: Sequence[Team],
    selected_team_id: str | None,
    participation: Participation | None,
) -> Team | None:
    """Explicit selection, then first team linked to the program, then the participation's team."""
    if selected_team_id:
        for candidates in (available, teams):
            for team in candidates:
                if team.id == selected_team_id:
                    return team
    if available:
        return available[0]
    if participation is not None and participation.team_id:
        for team in teams:
            if team.id == participation.team_id:
                return team
    return None


def order_milestones(milestones: Iterable[Milestone]) -> list[Milestone]:
    """Sequence number first, then due date; unnumbered and undated sort last."""
    return sorted(
        milestones,
        key=lambda m: (
            m.number is None,
            m.number if m.number is not None else 0,
            m.due_date or _FAR_FUTURE,
        ),
    )
