"""Placeholder milestone timeline for cohorts without milestone records.

Every generated milestone carries ``Provenance.FALLBACK`` so callers can
always tell it apart from real data.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timezone

from pdash.records.schemas import Milestone, MilestoneStatus, Provenance

# (month offset from now, name, description); "{program}" is filled in
FALLBACK_STEPS: tuple[tuple[int, str, str], ...] = (
    (-1, "{program} Kickoff", "Getting started and forming your team"),
    (0, "Project Definition", "Define your project scope and goals"),
    (1, "Initial Prototype", "Develop your first working prototype"),
    (2, "User Testing", "Test your prototype with real users"),
    (3, "Final Presentation", "Present your finished project"),
)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def generate_fallback_milestones(program_name: str | None, now: datetime | None = None) -> list[Milestone]:
    now = now or datetime.now(timezone.utc)
    program = program_name or "Program"
    milestones = []
    for number, (offset, name, description) in enumerate(FALLBACK_STEPS, start=1):
        due = add_months(now, offset)
        completed = number == 1
        milestones.append(
            Milestone(
                id=f"fallback-milestone-{number}",
                name=name.format(program=program),
                number=number,
                due_date=due,
                description=description,
                status=MilestoneStatus.COMPLETED if completed else MilestoneStatus.NOT_STARTED,
                progress=100 if completed else 0,
                completed_date=due if completed else None,
                provenance=Provenance.FALLBACK,
            )
        )
    return milestones
