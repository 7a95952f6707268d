"""Recurrence expansion of a validated weekly template over a semester.

Each template row yields one dated entry per week of the semester. An
occurrence is skipped, silently, when it falls outside the semester, inside
a school holiday block, or on a public holiday. Closures are expected and
are not errors.
"""

from collections import Counter
from datetime import date, datetime

from planning.calendar import CalendarResolver, first_monday, resolve_date
from planning.config import PlanningConfig, get_config
from planning.logging import get_logger
from planning.models import PlannedEntry, Semester, TemplateRow
from planning.utils import slot_table

log = get_logger(__name__)


def week_range(semester: Semester, include_leading_week: bool = True) -> range:
    """Week offsets (relative to the first Monday) that can hold occurrences.

    Offset -1 is the partial week before the first Monday, used only when the
    semester does not start on a Monday.
    """
    anchor = first_monday(semester.start_date)
    last = (semester.end_date - anchor).days // 7
    first = -1 if include_leading_week and anchor != semester.start_date else 0
    return range(first, last + 1)


def expand(
    rows: list[TemplateRow],
    semester: Semester,
    *,
    calendar: CalendarResolver | None = None,
    config: PlanningConfig | None = None,
) -> list[PlannedEntry]:
    """Expand template rows into dated entries for the whole semester."""
    config = config or get_config()
    calendar = calendar or CalendarResolver(config.holiday_region, config.school_zone)
    slots = slot_table(config.slot_times)
    weeks = week_range(semester, config.include_leading_week)

    blocks = calendar.excluded_between(semester.start_date, semester.end_date)
    closed: dict[date, str | None] = {}

    def skip_reason(day: date) -> str | None:
        if day not in closed:
            if day < semester.start_date or day > semester.end_date:
                closed[day] = "outside_semester"
            elif any(block.contains(day) for block in blocks):
                closed[day] = "school_holiday"
            elif calendar.is_public_holiday(day):
                closed[day] = "public_holiday"
            else:
                closed[day] = None
        return closed[day]

    entries: list[PlannedEntry] = []
    skipped: Counter[str] = Counter()
    for row in rows:
        start_time, end_time = slots[row.slot_index]
        child_ids = sorted(row.child_ids)
        for offset in weeks:
            starts_at = resolve_date(semester.start_date, row.day_of_week, offset, start_time)
            reason = skip_reason(starts_at.date())
            if reason:
                skipped[reason] += 1
                continue
            entries.append(
                PlannedEntry(
                    staff_id=row.staff_id,
                    day_of_week=row.day_of_week,
                    start_time=starts_at,
                    end_time=datetime.combine(starts_at.date(), end_time),
                    activity=row.activity,
                    child_ids=child_ids,
                )
            )

    entries.sort(key=lambda e: (e.start_time, e.staff_id, e.activity))
    log.info(
        "template_expanded",
        semester_id=semester.id,
        rows=len(rows),
        weeks=len(weeks),
        entries=len(entries),
        **{f"skipped_{reason}": count for reason, count in skipped.items()},
    )
    return entries
