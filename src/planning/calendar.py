"""Calendar rules: public holidays, school holiday blocks and date resolution.

Everything here is a pure function of (year, region, zone). Holiday data is
described by small immutable rule tables and computed on demand, so any year
can be resolved and tested without loading external data.

School holiday rules follow the French academic calendar:
  - Toussaint: two weeks ending on the first Sunday on or after 1 November
  - Christmas: 16 days from the Saturday on or before 23 December
  - Winter / spring: two weeks from the Saturday of an ISO week that rotates
    across zones A, B and C each year
  - Ascension bridge: the Friday after Ascension Thursday
  - Summer: Saturday on or after 4 July through 31 August
The rule-derived dates track the official calendar; when exact official
dates are needed, planning.school_calendar loads them from the national feed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Sequence

from dateutil.easter import easter

from planning.errors import InvalidOperationError, OutOfRangeError
from planning.models import ClosureDay, DateRange


@dataclass(frozen=True)
class HolidayRules:
    """Public holidays of a region.

    fixed: (month, day, name) holidays on the same date every year.
    easter_offsets: (days after Easter Sunday, name) moveable feasts.
    """

    fixed: tuple[tuple[int, int, str], ...]
    easter_offsets: tuple[tuple[int, str], ...]


_FR_FIXED = (
    (1, 1, "Jour de l'an"),
    (5, 1, "Fête du Travail"),
    (5, 8, "Victoire 1945"),
    (7, 14, "Fête nationale"),
    (8, 15, "Assomption"),
    (11, 1, "Toussaint"),
    (11, 11, "Armistice 1918"),
    (12, 25, "Noël"),
)
_FR_EASTER = (
    (1, "Lundi de Pâques"),
    (39, "Ascension"),
    (50, "Lundi de Pentecôte"),
)

REGIONS: dict[str, HolidayRules] = {
    "FR": HolidayRules(fixed=_FR_FIXED, easter_offsets=_FR_EASTER),
    "FR-ALSACE": HolidayRules(
        fixed=_FR_FIXED + ((12, 26, "Saint Étienne"),),
        easter_offsets=((-2, "Vendredi saint"),) + _FR_EASTER,
    ),
}

ZONES = ("A", "B", "C")

# ISO week whose Saturday starts the break when the zone shift is 0
_WINTER_BASE_WEEK = 6
_SPRING_BASE_WEEK = 14
_ZONE_ROTATION_OFFSET = 2

HOLIDAY_LABEL = "Vacances scolaires"
PUBLIC_HOLIDAY_LABEL = "Jour férié"
ASCENSION_OFFSET = 39


def _rules(region: str) -> HolidayRules:
    try:
        return REGIONS[region.upper()]
    except KeyError:
        raise InvalidOperationError(
            f"Unknown holiday region {region!r}. Valid: {list(REGIONS)}"
        ) from None


def public_holidays(year: int, region: str = "FR") -> dict[date, str]:
    """Return the public holidays of a year, keyed by date."""
    rules = _rules(region)
    holidays = {date(year, month, day): name for month, day, name in rules.fixed}
    easter_sunday = easter(year)
    for offset, name in rules.easter_offsets:
        holidays[easter_sunday + timedelta(days=offset)] = name
    return holidays


def is_public_holiday(day: date, region: str = "FR") -> bool:
    return day in public_holidays(day.year, region)


def _saturday_on_or_before(day: date) -> date:
    return day - timedelta(days=(day.weekday() - 5) % 7)


def _saturday_on_or_after(day: date) -> date:
    return day + timedelta(days=(5 - day.weekday()) % 7)


def _sunday_on_or_after(day: date) -> date:
    return day + timedelta(days=(6 - day.weekday()) % 7)


def _zone_shift(year: int, zone: str) -> int:
    try:
        index = ZONES.index(zone.upper())
    except ValueError:
        raise InvalidOperationError(
            f"Unknown school zone {zone!r}. Valid: {list(ZONES)}"
        ) from None
    return (index + year + _ZONE_ROTATION_OFFSET) % len(ZONES)


def _two_week_break(year: int, iso_week: int, label: str) -> DateRange:
    start = date.fromisocalendar(year, iso_week, 6)
    return DateRange(start=start, end=start + timedelta(days=15), label=label)


def school_holiday_blocks(year: int, zone: str = "C") -> list[DateRange]:
    """Return the school holiday blocks starting in a given year, in date order."""
    shift = _zone_shift(year, zone)

    toussaint_end = _sunday_on_or_after(date(year, 11, 1))
    christmas_start = _saturday_on_or_before(date(year, 12, 23))
    ascension = easter(year) + timedelta(days=ASCENSION_OFFSET)
    bridge = ascension + timedelta(days=1)

    blocks = [
        _two_week_break(year, _WINTER_BASE_WEEK + shift, "Vacances d'hiver"),
        _two_week_break(year, _SPRING_BASE_WEEK + shift, "Vacances de printemps"),
        DateRange(start=bridge, end=bridge, label="Pont de l'Ascension"),
        DateRange(
            start=_saturday_on_or_after(date(year, 7, 4)),
            end=date(year, 8, 31),
            label="Vacances d'été",
        ),
        DateRange(
            start=toussaint_end - timedelta(days=15),
            end=toussaint_end,
            label="Vacances de la Toussaint",
        ),
        DateRange(
            start=christmas_start,
            end=christmas_start + timedelta(days=15),
            label="Vacances de Noël",
        ),
    ]
    return sorted(blocks, key=lambda block: block.start)


def first_monday(day: date) -> date:
    """Return the Monday on or after ``day``."""
    return day + timedelta(days=(7 - day.weekday()) % 7)


def resolve_date(
    semester_start: date,
    day_of_week: int,
    week_offset: int,
    time_of_day: time,
) -> datetime:
    """Map (weekday, week offset, time) onto a concrete datetime.

    Week 0 is the week of the first Monday on or after ``semester_start``;
    ``day_of_week`` is ISO (1=Monday).

    Raises:
        InvalidOperationError: If day_of_week is not in 1..7.
        OutOfRangeError: If the result is not a representable date.
    """
    if not 1 <= day_of_week <= 7:
        raise InvalidOperationError(f"day_of_week must be 1..7, got {day_of_week}")
    try:
        anchor = first_monday(semester_start)
        day = anchor + timedelta(days=week_offset * 7 + day_of_week - 1)
    except OverflowError as exc:
        raise OutOfRangeError(
            f"Week offset {week_offset} from {semester_start} is out of range"
        ) from exc
    return datetime.combine(day, time_of_day)


class CalendarResolver:
    """Excluded dates for one region and school zone.

    Args:
        region: Public holiday rule set (see REGIONS).
        zone: School holiday zone used by the rule-derived blocks.
        school_holidays: Official holiday blocks (e.g. from the national
            feed). When given they replace the rule-derived blocks.
    """

    def __init__(
        self,
        region: str = "FR",
        zone: str = "C",
        school_holidays: Sequence[DateRange] | None = None,
    ) -> None:
        _rules(region)
        _zone_shift(2000, zone)
        self.region = region.upper()
        self.zone = zone.upper()
        self.school_holidays = (
            tuple(school_holidays) if school_holidays is not None else None
        )

    def excluded_intervals(self, year: int) -> list[DateRange]:
        """School holiday blocks overlapping a calendar year."""
        if self.school_holidays is not None:
            return [
                block
                for block in self.school_holidays
                if block.start.year <= year <= block.end.year
            ]
        # Christmas of the previous year runs into January
        blocks = school_holiday_blocks(year - 1, self.zone) + school_holiday_blocks(
            year, self.zone
        )
        return [block for block in blocks if block.start.year <= year <= block.end.year]

    def excluded_between(self, start: date, end: date) -> list[DateRange]:
        """School holiday blocks overlapping [start, end]."""
        seen: dict[tuple[date, date], DateRange] = {}
        for year in range(start.year, end.year + 1):
            for block in self.excluded_intervals(year):
                if block.start <= end and block.end >= start:
                    seen[(block.start, block.end)] = block
        return sorted(seen.values(), key=lambda block: block.start)

    def is_public_holiday(self, day: date) -> bool:
        return is_public_holiday(day, self.region)

    def closure_label(self, day: date) -> str | None:
        """Return why ``day`` is closed, or None for a regular day."""
        if self.is_public_holiday(day):
            return PUBLIC_HOLIDAY_LABEL
        for block in self.excluded_intervals(day.year):
            if block.contains(day):
                return block.label or HOLIDAY_LABEL
        return None

    def closures(self, start: date, end: date) -> list[ClosureDay]:
        """Every closed weekday between start and end, inclusive."""
        holidays: dict[date, str] = {}
        for year in range(start.year, end.year + 1):
            holidays.update(public_holidays(year, self.region))
        blocks = self.excluded_between(start, end)

        result: list[ClosureDay] = []
        day = start
        while day <= end:
            if day.isoweekday() <= 5:
                if day in holidays:
                    result.append(ClosureDay(day=day, label=PUBLIC_HOLIDAY_LABEL))
                else:
                    block = next((b for b in blocks if b.contains(day)), None)
                    if block is not None:
                        result.append(
                            ClosureDay(day=day, label=block.label or HOLIDAY_LABEL)
                        )
            day += timedelta(days=1)
        return result
