from datetime import date, datetime, time

import pytest

from planning.calendar import (
    CalendarResolver,
    first_monday,
    public_holidays,
    resolve_date,
    school_holiday_blocks,
)
from planning.errors import InvalidOperationError, OutOfRangeError
from planning.models import DateRange


def test_public_holidays_include_moveable_feasts():
    holidays = public_holidays(2025)
    # Easter 2025 is 20 April
    assert holidays[date(2025, 4, 21)] == "Lundi de Pâques"
    assert holidays[date(2025, 5, 29)] == "Ascension"
    assert holidays[date(2025, 6, 9)] == "Lundi de Pentecôte"
    assert date(2025, 11, 11) in holidays
    assert date(2025, 12, 26) not in holidays


def test_alsace_adds_regional_holidays():
    holidays = public_holidays(2025, "FR-ALSACE")
    assert date(2025, 12, 26) in holidays
    assert date(2025, 4, 18) in holidays


def test_unknown_region_is_rejected():
    with pytest.raises(InvalidOperationError):
        public_holidays(2025, "XX")
    with pytest.raises(InvalidOperationError):
        CalendarResolver("FR", "D")


def test_autumn_school_blocks_2025():
    blocks = {block.label: block for block in school_holiday_blocks(2025, "C")}
    toussaint = blocks["Vacances de la Toussaint"]
    assert (toussaint.start, toussaint.end) == (date(2025, 10, 18), date(2025, 11, 2))
    assert blocks["Vacances de Noël"].start == date(2025, 12, 20)
    assert blocks["Pont de l'Ascension"].start == date(2025, 5, 30)


def test_winter_break_rotates_between_zones():
    starts = {
        zone: next(b.start for b in school_holiday_blocks(2026, zone) if "hiver" in b.label)
        for zone in ("A", "B", "C")
    }
    assert len(set(starts.values())) == 3
    assert all(start.weekday() == 5 for start in starts.values())


def test_first_monday():
    assert first_monday(date(2025, 9, 1)) == date(2025, 9, 1)
    assert first_monday(date(2025, 9, 3)) == date(2025, 9, 8)
    assert first_monday(date(2025, 9, 7)) == date(2025, 9, 8)


def test_resolve_date():
    assert resolve_date(date(2025, 9, 1), 2, 0, time(10)) == datetime(2025, 9, 2, 10)
    assert resolve_date(date(2025, 9, 3), 1, 0, time(9)) == datetime(2025, 9, 8, 9)
    assert resolve_date(date(2025, 9, 3), 5, -1, time(9)) == datetime(2025, 9, 5, 9)
    assert resolve_date(date(2025, 9, 1), 1, 3, time(14)) == datetime(2025, 9, 22, 14)


def test_resolve_date_rejects_bad_input():
    with pytest.raises(InvalidOperationError):
        resolve_date(date(2025, 9, 1), 0, 0, time(9))
    with pytest.raises(OutOfRangeError):
        resolve_date(date(9999, 12, 1), 1, 10, time(9))


def test_resolver_closures_label_each_closed_weekday(calendar):
    closures = {c.day: c.label for c in calendar.closures(date(2025, 11, 3), date(2025, 11, 16))}
    assert closures == {date(2025, 11, 11): "Jour férié"}

    closures = calendar.closures(date(2025, 10, 17), date(2025, 10, 24))
    assert [c.day for c in closures] == [
        date(2025, 10, 20),
        date(2025, 10, 21),
        date(2025, 10, 22),
        date(2025, 10, 23),
        date(2025, 10, 24),
    ]
    assert calendar.closure_label(date(2025, 10, 17)) is None


def test_official_blocks_replace_rule_blocks():
    official = [DateRange(start=date(2025, 10, 20), end=date(2025, 10, 31), label="Toussaint")]
    resolver = CalendarResolver("FR", "C", school_holidays=official)
    assert resolver.excluded_between(date(2025, 9, 1), date(2025, 12, 31)) == official
    assert resolver.closure_label(date(2025, 10, 18)) is None
    assert resolver.closure_label(date(2025, 10, 22)) == "Toussaint"
