"""Shared helpers for names, weekdays and slot times."""

import re
import unicodedata
from datetime import datetime, time, timezone

WEEKDAY_NAMES: dict[int, str] = {
    1: "Monday",
    2: "Tuesday",
    3: "Wednesday",
    4: "Thursday",
    5: "Friday",
    6: "Saturday",
    7: "Sunday",
}

# Sheet name (accent-stripped, lower case) -> ISO weekday
SHEET_WEEKDAYS: dict[str, int] = {
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "lundi": 1,
    "mardi": 2,
    "mercredi": 3,
    "jeudi": 4,
    "vendredi": 5,
}

_SLOT_RANGE = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*-\s*(\d{1,2}):(\d{2})\s*$")


def strip_accents(text: str) -> str:
    """Remove accents/diacritics (e.g. é -> e, ü -> u)."""
    nfkd = unicodedata.normalize("NFKD", text)
    return "".join(c for c in nfkd if not unicodedata.combining(c))


def normalize_name(name: str) -> str:
    """Normalise a person name for matching.

    Case-folds, strips accents, unifies apostrophes and dashes, and collapses
    whitespace, so "  Zoé  D'Alembert" and "zoe d’alembert" compare equal.
    """
    text = strip_accents(name).casefold()
    text = text.replace("’", "'").replace("‘", "'")
    text = text.replace("–", "-").replace("—", "-")
    return " ".join(text.split())


def sheet_weekday(title: str) -> int | None:
    """Map a sheet title such as "Mercredi" or " monday " to an ISO weekday."""
    return SHEET_WEEKDAYS.get(strip_accents(title).strip().casefold())


def parse_slot_range(value: str) -> tuple[time, time]:
    """Parse "09:00-10:00" into (start, end) times.

    Raises:
        ValueError: If the value is not a valid, increasing time range.
    """
    match = _SLOT_RANGE.match(value)
    if not match:
        raise ValueError(f"Invalid slot time range {value!r}")
    h1, m1, h2, m2 = (int(part) for part in match.groups())
    start, end = time(h1, m1), time(h2, m2)
    if start >= end:
        raise ValueError(f"Slot {value!r} ends before it starts")
    return start, end


def slot_table(slot_times: list[str]) -> dict[int, tuple[time, time]]:
    """Index configured slot ranges by 1-based slot number."""
    return {index: parse_slot_range(value) for index, value in enumerate(slot_times, start=1)}


def utcnow() -> datetime:
    # Naive UTC, matching the DateTime columns
    return datetime.now(timezone.utc).replace(tzinfo=None)
