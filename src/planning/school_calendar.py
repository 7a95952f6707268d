"""Official school calendar feed.

The French education ministry publishes school holidays per zone as an
iCalendar feed, e.g.
https://fr.ftp.opendatasoft.com/openscol/fr-en-calendrier-scolaire/Zone-C.ics

Each closure is an all-day VEVENT:
  SUMMARY:Vacances de la Toussaint - Zone C
  DTSTART;VALUE=DATE:20251018
  DTEND;VALUE=DATE:20251103      (exclusive)
"""

import re
from datetime import date, datetime, timedelta

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from planning.calendar import CalendarResolver
from planning.config import PlanningConfig
from planning.errors import PermanentError, TransientError
from planning.logging import get_logger
from planning.models import DateRange

log = get_logger(__name__)

_SUMMARY = re.compile(r"^SUMMARY[^:]*:(.+)$", re.MULTILINE)
_DTSTART = re.compile(r"^DTSTART[^:]*:(\d{8})", re.MULTILINE)
_DTEND = re.compile(r"^DTEND[^:]*:(\d{8})", re.MULTILINE)


def _unfold(ics: str) -> str:
    # RFC 5545: continuation lines start with a single space or tab
    return re.sub(r"\r?\n[ \t]", "", ics)


def _ics_date(value: str) -> date:
    return datetime.strptime(value, "%Y%m%d").date()


def parse_school_holidays(ics: str, pattern: str = "Vacances|Pont") -> list[DateRange]:
    """Extract closure ranges from iCalendar text.

    Keeps events whose summary matches ``pattern`` (case-insensitive) and
    converts the exclusive DTEND into an inclusive end date. Events without
    both dates are skipped.
    """
    wanted = re.compile(pattern, re.IGNORECASE)
    ranges: dict[tuple[date, date], DateRange] = {}

    for raw_event in _unfold(ics).split("BEGIN:VEVENT")[1:]:
        event = raw_event.split("END:VEVENT")[0]
        summary = _SUMMARY.search(event)
        if not summary or not wanted.search(summary.group(1)):
            continue
        start = _DTSTART.search(event)
        end = _DTEND.search(event)
        if not start or not end:
            continue

        first = _ics_date(start.group(1))
        last = _ics_date(end.group(1)) - timedelta(days=1)
        if last < first:
            last = first
        # Feeds repeat the same closure per academy; keep one per range
        ranges.setdefault(
            (first, last),
            DateRange(start=first, end=last, label=summary.group(1).strip()),
        )

    return sorted(ranges.values(), key=lambda block: block.start)


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=8),
    retry=retry_if_exception_type(TransientError),
    reraise=True,
)
def _download(url: str, timeout: int) -> str:
    try:
        resp = requests.get(url, timeout=timeout)
    except requests.RequestException as exc:
        log.warning("school_calendar_request_failed", url=url, error=str(exc))
        raise TransientError(f"School calendar request failed: {exc}") from exc

    if resp.status_code >= 500 or resp.status_code == 429:
        log.warning("school_calendar_unavailable", url=url, status=resp.status_code)
        raise TransientError(f"School calendar unavailable ({resp.status_code})")
    if resp.status_code != 200:
        raise PermanentError(
            f"School calendar download failed ({resp.status_code}): {url}"
        )
    return resp.text


def fetch_school_holidays(
    url: str, *, pattern: str = "Vacances|Pont", timeout: int = 30
) -> list[DateRange]:
    """Download and parse an official school holiday feed.

    Raises:
        TransientError: If the feed stays unreachable after retries.
        PermanentError: If the server refuses the request.
    """
    ranges = parse_school_holidays(_download(url, timeout), pattern)
    log.info("school_calendar_loaded", url=url, blocks=len(ranges))
    return ranges


def resolver_from_config(config: PlanningConfig) -> CalendarResolver:
    """Build the calendar resolver, using the official feed when configured."""
    school_holidays = None
    if config.school_calendar_url:
        school_holidays = fetch_school_holidays(
            config.school_calendar_url,
            pattern=config.school_calendar_pattern,
            timeout=config.http_timeout_seconds,
        )
    return CalendarResolver(
        region=config.holiday_region,
        zone=config.school_zone,
        school_holidays=school_holidays,
    )
