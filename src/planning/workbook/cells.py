"""Tagged parsing of weekly template slot cells.

A slot cell reads "<activity> – <child names, comma separated>", e.g.
"Piscine – Emma Martin, Louis Bernard" or "Motricité – all". Every cell
parses to exactly one of EmptyCell, ActivityCell or MalformedCell so
validation can handle each case explicitly.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Union

# En or em dash; a spaced hyphen only when neither appears
DASH = re.compile(r"\s*[–—]\s*")
SPACED_HYPHEN = re.compile(r"\s+-\s+")


@dataclass(frozen=True)
class EmptyCell:
    """Blank slot: the staff member has nothing scheduled."""


@dataclass(frozen=True)
class ActivityCell:
    """A scheduled activity.

    names holds explicit child names in workbook order; all_children marks
    the "all" token, expanded to the roster during validation.
    """

    label: str
    names: tuple[str, ...] = ()
    all_children: bool = False


@dataclass(frozen=True)
class MalformedCell:
    raw: str
    reason: str


ParsedCell = Union[EmptyCell, ActivityCell, MalformedCell]


def _cell_text(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_cell(
    value: object,
    *,
    all_tokens: Iterable[str] = ("all",),
    break_labels: Iterable[str] = ("pause",),
) -> ParsedCell:
    """Parse one slot cell value from the workbook."""
    raw = _cell_text(value)
    if not raw:
        return EmptyCell()

    all_set = {token.casefold() for token in all_tokens}
    breaks = {label.casefold() for label in break_labels}

    parts = DASH.split(raw, maxsplit=1)
    if len(parts) == 1:
        parts = SPACED_HYPHEN.split(raw, maxsplit=1)
    label = parts[0].strip()
    if len(parts) == 1:
        if label.casefold() in breaks:
            return ActivityCell(label=label)
        return MalformedCell(raw=raw, reason="missing '–' between activity and children")
    if not label:
        return MalformedCell(raw=raw, reason="missing activity label")

    tokens = [token.strip() for token in parts[1].split(",")]
    tokens = [token for token in tokens if token]
    if not tokens:
        if label.casefold() in breaks:
            return ActivityCell(label=label)
        return MalformedCell(raw=raw, reason="no child names after activity")

    all_children = any(token.casefold() in all_set for token in tokens)
    names = tuple(token for token in tokens if token.casefold() not in all_set)
    return ActivityCell(label=label, names=names, all_children=all_children)
