"""Weekly template workbook parsing."""

from planning.workbook.cells import (
    ActivityCell,
    EmptyCell,
    MalformedCell,
    ParsedCell,
    parse_cell,
)
from planning.workbook.parser import (
    MalformedSlot,
    ParsedRow,
    ParseResult,
    StaffLine,
    parse_workbook,
)

__all__ = [
    "ActivityCell",
    "EmptyCell",
    "MalformedCell",
    "ParsedCell",
    "parse_cell",
    "MalformedSlot",
    "ParsedRow",
    "ParseResult",
    "StaffLine",
    "parse_workbook",
]
