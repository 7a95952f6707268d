"""Weekly template workbook reader.

Layout (one sheet per weekday, named "Monday".."Friday" or "Lundi".."Vendredi"):

    | Staff          | Slot 1                     | Slot 2          | ...
    | Claire Dubois  | Piscine – Emma Martin, ... | Pause           | ...
    | Marc Petit     | Motricité – all            |                 | ...

Row 1 is a header. Column A holds the staff member's full name, column B is
slot 1, column C slot 2, and so on. Parsing is purely syntactic: names are
kept as written and resolved to identities by planning.validation.
"""

from dataclasses import dataclass, field
from io import BytesIO
from typing import Iterable
from zipfile import BadZipFile

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from planning.errors import StructuralInputError
from planning.logging import get_logger
from planning.utils import WEEKDAY_NAMES, sheet_weekday
from planning.workbook.cells import ActivityCell, EmptyCell, MalformedCell, parse_cell

log = get_logger(__name__)


@dataclass(frozen=True)
class StaffLine:
    """A data row of a weekday sheet, identified by its staff name."""

    sheet: str
    day_of_week: int
    row_number: int
    staff_name: str


@dataclass(frozen=True)
class ParsedRow:
    """One non-empty, well-formed slot cell."""

    sheet: str
    day_of_week: int
    row_number: int
    column: int  # 1-based spreadsheet column
    slot_index: int
    staff_name: str
    cell: ActivityCell


@dataclass(frozen=True)
class MalformedSlot:
    sheet: str
    day_of_week: int
    row_number: int
    column: int
    staff_name: str
    raw: str
    reason: str


@dataclass
class ParseResult:
    rows: list[ParsedRow] = field(default_factory=list)
    malformed: list[MalformedSlot] = field(default_factory=list)
    staff_lines: list[StaffLine] = field(default_factory=list)
    sheets: dict[int, str] = field(default_factory=dict)  # weekday -> sheet title


def _text(value: object) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def _parse_sheet(
    worksheet,
    day_of_week: int,
    result: ParseResult,
    all_tokens: list[str],
    break_labels: list[str],
) -> None:
    title = worksheet.title
    for row_number, values in enumerate(
        worksheet.iter_rows(min_row=2, values_only=True), start=2
    ):
        if not values:
            continue
        staff_name = _text(values[0])
        slots = values[1:]

        if not staff_name:
            if any(_text(value) for value in slots):
                result.malformed.append(
                    MalformedSlot(
                        sheet=title,
                        day_of_week=day_of_week,
                        row_number=row_number,
                        column=1,
                        staff_name="",
                        raw="",
                        reason="row has slot cells but no staff name",
                    )
                )
            continue

        result.staff_lines.append(
            StaffLine(
                sheet=title,
                day_of_week=day_of_week,
                row_number=row_number,
                staff_name=staff_name,
            )
        )

        for slot_index, value in enumerate(slots, start=1):
            cell = parse_cell(value, all_tokens=all_tokens, break_labels=break_labels)
            if isinstance(cell, EmptyCell):
                continue
            if isinstance(cell, MalformedCell):
                result.malformed.append(
                    MalformedSlot(
                        sheet=title,
                        day_of_week=day_of_week,
                        row_number=row_number,
                        column=slot_index + 1,
                        staff_name=staff_name,
                        raw=cell.raw,
                        reason=cell.reason,
                    )
                )
                continue
            result.rows.append(
                ParsedRow(
                    sheet=title,
                    day_of_week=day_of_week,
                    row_number=row_number,
                    column=slot_index + 1,
                    slot_index=slot_index,
                    staff_name=staff_name,
                    cell=cell,
                )
            )


def parse_workbook(
    data: bytes,
    *,
    all_tokens: Iterable[str] = ("all", "tous"),
    break_labels: Iterable[str] = ("pause", "break"),
) -> ParseResult:
    """Read every weekday sheet of a template workbook.

    Sheets whose title is not a weekday are ignored.

    Raises:
        StructuralInputError: If the bytes are not a readable workbook, no
            sheet is a weekday, or two sheets describe the same weekday.
    """
    try:
        workbook = load_workbook(BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as exc:
        raise StructuralInputError(f"Workbook cannot be read: {exc}") from exc

    all_tokens = list(all_tokens)
    break_labels = list(break_labels)
    result = ParseResult()
    try:
        for worksheet in workbook.worksheets:
            day_of_week = sheet_weekday(worksheet.title)
            if day_of_week is None:
                log.debug("sheet_ignored", sheet=worksheet.title)
                continue
            if day_of_week in result.sheets:
                raise StructuralInputError(
                    f"Sheets {result.sheets[day_of_week]!r} and {worksheet.title!r} "
                    f"both describe {WEEKDAY_NAMES[day_of_week]}"
                )
            result.sheets[day_of_week] = worksheet.title
            _parse_sheet(worksheet, day_of_week, result, all_tokens, break_labels)
    finally:
        workbook.close()

    if not result.sheets:
        raise StructuralInputError(
            "Workbook has no weekday sheet (expected Monday..Friday or Lundi..Vendredi)"
        )

    log.info(
        "workbook_parsed",
        sheets=len(result.sheets),
        slots=len(result.rows),
        malformed=len(result.malformed),
    )
    return result
