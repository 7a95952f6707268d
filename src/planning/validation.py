"""Coverage validation of a parsed weekly template.

Turns the syntactic parse result into TemplateRows with resolved identities
and checks, accumulating every problem instead of stopping at the first:

  1. malformed cells and slot columns without a configured time
  2. every staff name and child name resolves to exactly one identity
  3. no staff member is booked twice in the same day and slot
  4. every known staff member has at least one activity in the workbook
  5. every known child has a morning slot each weekday and an afternoon slot
     each weekday except the short day

The "all" token expands to every child in the roster (scope "roster") or to
every child named explicitly somewhere in the workbook (scope "workbook").
Coverage is always required for every child in the roster.

Names match "first last" ignoring case, accents and extra spaces. The
reversed "last first" order is accepted only with match_reversed_names.
"""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Hashable, Iterable

from planning.config import PlanningConfig, get_config
from planning.errors import CoverageValidationError
from planning.logging import get_logger
from planning.models import Child, IssueKind, StaffMember, TemplateRow, ValidationIssue
from planning.utils import WEEKDAY_NAMES, normalize_name, slot_table
from planning.workbook.parser import ParseResult, ParsedRow

log = get_logger(__name__)

SCHOOL_DAYS = (1, 2, 3, 4, 5)


class NameIndex:
    """Case- and accent-insensitive lookup of "first last" names.

    With ``reversed_order``, "last first" also matches. Two people whose
    first and last names are swapped then become ambiguous.
    """

    def __init__(
        self, people: Iterable[tuple[Hashable, str, str]], reversed_order: bool = False
    ) -> None:
        self._keys: dict[str, set] = defaultdict(set)
        for person_id, first_name, last_name in people:
            self._keys[normalize_name(f"{first_name} {last_name}")].add(person_id)
            if reversed_order:
                self._keys[normalize_name(f"{last_name} {first_name}")].add(person_id)

    def resolve(self, name: str) -> list:
        return sorted(self._keys.get(normalize_name(name), ()))


@dataclass
class ValidationResult:
    rows: list[TemplateRow] = field(default_factory=list)
    issues: list[ValidationIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues


def _where(row: ParsedRow) -> str:
    return f"{row.sheet} row {row.row_number}, column {row.column}"


def validate(
    parsed: ParseResult,
    staff: list[StaffMember],
    children: list[Child],
    config: PlanningConfig | None = None,
) -> ValidationResult:
    """Resolve identities and check coverage of a parsed workbook."""
    config = config or get_config()
    slots = slot_table(config.slot_times)
    result = ValidationResult()
    issues = result.issues

    for bad in parsed.malformed:
        issues.append(
            ValidationIssue(
                kind=IssueKind.MALFORMED_CELL,
                message=f"{bad.sheet} row {bad.row_number}, column {bad.column}: "
                f"{bad.reason} ({bad.raw!r})",
                subject=bad.staff_name or None,
                sheet=bad.sheet,
                row=bad.row_number,
                column=bad.column,
                day_of_week=bad.day_of_week,
            )
        )

    rows: list[ParsedRow] = []
    for row in parsed.rows:
        if row.slot_index not in slots:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.UNKNOWN_SLOT,
                    message=f"{_where(row)}: no time configured for slot {row.slot_index} "
                    f"({row.cell.label!r})",
                    subject=row.staff_name,
                    sheet=row.sheet,
                    row=row.row_number,
                    column=row.column,
                    day_of_week=row.day_of_week,
                    slot_index=row.slot_index,
                )
            )
            continue
        rows.append(row)

    # Staff names, one resolution per sheet row
    staff_index = NameIndex(
        ((s.id, s.first_name, s.last_name) for s in staff), config.match_reversed_names
    )
    staff_by_line: dict[tuple[str, int], str] = {}
    for line in parsed.staff_lines:
        matches = staff_index.resolve(line.staff_name)
        if len(matches) == 1:
            staff_by_line[(line.sheet, line.row_number)] = matches[0]
            continue
        kind = IssueKind.UNKNOWN_STAFF if not matches else IssueKind.AMBIGUOUS_STAFF
        detail = "unknown staff member" if not matches else f"matches {len(matches)} staff members"
        issues.append(
            ValidationIssue(
                kind=kind,
                message=f"{line.sheet} row {line.row_number}: {detail} {line.staff_name!r}",
                subject=line.staff_name,
                sheet=line.sheet,
                row=line.row_number,
                column=1,
                day_of_week=line.day_of_week,
            )
        )

    # Child names
    child_index = NameIndex(
        ((c.id, c.first_name, c.last_name) for c in children), config.match_reversed_names
    )
    explicit: dict[tuple[str, int, int], set[int]] = {}
    unresolved: set[tuple[str, int, int]] = set()
    for row in rows:
        key = (row.sheet, row.row_number, row.column)
        ids: set[int] = set()
        for name in row.cell.names:
            matches = child_index.resolve(name)
            if len(matches) == 1:
                ids.add(matches[0])
                continue
            unresolved.add(key)
            kind = IssueKind.UNKNOWN_CHILD if not matches else IssueKind.AMBIGUOUS_CHILD
            detail = "unknown child" if not matches else f"matches {len(matches)} children"
            issues.append(
                ValidationIssue(
                    kind=kind,
                    message=f"{_where(row)}: {detail} {name!r} in activity {row.cell.label!r}",
                    subject=name,
                    sheet=row.sheet,
                    row=row.row_number,
                    column=row.column,
                    day_of_week=row.day_of_week,
                    slot_index=row.slot_index,
                )
            )
        explicit[key] = ids

    if config.all_children_scope == "workbook":
        everyone = set().union(*explicit.values()) if explicit else set()
    else:
        everyone = {c.id for c in children}

    # Children placed per (weekday, slot), from every row whose names resolved
    covered: dict[tuple[int, int], set[int]] = defaultdict(set)
    booked: dict[tuple[str, int, int], ParsedRow] = {}
    for row in rows:
        key = (row.sheet, row.row_number, row.column)
        child_ids = set(explicit[key])
        if row.cell.all_children:
            child_ids |= everyone
        covered[(row.day_of_week, row.slot_index)] |= child_ids

        staff_id = staff_by_line.get((row.sheet, row.row_number))
        if staff_id is None or key in unresolved:
            continue

        slot_key = (staff_id, row.day_of_week, row.slot_index)
        first = booked.get(slot_key)
        if first is not None:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.DUPLICATE_STAFF_SLOT,
                    message=f"{row.staff_name} is booked twice on "
                    f"{WEEKDAY_NAMES[row.day_of_week]} slot {row.slot_index}: "
                    f"{first.cell.label!r} and {row.cell.label!r}",
                    subject=row.staff_name,
                    sheet=row.sheet,
                    row=row.row_number,
                    column=row.column,
                    day_of_week=row.day_of_week,
                    slot_index=row.slot_index,
                )
            )
            continue
        booked[slot_key] = row
        result.rows.append(
            TemplateRow(
                staff_id=staff_id,
                day_of_week=row.day_of_week,
                slot_index=row.slot_index,
                activity=row.cell.label,
                child_ids=frozenset(child_ids),
            )
        )

    # A name in column A with only blank cells schedules nothing
    filled_lines = {(r.sheet, r.row_number) for r in parsed.rows}
    filled_lines |= {(m.sheet, m.row_number) for m in parsed.malformed}
    seen_staff = {
        staff_id for line, staff_id in staff_by_line.items() if line in filled_lines
    }
    for member in staff:
        if member.id not in seen_staff:
            issues.append(
                ValidationIssue(
                    kind=IssueKind.MISSING_STAFF,
                    message=f"{member.full_name} has no activity in the workbook",
                    subject=member.full_name,
                )
            )

    issues.extend(_coverage_issues(children, covered, config))

    result.rows.sort(key=lambda r: (r.day_of_week, r.slot_index, r.staff_id))
    log.info(
        "template_validated",
        rows=len(result.rows),
        issues=len(issues),
        all_children_scope=config.all_children_scope,
    )
    return result


def _coverage_issues(
    children: list[Child],
    covered: dict[tuple[int, int], set[int]],
    config: PlanningConfig,
) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    slots = slot_table(config.slot_times)
    blocks = [("morning", config.morning_slots), ("afternoon", config.afternoon_slots)]

    for child in children:
        for day in SCHOOL_DAYS:
            for block, block_slots in blocks:
                if block == "afternoon" and day == config.short_day:
                    continue
                placed = [child.id in covered.get((day, slot), ()) for slot in block_slots]
                if config.coverage_granularity == "block":
                    if any(placed):
                        continue
                    issues.append(
                        ValidationIssue(
                            kind=IssueKind.MISSING_COVERAGE,
                            message=f"{child.full_name} has no {block} slot on {WEEKDAY_NAMES[day]}",
                            subject=child.full_name,
                            day_of_week=day,
                            block=block,
                        )
                    )
                    continue
                for slot, ok in zip(block_slots, placed):
                    if ok:
                        continue
                    start, end = slots[slot]
                    issues.append(
                        ValidationIssue(
                            kind=IssueKind.MISSING_COVERAGE,
                            message=f"{child.full_name} has no slot on {WEEKDAY_NAMES[day]} "
                            f"{start:%H:%M}-{end:%H:%M}",
                            subject=child.full_name,
                            day_of_week=day,
                            slot_index=slot,
                            block=block,
                        )
                    )
    return issues


def validate_or_raise(
    parsed: ParseResult,
    staff: list[StaffMember],
    children: list[Child],
    config: PlanningConfig | None = None,
) -> list[TemplateRow]:
    """Validate and return the template rows.

    Raises:
        CoverageValidationError: With every issue found, if any.
    """
    result = validate(parsed, staff, children, config)
    if not result.ok:
        raise CoverageValidationError(result.issues)
    return result.rows
