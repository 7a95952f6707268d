"""Workbook import: parse, validate, expand, then preview or persist.

Preview and commit share one pipeline and differ only in the final step.
Structural and validation problems are returned as a rejected ImportOutcome
listing every problem; persistence errors propagate to the caller.
"""

import hashlib

from planning.calendar import CalendarResolver
from planning.config import PlanningConfig
from planning.errors import CoverageValidationError, StructuralInputError
from planning.expander import expand
from planning.logging import get_logger
from planning.models import ImportOutcome, IssueKind, PlannedEntry, ValidationIssue
from planning.store import ScheduleStore
from planning.validation import validate_or_raise
from planning.workbook import parse_workbook

log = get_logger(__name__)


class ImportService:
    def __init__(
        self,
        store: ScheduleStore,
        *,
        calendar: CalendarResolver | None = None,
        config: PlanningConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or store.config
        self.calendar = calendar or CalendarResolver(
            self.config.holiday_region, self.config.school_zone
        )

    def plan(self, semester_id: int, workbook: bytes) -> list[PlannedEntry]:
        """Build the full entry set a workbook would produce.

        Raises:
            NotFoundError: If the semester does not exist.
            StructuralInputError: If the workbook cannot be read as a template.
            CoverageValidationError: With every validation problem found.
        """
        semester = self.store.get_semester(semester_id)
        parsed = parse_workbook(
            workbook,
            all_tokens=self.config.all_children_tokens,
            break_labels=self.config.break_labels,
        )
        rows = validate_or_raise(
            parsed, self.store.list_staff(), self.store.list_children(), self.config
        )
        return expand(rows, semester, calendar=self.calendar, config=self.config)

    def _rejected(self, semester_id: int, exc: Exception) -> ImportOutcome:
        if isinstance(exc, CoverageValidationError):
            problems = exc.issues
        else:
            problems = [ValidationIssue(kind=IssueKind.STRUCTURAL, message=str(exc))]
        log.warning(
            "import_rejected",
            semester_id=semester_id,
            problems=len(problems),
            first_problem=problems[0].message if problems else None,
        )
        return ImportOutcome(semester_id=semester_id, status="rejected", problems=problems)

    def preview(self, semester_id: int, workbook: bytes) -> ImportOutcome:
        """Expand a workbook without persisting anything."""
        try:
            entries = self.plan(semester_id, workbook)
        except (StructuralInputError, CoverageValidationError) as exc:
            return self._rejected(semester_id, exc)

        log.info("import_previewed", semester_id=semester_id, entries=len(entries))
        return ImportOutcome(
            semester_id=semester_id,
            status="previewed",
            entry_count=len(entries),
            entries=entries,
            workbook_sha256=hashlib.sha256(workbook).hexdigest(),
        )

    def commit(
        self, semester_id: int, workbook: bytes, *, filename: str | None = None
    ) -> ImportOutcome:
        """Replace the semester's entries with those of the workbook.

        Nothing is written when the workbook is rejected.

        Raises:
            NotFoundError: If the semester does not exist.
            ConcurrentModificationError: If concurrent imports kept colliding.
        """
        try:
            entries = self.plan(semester_id, workbook)
        except (StructuralInputError, CoverageValidationError) as exc:
            return self._rejected(semester_id, exc)

        count = self.store.replace_all(
            semester_id, entries, workbook=workbook, filename=filename
        )
        log.info("import_committed", semester_id=semester_id, entries=count, filename=filename)
        return ImportOutcome(
            semester_id=semester_id,
            status="imported",
            entry_count=count,
            workbook_sha256=hashlib.sha256(workbook).hexdigest(),
        )
