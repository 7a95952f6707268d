"""Pydantic models for planning data.

All data structures crossing a module boundary use Pydantic v2 for
validation, serialization, and type safety. Storage rows live in
planning.db and are mapped to these models by planning.store.
"""

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Semester(BaseModel):
    """A named scheduling period with fixed start and end dates."""

    id: int
    name: str
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def _check_dates(self) -> "Semester":
        if self.start_date >= self.end_date:
            raise ValueError("semester must start before it ends")
        return self


class StaffMember(BaseModel):
    """A staff member as known to the external user directory."""

    id: str
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Child(BaseModel):
    id: int
    first_name: str
    last_name: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class DateRange(BaseModel):
    """Inclusive date interval, e.g. a school holiday block."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    label: str = ""

    @model_validator(mode="after")
    def _check_order(self) -> "DateRange":
        if self.start > self.end:
            raise ValueError("date range ends before it starts")
        return self

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


class ClosureDay(BaseModel):
    """A day on which no activity takes place (holiday or public holiday)."""

    day: date
    label: str


class TemplateRow(BaseModel):
    """One weekly recurring slot with resolved identities.

    Produced by validation, consumed by expansion; never persisted.
    """

    model_config = ConfigDict(frozen=True)

    staff_id: str
    day_of_week: int = Field(ge=1, le=7)
    slot_index: int = Field(ge=1)
    activity: str
    child_ids: frozenset[int] = frozenset()


class PlannedEntry(BaseModel):
    """A dated occurrence of a template row, not yet persisted."""

    staff_id: str
    day_of_week: int = Field(ge=1, le=7)
    start_time: datetime
    end_time: datetime
    activity: str
    child_ids: list[int] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_times(self) -> "PlannedEntry":
        if self.start_time >= self.end_time:
            raise ValueError("entry must start before it ends")
        if self.start_time.isoweekday() != self.day_of_week:
            raise ValueError("day_of_week does not match start_time")
        return self


class ScheduleEntry(BaseModel):
    """A persisted, dated occurrence of a staff-led activity slot."""

    id: int
    semester_id: int
    staff_id: str
    day_of_week: int
    start_time: datetime
    end_time: datetime
    activity: str
    cancelled: bool = False
    children: list[Child] = Field(default_factory=list)

    @property
    def child_ids(self) -> set[int]:
        return {child.id for child in self.children}


class TransferRecord(BaseModel):
    """Audit record of one child moved from one entry to another."""

    id: int
    semester_id: int
    child_id: int
    source_entry_id: int
    target_entry_id: int
    transferred_at: datetime
    actor_id: str | None = None


class IssueKind(str, Enum):
    MALFORMED_CELL = "malformed_cell"
    UNKNOWN_SLOT = "unknown_slot"
    UNKNOWN_STAFF = "unknown_staff"
    AMBIGUOUS_STAFF = "ambiguous_staff"
    UNKNOWN_CHILD = "unknown_child"
    AMBIGUOUS_CHILD = "ambiguous_child"
    DUPLICATE_STAFF_SLOT = "duplicate_staff_slot"
    MISSING_STAFF = "missing_staff"
    MISSING_COVERAGE = "missing_coverage"
    STRUCTURAL = "structural"


class ValidationIssue(BaseModel):
    """One problem found in a workbook, located as precisely as possible."""

    kind: IssueKind
    message: str
    subject: str | None = None  # offending name, staff member or child
    sheet: str | None = None
    row: int | None = None  # 1-based spreadsheet row
    column: int | None = None  # 1-based spreadsheet column
    day_of_week: int | None = None
    slot_index: int | None = None
    block: Literal["morning", "afternoon"] | None = None


class ImportOutcome(BaseModel):
    """Structured result of a preview or commit import."""

    semester_id: int
    status: Literal["previewed", "imported", "rejected"]
    entry_count: int = 0
    entries: list[PlannedEntry] = Field(default_factory=list)
    problems: list[ValidationIssue] = Field(default_factory=list)
    workbook_sha256: str | None = None

    @property
    def ok(self) -> bool:
        return self.status != "rejected"


class Caller(BaseModel):
    """Already authenticated identity of whoever calls the engine."""

    user_id: str
    roles: frozenset[str] = frozenset()

    def has_any_role(self, roles: list[str] | set[str]) -> bool:
        return bool(self.roles & set(roles))
