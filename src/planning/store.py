"""Schedule store: semesters, roster mirror, entries and workbook archive.

All writes run inside one database transaction each. Replacing a semester's
entries is all-or-nothing: readers see either the previous set or the new
one, never a mix. Operations that lose a race against a concurrent writer
raise ConcurrentModificationError and are retried a bounded number of times.
"""

import hashlib
from contextlib import contextmanager
from typing import Callable, Iterable, Iterator, TypeVar

from sqlalchemy import delete, func, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, selectinload
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from planning.config import PlanningConfig, get_config
from planning.db import (
    ChildRow,
    Database,
    EntryChildRow,
    ScheduleEntryRow,
    SemesterRow,
    StaffRow,
    TransferRow,
    WorkbookRow,
)
from planning.errors import (
    ConcurrentModificationError,
    ConflictError,
    InvalidOperationError,
    NotFoundError,
)
from planning.logging import get_logger
from planning.models import (
    Child,
    PlannedEntry,
    ScheduleEntry,
    Semester,
    StaffMember,
    TransferRecord,
)
from planning.utils import utcnow

log = get_logger(__name__)

T = TypeVar("T")

# SQLSTATE serialization_failure and deadlock_detected
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def _is_serialization_failure(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code in _RETRYABLE_SQLSTATES:
        return True
    return "database is locked" in str(orig).lower()


def to_semester(row: SemesterRow) -> Semester:
    return Semester(
        id=row.id, name=row.name, start_date=row.start_date, end_date=row.end_date
    )


def to_entry(row: ScheduleEntryRow) -> ScheduleEntry:
    return ScheduleEntry(
        id=row.id,
        semester_id=row.semester_id,
        staff_id=row.staff_id,
        day_of_week=row.day_of_week,
        start_time=row.start_time,
        end_time=row.end_time,
        activity=row.activity,
        cancelled=row.cancelled,
        children=[
            Child(
                id=link.child.id,
                first_name=link.child.first_name,
                last_name=link.child.last_name,
            )
            for link in row.children
        ],
    )


def to_transfer(row: TransferRow) -> TransferRecord:
    return TransferRecord(
        id=row.id,
        semester_id=row.semester_id,
        child_id=row.child_id,
        source_entry_id=row.source_entry_id,
        target_entry_id=row.target_entry_id,
        transferred_at=row.transferred_at,
        actor_id=row.actor_id,
    )


class ScheduleStore:
    """Transactional access to persisted schedule data."""

    def __init__(self, db: Database, config: PlanningConfig | None = None) -> None:
        self.db = db
        self.config = config or get_config()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @contextmanager
    def transaction(self, isolation_level: str | None = None) -> Iterator[Session]:
        """Open a session inside one transaction, committed on success.

        Raises:
            ConcurrentModificationError: On a stale version or a database
                serialization failure.
        """
        with self.db.session() as session:
            try:
                with session.begin():
                    if isolation_level:
                        session.connection(
                            execution_options={"isolation_level": isolation_level}
                        )
                    yield session
            except StaleDataError as exc:
                raise ConcurrentModificationError(
                    "Entry was modified concurrently, re-read and retry"
                ) from exc
            except DBAPIError as exc:
                if _is_serialization_failure(exc):
                    raise ConcurrentModificationError(
                        f"Concurrent transaction conflict: {exc.orig}"
                    ) from exc
                raise

    @contextmanager
    def snapshot(self) -> Iterator[Session]:
        """Read-only session seeing one consistent state of the database."""
        level = "REPEATABLE READ" if self.db.dialect == "postgresql" else None
        with self.transaction(level) as session:
            yield session

    def run_with_retry(self, operation: Callable[..., T], *args, **kwargs) -> T:
        """Run ``operation`` again on ConcurrentModificationError.

        Each attempt must open its own transaction so it re-reads current
        state.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_random_exponential(multiplier=0.05, max=1),
            retry=retry_if_exception_type(ConcurrentModificationError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    log.warning(
                        "retrying_after_conflict",
                        operation=operation.__name__,
                        attempt=attempt.retry_state.attempt_number,
                    )
                return operation(*args, **kwargs)
        raise AssertionError("unreachable")

    # ------------------------------------------------------------------
    # Semesters
    # ------------------------------------------------------------------

    def create_semester(self, name: str, start_date, end_date) -> Semester:
        """Create a semester.

        Raises:
            InvalidOperationError: If the semester does not start before it ends.
        """
        if start_date >= end_date:
            raise InvalidOperationError(
                f"Semester {name!r} must start before it ends ({start_date} >= {end_date})"
            )
        with self.transaction() as session:
            row = SemesterRow(name=name, start_date=start_date, end_date=end_date)
            session.add(row)
            session.flush()
            semester = to_semester(row)
        log.info("semester_created", semester_id=semester.id, name=name)
        return semester

    def get_semester(self, semester_id: int) -> Semester:
        with self.snapshot() as session:
            row = session.get(SemesterRow, semester_id)
            if row is None:
                raise NotFoundError(f"Semester {semester_id} not found")
            return to_semester(row)

    def list_semesters(self) -> list[Semester]:
        with self.snapshot() as session:
            rows = session.scalars(
                select(SemesterRow).order_by(SemesterRow.start_date, SemesterRow.id)
            )
            return [to_semester(row) for row in rows]

    def delete_semester(self, semester_id: int) -> None:
        """Delete a semester that has no entries left.

        Raises:
            NotFoundError: If the semester does not exist.
            ConflictError: If entries still reference it.
        """
        with self.transaction() as session:
            row = session.get(SemesterRow, semester_id)
            if row is None:
                raise NotFoundError(f"Semester {semester_id} not found")
            count = session.scalar(
                select(func.count())
                .select_from(ScheduleEntryRow)
                .where(ScheduleEntryRow.semester_id == semester_id)
            )
            if count:
                raise ConflictError(
                    f"Semester {semester_id} still has {count} schedule entries"
                )
            session.execute(delete(WorkbookRow).where(WorkbookRow.semester_id == semester_id))
            session.delete(row)
        log.info("semester_deleted", semester_id=semester_id)

    # ------------------------------------------------------------------
    # Roster mirror
    # ------------------------------------------------------------------

    def upsert_staff(self, members: Iterable[StaffMember]) -> int:
        count = 0
        with self.transaction() as session:
            for member in members:
                session.merge(
                    StaffRow(
                        id=member.id,
                        first_name=member.first_name,
                        last_name=member.last_name,
                    )
                )
                count += 1
        log.info("staff_upserted", count=count)
        return count

    def upsert_children(self, children: Iterable[Child]) -> int:
        count = 0
        with self.transaction() as session:
            for child in children:
                session.merge(
                    ChildRow(
                        id=child.id,
                        first_name=child.first_name,
                        last_name=child.last_name,
                    )
                )
                count += 1
        log.info("children_upserted", count=count)
        return count

    def list_staff(self) -> list[StaffMember]:
        with self.snapshot() as session:
            rows = session.scalars(select(StaffRow).order_by(StaffRow.last_name, StaffRow.id))
            return [
                StaffMember(id=r.id, first_name=r.first_name, last_name=r.last_name)
                for r in rows
            ]

    def list_children(self) -> list[Child]:
        with self.snapshot() as session:
            rows = session.scalars(select(ChildRow).order_by(ChildRow.last_name, ChildRow.id))
            return [Child(id=r.id, first_name=r.first_name, last_name=r.last_name) for r in rows]

    def get_staff(self, staff_id: str) -> StaffMember:
        with self.snapshot() as session:
            row = session.get(StaffRow, staff_id)
            if row is None:
                raise NotFoundError(f"Staff member {staff_id!r} not found")
            return StaffMember(id=row.id, first_name=row.first_name, last_name=row.last_name)

    def get_child(self, child_id: int) -> Child:
        with self.snapshot() as session:
            row = session.get(ChildRow, child_id)
            if row is None:
                raise NotFoundError(f"Child {child_id} not found")
            return Child(id=row.id, first_name=row.first_name, last_name=row.last_name)

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def import_timeout_seconds(self, entry_count: int) -> float:
        """Transaction timeout for replacing ``entry_count`` entries."""
        c = self.config
        scaled = c.import_timeout_base_seconds + entry_count * c.import_timeout_per_entry_ms / 1000
        return min(scaled, c.import_timeout_max_seconds)

    def replace_all(
        self,
        semester_id: int,
        entries: list[PlannedEntry],
        *,
        workbook: bytes | None = None,
        filename: str | None = None,
    ) -> int:
        """Atomically replace every entry of a semester.

        Deletes the semester's entries with their child links, inserts
        ``entries`` and archives ``workbook`` in the same transaction. On any
        failure the previous entries remain untouched.

        Args:
            semester_id: Semester whose entries are replaced.
            entries: Expanded entries, all inside the semester dates.
            workbook: Raw workbook bytes to archive, if any.
            filename: Original name of the uploaded workbook.

        Returns:
            Number of entries inserted.

        Raises:
            NotFoundError: If the semester does not exist.
            InvalidOperationError: If an entry falls outside the semester.
            ConcurrentModificationError: If concurrent imports kept colliding.
        """
        return self.run_with_retry(
            self._replace_all, semester_id, entries, workbook, filename
        )

    def _replace_all(
        self,
        semester_id: int,
        entries: list[PlannedEntry],
        workbook: bytes | None,
        filename: str | None,
    ) -> int:
        timeout = self.import_timeout_seconds(len(entries))
        with self.transaction("SERIALIZABLE") as session:
            if self.db.dialect == "postgresql":
                session.execute(text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}"))

            semester = session.scalars(
                select(SemesterRow).where(SemesterRow.id == semester_id).with_for_update()
            ).one_or_none()
            if semester is None:
                raise NotFoundError(f"Semester {semester_id} not found")
            for entry in entries:
                day = entry.start_time.date()
                if not semester.start_date <= day <= semester.end_date:
                    raise InvalidOperationError(
                        f"Entry on {day} is outside semester {semester_id} "
                        f"({semester.start_date} to {semester.end_date})"
                    )

            current = select(ScheduleEntryRow.id).where(
                ScheduleEntryRow.semester_id == semester_id
            )
            session.execute(
                delete(EntryChildRow).where(EntryChildRow.entry_id.in_(current)),
                execution_options={"synchronize_session": False},
            )
            removed = session.execute(
                delete(ScheduleEntryRow).where(ScheduleEntryRow.semester_id == semester_id),
                execution_options={"synchronize_session": False},
            ).rowcount

            now = utcnow()
            session.add_all(
                ScheduleEntryRow(
                    semester_id=semester_id,
                    staff_id=entry.staff_id,
                    day_of_week=entry.day_of_week,
                    start_time=entry.start_time,
                    end_time=entry.end_time,
                    activity=entry.activity,
                    cancelled=False,
                    updated_at=now,
                    children=[EntryChildRow(child_id=cid) for cid in sorted(set(entry.child_ids))],
                )
                for entry in entries
            )
            if workbook is not None:
                session.merge(
                    WorkbookRow(
                        semester_id=semester_id,
                        filename=filename,
                        sha256=hashlib.sha256(workbook).hexdigest(),
                        content=workbook,
                        uploaded_at=now,
                    )
                )
            session.flush()

        log.info(
            "schedule_replaced",
            semester_id=semester_id,
            removed=removed,
            inserted=len(entries),
            timeout_seconds=timeout,
            archived=workbook is not None,
        )
        return len(entries)

    def set_cancelled(self, entry_id: int, cancelled: bool) -> ScheduleEntry:
        """Flip the cancelled flag. Children stay on the entry."""
        return self.run_with_retry(self._set_cancelled, entry_id, cancelled)

    def _set_cancelled(self, entry_id: int, cancelled: bool) -> ScheduleEntry:
        with self.transaction() as session:
            row = session.get(ScheduleEntryRow, entry_id)
            if row is None:
                raise NotFoundError(f"Schedule entry {entry_id} not found")
            changed = row.cancelled != cancelled
            if changed:
                row.cancelled = cancelled
                row.updated_at = utcnow()
                session.flush()
            entry = to_entry(row)
        log.info("entry_cancel_flag_set", entry_id=entry_id, cancelled=cancelled, changed=changed)
        return entry

    def get_entry(self, entry_id: int) -> ScheduleEntry:
        with self.snapshot() as session:
            row = session.get(
                ScheduleEntryRow, entry_id, options=[selectinload(ScheduleEntryRow.children)]
            )
            if row is None:
                raise NotFoundError(f"Schedule entry {entry_id} not found")
            return to_entry(row)

    def entry_exists(self, entry_id: int) -> bool:
        with self.snapshot() as session:
            return session.get(ScheduleEntryRow, entry_id) is not None

    def list_entries(
        self,
        semester_id: int,
        *,
        staff_id: str | None = None,
        child_id: int | None = None,
        include_cancelled: bool = True,
    ) -> list[ScheduleEntry]:
        """Entries of a semester in chronological order, optionally filtered.

        Raises:
            NotFoundError: If the semester does not exist.
        """
        with self.snapshot() as session:
            if session.get(SemesterRow, semester_id) is None:
                raise NotFoundError(f"Semester {semester_id} not found")

            stmt = (
                select(ScheduleEntryRow)
                .where(ScheduleEntryRow.semester_id == semester_id)
                .options(selectinload(ScheduleEntryRow.children))
                .order_by(
                    ScheduleEntryRow.start_time,
                    ScheduleEntryRow.staff_id,
                    ScheduleEntryRow.id,
                )
            )
            if staff_id is not None:
                stmt = stmt.where(ScheduleEntryRow.staff_id == staff_id)
            if child_id is not None:
                stmt = stmt.where(
                    ScheduleEntryRow.id.in_(
                        select(EntryChildRow.entry_id).where(EntryChildRow.child_id == child_id)
                    )
                )
            if not include_cancelled:
                stmt = stmt.where(ScheduleEntryRow.cancelled.is_(False))
            return [to_entry(row) for row in session.scalars(stmt)]

    def staff_with_entries(self, semester_id: int) -> set[str]:
        with self.snapshot() as session:
            return set(
                session.scalars(
                    select(ScheduleEntryRow.staff_id)
                    .where(ScheduleEntryRow.semester_id == semester_id)
                    .distinct()
                )
            )

    # ------------------------------------------------------------------
    # Transfers and archive
    # ------------------------------------------------------------------

    def list_transfers(self, entry_id: int) -> list[TransferRecord]:
        """Transfer records with the entry as source or target, oldest first."""
        with self.snapshot() as session:
            rows = session.scalars(
                select(TransferRow)
                .where(
                    (TransferRow.source_entry_id == entry_id)
                    | (TransferRow.target_entry_id == entry_id)
                )
                .order_by(TransferRow.transferred_at, TransferRow.id)
            )
            return [to_transfer(row) for row in rows]

    def get_workbook(self, semester_id: int) -> tuple[str | None, bytes]:
        """Return (filename, bytes) of the last imported workbook.

        Raises:
            NotFoundError: If no workbook was archived for the semester.
        """
        with self.snapshot() as session:
            row = session.get(WorkbookRow, semester_id)
            if row is None:
                raise NotFoundError(f"No workbook archived for semester {semester_id}")
            return row.filename, row.content
