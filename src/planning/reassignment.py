"""Moving children between schedule entries.

Every move runs in one transaction that locks the entries involved (in id
order, so two opposite moves cannot deadlock), changes the child links and
appends one TransferRecord per moved child. Bumping ``updated_at`` also bumps
the entries' version, so a concurrent writer holding stale rows fails with
ConcurrentModificationError instead of overwriting the move.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from planning.db import ChildRow, EntryChildRow, ScheduleEntryRow, TransferRow
from planning.errors import ConflictError, InvalidOperationError, NotFoundError
from planning.logging import get_logger
from planning.models import ScheduleEntry, TransferRecord
from planning.store import ScheduleStore, to_entry, to_transfer
from planning.utils import utcnow

log = get_logger(__name__)


def _lock_entries(session: Session, entry_ids: list[int]) -> dict[int, ScheduleEntryRow]:
    rows = session.scalars(
        select(ScheduleEntryRow)
        .where(ScheduleEntryRow.id.in_(entry_ids))
        .order_by(ScheduleEntryRow.id)
        .with_for_update()
    ).all()
    return {row.id: row for row in rows}


def _lock_pair(
    session: Session, source_id: int, target_id: int
) -> tuple[ScheduleEntryRow, ScheduleEntryRow]:
    if source_id == target_id:
        raise InvalidOperationError(f"Cannot move children from entry {source_id} onto itself")
    rows = _lock_entries(session, [source_id, target_id])
    for entry_id in (source_id, target_id):
        if entry_id not in rows:
            raise NotFoundError(f"Schedule entry {entry_id} not found")
    source, target = rows[source_id], rows[target_id]
    if source.semester_id != target.semester_id:
        raise InvalidOperationError(
            f"Entries {source_id} and {target_id} belong to different semesters"
        )
    return source, target


def _move(
    session: Session,
    source: ScheduleEntryRow,
    target: ScheduleEntryRow,
    link: EntryChildRow,
    actor_id: str | None,
    now,
) -> TransferRow:
    source.children.remove(link)
    if all(existing.child_id != link.child_id for existing in target.children):
        target.children.append(EntryChildRow(child_id=link.child_id))
    record = TransferRow(
        semester_id=source.semester_id,
        child_id=link.child_id,
        source_entry_id=source.id,
        target_entry_id=target.id,
        transferred_at=now,
        actor_id=actor_id,
    )
    session.add(record)
    return record


def _touch(now, *rows: ScheduleEntryRow) -> None:
    for row in rows:
        row.updated_at = now


class ReassignmentEngine:
    """Moves children between entries and keeps the transfer audit trail."""

    def __init__(self, store: ScheduleStore) -> None:
        self.store = store

    def reassign_all(
        self,
        source_id: int,
        target_id: int,
        *,
        actor_id: str | None = None,
        cancel_source: bool = False,
    ) -> list[TransferRecord]:
        """Move every child of the source entry onto the target entry.

        Children already on the target stay there once; a transfer record is
        still written for them since they left the source.

        Args:
            source_id: Entry losing its children.
            target_id: Entry receiving them.
            actor_id: User performing the move, kept on the records.
            cancel_source: Also mark the emptied source entry cancelled.

        Returns:
            One TransferRecord per child moved, in child id order.

        Raises:
            InvalidOperationError: Same entry twice, or entries from two semesters.
            NotFoundError: If either entry does not exist.
            ConcurrentModificationError: If concurrent writers kept colliding.
        """
        return self.store.run_with_retry(
            self._reassign_all, source_id, target_id, actor_id, cancel_source
        )

    def _reassign_all(
        self, source_id: int, target_id: int, actor_id: str | None, cancel_source: bool
    ) -> list[TransferRecord]:
        with self.store.transaction() as session:
            source, target = _lock_pair(session, source_id, target_id)
            now = utcnow()
            records = [
                _move(session, source, target, link, actor_id, now)
                for link in list(source.children)
            ]
            if cancel_source:
                source.cancelled = True
            _touch(now, source, target)
            session.flush()
            result = [to_transfer(record) for record in records]

        log.info(
            "children_reassigned",
            source_entry_id=source_id,
            target_entry_id=target_id,
            moved=len(result),
            source_cancelled=cancel_source,
            actor_id=actor_id,
        )
        return result

    def reassign_one(
        self,
        source_id: int,
        child_id: int,
        target_id: int,
        *,
        actor_id: str | None = None,
    ) -> TransferRecord:
        """Move a single child from the source entry onto the target entry.

        Raises:
            InvalidOperationError: Same entry twice, or entries from two semesters.
            NotFoundError: If an entry or the child does not exist.
            ConflictError: If the child is not on the source or already on the
                target.
            ConcurrentModificationError: If concurrent writers kept colliding.
        """
        return self.store.run_with_retry(
            self._reassign_one, source_id, child_id, target_id, actor_id
        )

    def _reassign_one(
        self, source_id: int, child_id: int, target_id: int, actor_id: str | None
    ) -> TransferRecord:
        with self.store.transaction() as session:
            source, target = _lock_pair(session, source_id, target_id)
            if session.get(ChildRow, child_id) is None:
                raise NotFoundError(f"Child {child_id} not found")

            link = next((c for c in source.children if c.child_id == child_id), None)
            if link is None:
                raise ConflictError(f"Child {child_id} is not on entry {source_id}")
            if any(c.child_id == child_id for c in target.children):
                raise ConflictError(f"Child {child_id} is already on entry {target_id}")

            now = utcnow()
            record = _move(session, source, target, link, actor_id, now)
            _touch(now, source, target)
            session.flush()
            result = to_transfer(record)

        log.info(
            "child_reassigned",
            child_id=child_id,
            source_entry_id=source_id,
            target_entry_id=target_id,
            actor_id=actor_id,
        )
        return result

    def restore_children(
        self, entry_id: int, *, actor_id: str | None = None
    ) -> list[TransferRecord]:
        """Bring back children that were moved away from an entry.

        For each child ever transferred out of the entry, follows the child's
        latest transfer to find where it is now and moves it back. Children
        already back, or whose current entry no longer exists or no longer
        holds them, are left alone.

        Returns:
            The transfer records written for children moved back.

        Raises:
            NotFoundError: If the entry does not exist.
            ConcurrentModificationError: If concurrent writers kept colliding.
        """
        return self.store.run_with_retry(self._restore_children, entry_id, actor_id)

    def _restore_children(self, entry_id: int, actor_id: str | None) -> list[TransferRecord]:
        with self.store.transaction() as session:
            origin = session.get(ScheduleEntryRow, entry_id)
            if origin is None:
                raise NotFoundError(f"Schedule entry {entry_id} not found")

            moved_out = session.scalars(
                select(TransferRow.child_id)
                .where(TransferRow.source_entry_id == entry_id)
                .order_by(TransferRow.id)
            ).all()
            whereabouts: dict[int, int] = {}
            for child_id in dict.fromkeys(moved_out):
                latest = session.scalars(
                    select(TransferRow)
                    .where(
                        TransferRow.child_id == child_id,
                        TransferRow.semester_id == origin.semester_id,
                    )
                    .order_by(TransferRow.id.desc())
                    .limit(1)
                ).one()
                if latest.target_entry_id != entry_id:
                    whereabouts[child_id] = latest.target_entry_id

            if not whereabouts:
                return []

            rows = _lock_entries(session, sorted({entry_id, *whereabouts.values()}))
            origin = rows[entry_id]
            now = utcnow()
            records: list[TransferRow] = []
            for child_id, current_id in whereabouts.items():
                current = rows.get(current_id)
                if current is None:
                    continue
                link = next((c for c in current.children if c.child_id == child_id), None)
                if link is None:
                    continue
                records.append(_move(session, current, origin, link, actor_id, now))
                _touch(now, current)
            if records:
                _touch(now, origin)
            session.flush()
            result = [to_transfer(record) for record in records]

        log.info(
            "children_restored",
            entry_id=entry_id,
            restored=len(result),
            candidates=len(whereabouts),
            actor_id=actor_id,
        )
        return result

    def find_alternatives(self, entry_id: int) -> list[ScheduleEntry]:
        """Candidate entries to move the children of an entry to.

        Candidates are active entries of the same semester with the same
        activity (case-insensitive) whose time of day overlaps the entry's,
        closest in time first.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        with self.store.snapshot() as session:
            source = session.get(ScheduleEntryRow, entry_id)
            if source is None:
                raise NotFoundError(f"Schedule entry {entry_id} not found")

            activity = source.activity.casefold()
            start, end = source.start_time.time(), source.end_time.time()
            rows = session.scalars(
                select(ScheduleEntryRow)
                .where(
                    ScheduleEntryRow.semester_id == source.semester_id,
                    ScheduleEntryRow.id != source.id,
                    ScheduleEntryRow.cancelled.is_(False),
                )
                .options(selectinload(ScheduleEntryRow.children))
            ).all()
            candidates = [
                row
                for row in rows
                if row.activity.casefold() == activity
                and row.start_time.time() < end
                and start < row.end_time.time()
            ]
            candidates.sort(
                key=lambda row: (
                    abs((row.start_time - source.start_time).total_seconds()),
                    row.start_time,
                    row.id,
                )
            )
            result = [to_entry(row) for row in candidates]

        log.debug("alternatives_found", entry_id=entry_id, candidates=len(result))
        return result
