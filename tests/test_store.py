from datetime import date, datetime

import pytest
from sqlalchemy import update
from structlog.testing import capture_logs

from planning.db import ScheduleEntryRow
from planning.errors import (
    ConcurrentModificationError,
    ConflictError,
    InvalidOperationError,
    NotFoundError,
)
from planning.models import PlannedEntry


def _entry(day, hour=9, staff="s1", children=(1, 2), activity="Piscine"):
    start = datetime(2025, 9, day, hour)
    return PlannedEntry(
        staff_id=staff,
        day_of_week=start.isoweekday(),
        start_time=start,
        end_time=start.replace(hour=hour + 1),
        activity=activity,
        child_ids=list(children),
    )


def test_semester_lifecycle(store):
    semester = store.create_semester("Automne", date(2025, 9, 1), date(2025, 12, 20))
    assert store.get_semester(semester.id) == semester
    assert store.list_semesters() == [semester]

    store.delete_semester(semester.id)
    with pytest.raises(NotFoundError):
        store.get_semester(semester.id)


def test_semester_must_start_before_it_ends(store):
    with pytest.raises(InvalidOperationError):
        store.create_semester("Vide", date(2025, 9, 1), date(2025, 9, 1))


def test_semester_with_entries_cannot_be_deleted(store, semester):
    store.replace_all(semester.id, [_entry(1)])
    with pytest.raises(ConflictError):
        store.delete_semester(semester.id)


def test_roster_upsert_is_idempotent(store):
    assert len(store.list_staff()) == 5
    assert len(store.list_children()) == 10
    store.upsert_children([c.model_copy(update={"last_name": "Leroy-Petit"}) for c in store.list_children() if c.id == 7])
    assert len(store.list_children()) == 10
    assert store.get_child(7).last_name == "Leroy-Petit"


def test_replace_all_swaps_the_whole_set(store, semester):
    store.replace_all(semester.id, [_entry(1), _entry(2), _entry(3)])
    first = store.list_entries(semester.id)
    assert len(first) == 3
    assert first[0].child_ids == {1, 2}
    assert [c.first_name for c in first[0].children] == ["Emma", "Louis"]

    store.replace_all(semester.id, [_entry(8, children=(7,))])
    second = store.list_entries(semester.id)
    assert len(second) == 1
    assert second[0].child_ids == {7}
    assert not {e.id for e in first} & {e.id for e in second}


def test_replace_all_rejects_entries_outside_semester(store, semester):
    store.replace_all(semester.id, [_entry(1)])
    outside = _entry(1).model_copy(
        update={"start_time": datetime(2026, 1, 5, 9), "end_time": datetime(2026, 1, 5, 10)}
    )
    with pytest.raises(InvalidOperationError):
        store.replace_all(semester.id, [_entry(2), outside])
    # Previous set untouched
    assert [e.start_time.day for e in store.list_entries(semester.id)] == [1]


def test_replace_all_unknown_semester(store):
    with pytest.raises(NotFoundError):
        store.replace_all(999, [])


def test_workbook_is_archived_with_the_import(store, semester):
    store.replace_all(semester.id, [_entry(1)], workbook=b"xlsx bytes", filename="planning.xlsx")
    assert store.get_workbook(semester.id) == ("planning.xlsx", b"xlsx bytes")
    with pytest.raises(NotFoundError):
        store.get_workbook(999)


def test_set_cancelled_only_flips_the_flag(store, semester):
    store.replace_all(semester.id, [_entry(1)])
    entry = store.list_entries(semester.id)[0]

    cancelled = store.set_cancelled(entry.id, True)
    assert cancelled.cancelled
    assert cancelled.child_ids == entry.child_ids
    assert store.list_entries(semester.id, include_cancelled=False) == []

    assert not store.set_cancelled(entry.id, False).cancelled
    with pytest.raises(NotFoundError):
        store.set_cancelled(12345, True)


def test_list_entries_filters(store, semester):
    store.replace_all(
        semester.id,
        [_entry(1, staff="s1", children=(1,)), _entry(1, hour=10, staff="s2", children=(2, 7)), _entry(2, staff="s2")],
    )
    assert len(store.list_entries(semester.id, staff_id="s2")) == 2
    assert [e.staff_id for e in store.list_entries(semester.id, child_id=7)] == ["s2"]
    with pytest.raises(NotFoundError):
        store.list_entries(999)


def test_import_timeout_grows_with_entries_and_is_capped(store):
    assert store.import_timeout_seconds(0) == 30
    assert store.import_timeout_seconds(400) == 50
    assert store.import_timeout_seconds(100_000) == 300


def _bump_version(store, entry_id):
    table = ScheduleEntryRow.__table__
    with store.db.engine.begin() as conn:
        conn.execute(
            update(table).where(table.c.id == entry_id).values(version=table.c.version + 1)
        )


def test_stale_version_is_retried(store, semester):
    store.replace_all(semester.id, [_entry(1)])
    entry_id = store.list_entries(semester.id)[0].id
    attempts = []

    def rename(entry_id):
        attempts.append(entry_id)
        with store.transaction() as session:
            row = session.get(ScheduleEntryRow, entry_id)
            if len(attempts) == 1:
                # Another writer commits between our read and our write
                _bump_version(store, entry_id)
            row.activity = "Natation"

    with capture_logs() as logs:
        store.run_with_retry(rename, entry_id)

    assert len(attempts) == 2
    assert store.get_entry(entry_id).activity == "Natation"
    assert [e["event"] for e in logs if e["log_level"] == "warning"] == ["retrying_after_conflict"]


def test_persistent_conflict_gives_up(store, semester):
    store.replace_all(semester.id, [_entry(1)])
    entry_id = store.list_entries(semester.id)[0].id
    attempts = []

    def rename(entry_id):
        attempts.append(entry_id)
        with store.transaction() as session:
            row = session.get(ScheduleEntryRow, entry_id)
            _bump_version(store, entry_id)
            row.activity = "Natation"

    with pytest.raises(ConcurrentModificationError):
        store.run_with_retry(rename, entry_id)
    assert len(attempts) == store.config.retry_attempts
    assert store.get_entry(entry_id).activity == "Piscine"
