from datetime import date, datetime

import pytest
from conftest import CHILDREN, build_workbook, day_rows, template

from planning.errors import NotFoundError
from planning.importer import ImportService
from planning.models import IssueKind
from planning.reassignment import ReassignmentEngine


@pytest.fixture
def importer(store, calendar, config):
    return ImportService(store, calendar=calendar, config=config)


def test_preview_persists_nothing(importer, store, semester, workbook_bytes):
    outcome = importer.preview(semester.id, workbook_bytes)
    assert outcome.status == "previewed"
    # 7 rows x (14 Mon + 13 Tue + 14 Thu + 14 Fri) + 5 rows x 14 Wed
    assert outcome.entry_count == 455
    assert len(outcome.entries) == 455
    assert store.list_entries(semester.id) == []


def test_autumn_scenario(importer, store, semester, workbook_bytes):
    outcome = importer.commit(semester.id, workbook_bytes, filename="automne.xlsx")
    assert outcome.status == "imported"
    assert outcome.entry_count == 455

    entries = store.list_entries(semester.id)
    assert len(entries) == 455
    assert not [e for e in entries if e.start_time.date() == date(2025, 11, 11)]
    assert all(semester.start_date <= e.start_time.date() <= semester.end_date for e in entries)

    monday = next(
        e for e in entries if e.start_time == datetime(2025, 9, 1, 10) and e.staff_id == "s2"
    )
    tuesday = next(
        e for e in entries if e.start_time == datetime(2025, 9, 2, 10) and e.staff_id == "s5"
    )
    assert 7 in monday.child_ids and 7 not in tuesday.child_ids

    record = ReassignmentEngine(store).reassign_one(monday.id, 7, tuesday.id)
    assert 7 not in store.get_entry(monday.id).child_ids
    assert 7 in store.get_entry(tuesday.id).child_ids
    assert store.list_transfers(monday.id) == [record]

    assert store.get_workbook(semester.id) == ("automne.xlsx", workbook_bytes)


def test_reimport_is_idempotent(importer, store, semester, workbook_bytes):
    importer.commit(semester.id, workbook_bytes)
    first = store.list_entries(semester.id)
    importer.commit(semester.id, workbook_bytes)
    second = store.list_entries(semester.id)

    def shape(entries):
        return [(e.staff_id, e.start_time, e.end_time, e.activity, e.child_ids) for e in entries]

    assert shape(first) == shape(second)


def test_reimport_clears_cancellations(importer, store, semester, workbook_bytes):
    importer.commit(semester.id, workbook_bytes)
    entry = store.list_entries(semester.id)[0]
    store.set_cancelled(entry.id, True)

    importer.commit(semester.id, workbook_bytes)
    assert not any(e.cancelled for e in store.list_entries(semester.id))


def test_missing_wednesday_morning_is_rejected(importer, store, semester, workbook_bytes):
    importer.commit(semester.id, workbook_bytes)
    before = store.list_entries(semester.id)

    everyone_but_jade = ", ".join(c.full_name for c in CHILDREN if c.id != 9)
    wednesday = day_rows("Mercredi")
    wednesday[0][1] = f"Accueil – {everyone_but_jade}"
    broken = build_workbook(template({"Mercredi": wednesday}))

    outcome = importer.commit(semester.id, broken)
    assert outcome.status == "rejected"
    assert not outcome.ok
    assert len(outcome.problems) == 1
    problem = outcome.problems[0]
    assert problem.kind == IssueKind.MISSING_COVERAGE
    assert problem.subject == "Jade Simon"
    assert "morning" in problem.message and "Wednesday" in problem.message

    # Previous schedule and archive untouched
    assert store.list_entries(semester.id) == before
    assert store.get_workbook(semester.id)[1] == workbook_bytes


def test_unreadable_workbook_is_rejected(importer, semester):
    outcome = importer.preview(semester.id, b"not a workbook")
    assert outcome.status == "rejected"
    assert outcome.problems[0].kind == IssueKind.STRUCTURAL


def test_unknown_semester_propagates(importer, workbook_bytes):
    with pytest.raises(NotFoundError):
        importer.commit(404, workbook_bytes)
