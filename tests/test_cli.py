import json

import pytest
import structlog
from conftest import CHILDREN, STAFF, build_workbook, template

from planning import cli


@pytest.fixture
def run(tmp_path, monkeypatch, capsys):
    # Keep log lines out of the captured JSON output
    monkeypatch.setattr(cli, "setup_logging", lambda *args, **kwargs: None)
    url = f"sqlite:///{tmp_path / 'cli.db'}"

    def invoke(*argv):
        code = cli.main(["--database", url, *argv])
        out = capsys.readouterr().out
        return code, json.loads(out) if out.strip() else None

    with structlog.testing.capture_logs():
        yield invoke


@pytest.fixture
def loaded(run, tmp_path):
    roster = tmp_path / "roster.json"
    roster.write_text(
        json.dumps(
            {
                "staff": [s.model_dump() for s in STAFF],
                "children": [c.model_dump() for c in CHILDREN],
            }
        ),
        encoding="utf-8",
    )
    assert run("init-db")[0] == 0
    assert run("load-roster", str(roster)) == (0, {"staff": 5, "children": 10})
    code, semester = run(
        "create-semester", "--name", "Automne 2025", "--start", "2025-09-01", "--end", "2025-12-20"
    )
    assert code == 0
    return semester


def test_import_then_inspect(run, loaded, tmp_path):
    workbook = tmp_path / "automne.xlsx"
    workbook.write_bytes(build_workbook(template()))
    semester_id = str(loaded["id"])

    code, outcome = run("preview", semester_id, str(workbook))
    assert code == 0
    assert outcome["status"] == "previewed"
    assert outcome["entries"] == []

    code, outcome = run("import", semester_id, str(workbook))
    assert (code, outcome["status"], outcome["entry_count"]) == (0, "imported", 455)

    code, semesters = run("semesters")
    assert [s["name"] for s in semesters] == ["Automne 2025"]

    code, entries = run("schedule", semester_id, "--staff", "s2")
    assert code == 0
    assert {e["staff_id"] for e in entries} == {"s2"}

    code, closures = run("closures", semester_id)
    assert {"day": "2025-11-11", "label": "Jour férié"} in closures

    assert run("submit", semester_id) == (0, {"semester_id": loaded["id"], "status": "complete"})

    output = tmp_path / "copy.xlsx"
    code, written = run("download", semester_id, "--output", str(output))
    assert code == 0 and written["bytes"] == output.stat().st_size
    assert output.read_bytes() == workbook.read_bytes()


def test_reassign_cancel_and_restore(run, loaded, tmp_path):
    workbook = tmp_path / "automne.xlsx"
    workbook.write_bytes(build_workbook(template()))
    semester_id = str(loaded["id"])
    run("import", semester_id, str(workbook))

    _, monday = run("schedule", semester_id, "--staff", "s2")
    _, motricite = run("schedule", semester_id, "--staff", "s5")
    source, target = monday[0], motricite[1]

    code, records = run("reassign", str(source["id"]), str(target["id"]), "--child", "7")
    assert code == 0 and [r["child_id"] for r in records] == [7]

    code, history = run("history", str(source["id"]))
    assert [r["target_entry_id"] for r in history] == [target["id"]]

    code, cancelled = run("cancel", str(source["id"]))
    assert cancelled["cancelled"] is True

    code, result = run("reactivate", str(source["id"]), "--restore")
    assert code == 0
    assert result["entry"]["cancelled"] is False
    assert sorted(c["id"] for c in result["entry"]["children"]) == [7, 8]
    assert [r["child_id"] for r in result["restored"]] == [7]

    code, alternatives = run("alternatives", str(source["id"]))
    assert code == 0
    assert all(a["activity"] == "Piscine" for a in alternatives)


def test_rejected_import_exits_with_problems(run, loaded, tmp_path):
    sheets = template()
    sheets["Lundi"][0][1] = "Accueil sans tiret"
    workbook = tmp_path / "broken.xlsx"
    workbook.write_bytes(build_workbook(sheets))

    code, outcome = run("import", str(loaded["id"]), str(workbook))
    assert code == cli.EXIT_REJECTED
    assert outcome["status"] == "rejected"
    assert outcome["problems"]


def test_unknown_ids_fail(run, loaded):
    code, _ = run("cancel", "424242")
    assert code == cli.EXIT_ERROR
