"""
Operator command line for the planning engine.

Results are printed to stdout as JSON; logs and errors go to stderr.

Usage:
    planning-admin init-db
    planning-admin load-roster data/roster.json
    planning-admin create-semester --name "Automne 2025" --start 2025-09-01 --end 2025-12-20
    planning-admin preview 1 planning.xlsx
    planning-admin import 1 planning.xlsx
    planning-admin reassign 12 40 --child 7 --actor secretary-1
    planning-admin reactivate 12 --restore

Configuration comes from PLANNING_* environment variables or a .env file
(see planning.config).
"""

import argparse
import json
import sys
from datetime import date
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from planning.config import get_config
from planning.db import Database
from planning.errors import CoverageValidationError, PlanningError
from planning.importer import ImportService
from planning.logging import get_logger, setup_logging
from planning.models import Caller, Child, StaffMember
from planning.queries import QueryService
from planning.reassignment import ReassignmentEngine
from planning.school_calendar import resolver_from_config
from planning.store import ScheduleStore

log = get_logger(__name__)

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_REJECTED = 2


def _emit(result) -> None:
    if isinstance(result, BaseModel):
        payload = result.model_dump(mode="json")
    elif isinstance(result, list):
        payload = [
            item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            for item in result
        ]
    else:
        payload = result
    json.dump(payload, sys.stdout, ensure_ascii=False, indent=2)
    sys.stdout.write("\n")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="planning-admin",
        description="Import, inspect and adjust weekly activity schedules",
    )
    parser.add_argument("--database", help="Database URL (overrides PLANNING_DATABASE_URL)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("init-db", help="Create missing tables")

    roster = commands.add_parser("load-roster", help="Upsert staff and children from JSON")
    roster.add_argument("path", type=Path, help='{"staff": [...], "children": [...]}')

    semester = commands.add_parser("create-semester", help="Create a semester")
    semester.add_argument("--name", required=True)
    semester.add_argument("--start", required=True, type=date.fromisoformat)
    semester.add_argument("--end", required=True, type=date.fromisoformat)

    commands.add_parser("semesters", help="List semesters")

    for name, help_text in (
        ("preview", "Expand a workbook without saving"),
        ("import", "Replace a semester's schedule with a workbook"),
    ):
        sub = commands.add_parser(name, help=help_text)
        sub.add_argument("semester_id", type=int)
        sub.add_argument("workbook", type=Path)
        sub.add_argument(
            "--entries",
            action="store_true",
            help="Include every expanded entry in the output",
        )

    download = commands.add_parser("download", help="Write the last imported workbook")
    download.add_argument("semester_id", type=int)
    download.add_argument("--output", type=Path, help="Defaults to the original filename")

    schedule = commands.add_parser("schedule", help="List a semester's entries")
    schedule.add_argument("semester_id", type=int)
    who = schedule.add_mutually_exclusive_group()
    who.add_argument("--staff", help="Only entries led by this staff id")
    who.add_argument("--child", type=int, help="Only entries attended by this child id")
    schedule.add_argument("--active", action="store_true", help="Hide cancelled entries")

    closures = commands.add_parser("closures", help="List closed school days")
    closures.add_argument("semester_id", type=int)

    submit = commands.add_parser("submit", help="Check every staff member has entries")
    submit.add_argument("semester_id", type=int)

    cancel = commands.add_parser("cancel", help="Cancel an entry")
    cancel.add_argument("entry_id", type=int)

    reactivate = commands.add_parser("reactivate", help="Reactivate a cancelled entry")
    reactivate.add_argument("entry_id", type=int)
    reactivate.add_argument(
        "--restore",
        action="store_true",
        help="Also move back children transferred away from the entry",
    )
    reactivate.add_argument("--actor", help="User id recorded on transfers")

    reassign = commands.add_parser("reassign", help="Move children to another entry")
    reassign.add_argument("source_id", type=int)
    reassign.add_argument("target_id", type=int)
    reassign.add_argument("--child", type=int, help="Move only this child")
    reassign.add_argument("--actor", help="User id recorded on transfers")
    reassign.add_argument(
        "--cancel-source",
        action="store_true",
        help="Cancel the source entry once emptied (all children only)",
    )

    alternatives = commands.add_parser("alternatives", help="Suggest entries to move children to")
    alternatives.add_argument("entry_id", type=int)

    history = commands.add_parser("history", help="Transfer history of an entry")
    history.add_argument("entry_id", type=int)

    return parser


def _load_roster(store: ScheduleStore, path: Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    staff = [StaffMember(**item) for item in data.get("staff", [])]
    children = [Child(**item) for item in data.get("children", [])]
    return {
        "staff": store.upsert_staff(staff),
        "children": store.upsert_children(children),
    }


def run(args: argparse.Namespace) -> int:
    config = get_config()
    if args.database:
        config = config.model_copy(update={"database_url": args.database})

    db = Database(config.database_url)
    db.create_all()
    store = ScheduleStore(db, config)
    # The CLI is an operator tool: it reads with the first privileged role
    operator = Caller(user_id="cli", roles=frozenset(config.privileged_roles[:1]))

    try:
        if args.command == "init-db":
            _emit({"database": db.dialect, "status": "ready"})
        elif args.command == "load-roster":
            _emit(_load_roster(store, args.path))
        elif args.command == "create-semester":
            _emit(store.create_semester(args.name, args.start, args.end))
        elif args.command == "semesters":
            _emit(store.list_semesters())
        elif args.command in ("preview", "import"):
            importer = ImportService(store, calendar=resolver_from_config(config), config=config)
            workbook = args.workbook.read_bytes()
            if args.command == "preview":
                outcome = importer.preview(args.semester_id, workbook)
            else:
                outcome = importer.commit(
                    args.semester_id, workbook, filename=args.workbook.name
                )
            if not args.entries:
                outcome = outcome.model_copy(update={"entries": []})
            _emit(outcome)
            return EXIT_OK if outcome.ok else EXIT_REJECTED
        elif args.command == "download":
            filename, content = store.get_workbook(args.semester_id)
            output = args.output or Path(filename or f"semester-{args.semester_id}.xlsx")
            output.write_bytes(content)
            _emit({"path": str(output), "bytes": len(content)})
        elif args.command == "schedule":
            queries = QueryService(store, config=config)
            include_cancelled = not args.active
            if args.staff:
                entries = queries.staff_schedule(
                    args.semester_id, args.staff, operator, include_cancelled=include_cancelled
                )
            elif args.child is not None:
                entries = queries.child_schedule(
                    args.semester_id, args.child, operator, include_cancelled=include_cancelled
                )
            else:
                entries = queries.semester_schedule(
                    args.semester_id, operator, include_cancelled=include_cancelled
                )
            _emit(entries)
        elif args.command == "closures":
            queries = QueryService(store, calendar=resolver_from_config(config), config=config)
            _emit(queries.closures(args.semester_id))
        elif args.command == "submit":
            QueryService(store, config=config).check_submission(args.semester_id)
            _emit({"semester_id": args.semester_id, "status": "complete"})
        elif args.command == "cancel":
            _emit(store.set_cancelled(args.entry_id, True))
        elif args.command == "reactivate":
            entry = store.set_cancelled(args.entry_id, False)
            restored = []
            if args.restore:
                restored = ReassignmentEngine(store).restore_children(
                    args.entry_id, actor_id=args.actor
                )
                entry = store.get_entry(args.entry_id)
            _emit(
                {
                    "entry": entry.model_dump(mode="json"),
                    "restored": [record.model_dump(mode="json") for record in restored],
                }
            )
        elif args.command == "reassign":
            engine = ReassignmentEngine(store)
            if args.child is not None:
                _emit(
                    [
                        engine.reassign_one(
                            args.source_id, args.child, args.target_id, actor_id=args.actor
                        )
                    ]
                )
            else:
                _emit(
                    engine.reassign_all(
                        args.source_id,
                        args.target_id,
                        actor_id=args.actor,
                        cancel_source=args.cancel_source,
                    )
                )
        elif args.command == "alternatives":
            _emit(ReassignmentEngine(store).find_alternatives(args.entry_id))
        elif args.command == "history":
            _emit(QueryService(store, config=config).transfer_history(args.entry_id))
    except CoverageValidationError as exc:
        _emit({"status": "rejected", "problems": [i.model_dump(mode="json") for i in exc.issues]})
        return EXIT_REJECTED
    except PlanningError as exc:
        log.error("command_failed", command=args.command, error_type=type(exc).__name__)
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR
    finally:
        db.dispose()

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = get_config()
    setup_logging(config.log_json, "DEBUG" if args.verbose else config.log_level)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
