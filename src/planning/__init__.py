"""Weekly activity planning engine.

Imports a weekly template workbook, checks that every child is covered,
expands it into dated entries for a semester (skipping school and public
holidays) and supports cancellation and audited reassignment of children.
"""

from planning.db import Database
from planning.importer import ImportService
from planning.models import Caller, ImportOutcome, ScheduleEntry, Semester, TransferRecord
from planning.queries import GuardianshipLookup, QueryService
from planning.reassignment import ReassignmentEngine
from planning.store import ScheduleStore

__all__ = [
    "Database",
    "ImportService",
    "Caller",
    "ImportOutcome",
    "ScheduleEntry",
    "Semester",
    "TransferRecord",
    "GuardianshipLookup",
    "QueryService",
    "ReassignmentEngine",
    "ScheduleStore",
]
