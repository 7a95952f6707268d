"""Read-side views of the schedule with access rules.

Access rules:
  - staff schedule: the staff member themself or a privileged role
  - child schedule: a guardian of the child or a privileged role
  - full semester schedule: privileged roles only
Privileged roles come from configuration (admin, director, secretary).
"""

from typing import Protocol

from planning.calendar import CalendarResolver
from planning.config import PlanningConfig
from planning.errors import CoverageValidationError, ForbiddenError, NotFoundError
from planning.logging import get_logger
from planning.models import (
    Caller,
    ClosureDay,
    IssueKind,
    ScheduleEntry,
    StaffMember,
    TransferRecord,
    ValidationIssue,
)
from planning.store import ScheduleStore

log = get_logger(__name__)


class GuardianshipLookup(Protocol):
    """Answers whether a user is a guardian of a child."""

    def is_guardian(self, user_id: str, child_id: int) -> bool: ...


class NoGuardianships:
    """Lookup for deployments without guardian accounts."""

    def is_guardian(self, user_id: str, child_id: int) -> bool:
        return False


class QueryService:
    def __init__(
        self,
        store: ScheduleStore,
        guardianships: GuardianshipLookup | None = None,
        *,
        calendar: CalendarResolver | None = None,
        config: PlanningConfig | None = None,
    ) -> None:
        self.store = store
        self.config = config or store.config
        self.guardianships = guardianships or NoGuardianships()
        self.calendar = calendar or CalendarResolver(
            self.config.holiday_region, self.config.school_zone
        )

    def _privileged(self, caller: Caller) -> bool:
        return caller.has_any_role(self.config.privileged_roles)

    def _deny(self, caller: Caller, view: str, subject) -> None:
        log.warning("schedule_access_denied", user_id=caller.user_id, view=view, subject=subject)
        raise ForbiddenError(f"User {caller.user_id!r} may not read the {view} schedule of {subject}")

    def staff_schedule(
        self,
        semester_id: int,
        staff_id: str,
        caller: Caller,
        *,
        include_cancelled: bool = True,
    ) -> list[ScheduleEntry]:
        """Entries led by one staff member, in chronological order.

        Raises:
            ForbiddenError: If the caller is neither that staff member nor privileged.
            NotFoundError: If the semester or staff member does not exist.
        """
        if caller.user_id != staff_id and not self._privileged(caller):
            self._deny(caller, "staff", staff_id)
        self.store.get_staff(staff_id)
        return self.store.list_entries(
            semester_id, staff_id=staff_id, include_cancelled=include_cancelled
        )

    def child_schedule(
        self,
        semester_id: int,
        child_id: int,
        caller: Caller,
        *,
        include_cancelled: bool = True,
    ) -> list[ScheduleEntry]:
        """Entries a child attends, in chronological order.

        Raises:
            ForbiddenError: If the caller is neither a guardian nor privileged.
            NotFoundError: If the semester or child does not exist.
        """
        if not self._privileged(caller) and not self.guardianships.is_guardian(
            caller.user_id, child_id
        ):
            self._deny(caller, "child", child_id)
        self.store.get_child(child_id)
        return self.store.list_entries(
            semester_id, child_id=child_id, include_cancelled=include_cancelled
        )

    def semester_schedule(
        self, semester_id: int, caller: Caller, *, include_cancelled: bool = True
    ) -> list[ScheduleEntry]:
        if not self._privileged(caller):
            self._deny(caller, "semester", semester_id)
        return self.store.list_entries(semester_id, include_cancelled=include_cancelled)

    def transfer_history(self, entry_id: int) -> list[TransferRecord]:
        """Transfers into or out of an entry, oldest first.

        Records outlive their entries after a re-import, so history is still
        returned for an entry that no longer exists.

        Raises:
            NotFoundError: If the entry never existed and has no history.
        """
        records = self.store.list_transfers(entry_id)
        if not records and not self.store.entry_exists(entry_id):
            raise NotFoundError(f"Schedule entry {entry_id} not found")
        return records

    def closures(self, semester_id: int) -> list[ClosureDay]:
        """School days of the semester without activities."""
        semester = self.store.get_semester(semester_id)
        return self.calendar.closures(semester.start_date, semester.end_date)

    def missing_staff(self, semester_id: int) -> list[StaffMember]:
        """Known staff members without any entry in the semester."""
        self.store.get_semester(semester_id)
        scheduled = self.store.staff_with_entries(semester_id)
        return [member for member in self.store.list_staff() if member.id not in scheduled]

    def check_submission(self, semester_id: int) -> None:
        """Confirm every staff member has a schedule before it is published.

        Raises:
            CoverageValidationError: Listing each staff member without entries.
        """
        missing = self.missing_staff(semester_id)
        if missing:
            raise CoverageValidationError(
                [
                    ValidationIssue(
                        kind=IssueKind.MISSING_STAFF,
                        message=f"{member.full_name} has no schedule entries",
                        subject=member.full_name,
                    )
                    for member in missing
                ]
            )
        log.info("schedule_submission_checked", semester_id=semester_id)
