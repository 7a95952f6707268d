"""Error hierarchy for the planning engine.

Errors are split into transient failures (safe to retry after re-reading
current state) and permanent failures (retrying cannot help). tenacity retry
decorators use this split to classify what they retry.

Example usage with tenacity:
    @retry(
        retry=retry_if_exception_type(ConcurrentModificationError),
        stop=stop_after_attempt(3),
    )
    def reassign_one(...):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from planning.models import ValidationIssue


class PlanningError(Exception):
    """Base exception for all planning errors."""

    pass


class TransientError(PlanningError):
    """Failure that may succeed once the caller re-reads current state."""

    pass


class ConflictError(TransientError):
    """The requested change conflicts with the current state.

    Examples: child not present on the source entry, child already on the
    target entry, semester still referenced by entries.
    """

    pass


class ConcurrentModificationError(ConflictError):
    """A concurrent writer changed the same rows first.

    Raised on optimistic version mismatches and database serialization
    failures. The only conflict retried automatically.
    """

    pass


class PermanentError(PlanningError):
    """Failure that won't succeed on retry."""

    pass


class StructuralInputError(PermanentError):
    """The workbook cannot be read as a weekly template.

    Examples: bytes are not a workbook, no weekday sheet, the same weekday
    appears on two sheets. Aborts parsing immediately.
    """

    pass


class CoverageValidationError(PermanentError):
    """The template is readable but incomplete or inconsistent.

    Carries every problem found so the operator can fix the workbook in one
    pass.
    """

    def __init__(self, issues: list["ValidationIssue"]) -> None:
        self.issues = list(issues)
        summary = "; ".join(issue.message for issue in self.issues[:5])
        more = len(self.issues) - 5
        if more > 0:
            summary += f" (+{more} more)"
        super().__init__(f"{len(self.issues)} validation issue(s): {summary}")


class NotFoundError(PermanentError):
    """A semester, entry, staff member or child id is not recognized."""

    pass


class ForbiddenError(PermanentError):
    """The caller may not read or change the requested schedule."""

    pass


class InvalidOperationError(PermanentError):
    """The request is malformed regardless of current state.

    Examples: source and target entries are the same, entries from two
    different semesters, semester ending before it starts.
    """

    pass


class OutOfRangeError(PermanentError):
    """A calendar computation left the representable date range."""

    pass
