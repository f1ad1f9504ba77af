"""Error kinds surfaced by the attempt, grading and scheduling services.

Each kind is an ``HTTPException`` so services can raise it directly and
the route layer needs no translation. ``kind`` is rendered next to the
message by the handler registered in ``exam_api.app``.
"""
from fastapi import HTTPException


class AssessmentError(HTTPException):
    """Base class for domain errors with an explicit kind."""

    kind = "error"
    status = 400

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status, detail=detail)


class NotFound(AssessmentError):
    """Attempt, test, question or answer does not exist."""

    kind = "not_found"
    status = 404


class Conflict(AssessmentError):
    """The requested transition is illegal for the current state."""

    kind = "conflict"
    status = 409


class SchedulingConflict(Conflict):
    """Action attempted outside the test's live/available window."""

    kind = "scheduling_conflict"
