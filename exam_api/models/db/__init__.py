"""Database models."""
from exam_api.models.db.question import Question
from exam_api.models.db.online_test import OnlineTest, TestMode, TestStatus
from exam_api.models.db.attempt import (
    AWAITING_GRADING_STATUSES,
    TERMINAL_STATUSES,
    Attempt,
    AttemptAnswer,
    AttemptSectionProgress,
    AttemptStatus,
)

__all__ = [
    "Question",
    "OnlineTest",
    "TestMode",
    "TestStatus",
    "AWAITING_GRADING_STATUSES",
    "TERMINAL_STATUSES",
    "Attempt",
    "AttemptAnswer",
    "AttemptSectionProgress",
    "AttemptStatus",
]
