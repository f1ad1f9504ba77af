"""Pydantic models."""
from exam_api.models.attempts import AnswerSubmission, FlagRequest, StartAttemptRequest
from exam_api.models.grading import (
    BulkGradeEntry,
    BulkGradeRequest,
    FinalizeRequest,
    GradeAnswerRequest,
)
from exam_api.models.questions import QuestionCreate
from exam_api.models.results import AttemptResult, SectionScore, SubjectScore
from exam_api.models.tests import (
    ExtendTimeRequest,
    TestActionRequest,
    TestCreate,
    TestOptions,
    TestSection,
)

__all__ = [
    "AnswerSubmission",
    "FlagRequest",
    "StartAttemptRequest",
    "BulkGradeEntry",
    "BulkGradeRequest",
    "FinalizeRequest",
    "GradeAnswerRequest",
    "QuestionCreate",
    "AttemptResult",
    "SectionScore",
    "SubjectScore",
    "ExtendTimeRequest",
    "TestActionRequest",
    "TestCreate",
    "TestOptions",
    "TestSection",
]
