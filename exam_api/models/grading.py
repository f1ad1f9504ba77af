"""Manual grading Pydantic models."""
from pydantic import BaseModel, Field


class GradeAnswerRequest(BaseModel):
    """Teacher mark for one answer."""

    attemptId: str = Field(..., min_length=1)
    questionId: str = Field(..., min_length=1)
    marks: float = Field(..., allow_inf_nan=False)
    feedback: str = ""
    gradedBy: str = Field(..., min_length=1)


class BulkGradeEntry(BaseModel):
    attemptId: str = Field(..., min_length=1)
    marks: float = Field(..., allow_inf_nan=False)
    feedback: str = ""


class BulkGradeRequest(BaseModel):
    """Marks for one question across many attempts."""

    questionId: str = Field(..., min_length=1)
    grades: list[BulkGradeEntry]
    gradedBy: str = Field(..., min_length=1)


class FinalizeRequest(BaseModel):
    gradedBy: str = Field(..., min_length=1)
