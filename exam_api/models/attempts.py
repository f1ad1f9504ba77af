"""Attempt-related Pydantic models."""
from typing import Any

from pydantic import BaseModel, Field


class StartAttemptRequest(BaseModel):
    """Model for starting an attempt."""

    studentId: str = Field(..., min_length=1)


class AnswerSubmission(BaseModel):
    """Model for saving one answer (last write wins)."""

    questionId: str = Field(..., min_length=1)
    answer: Any = None
    timeSpent: int = Field(0, ge=0)


class FlagRequest(BaseModel):
    """Model for toggling the review flag of a question."""

    questionId: str = Field(..., min_length=1)
    flagged: bool = True
