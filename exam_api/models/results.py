"""Computed result models embedded in attempts."""
from pydantic import BaseModel, Field


class SectionScore(BaseModel):
    sectionIndex: int
    sectionName: str
    marksObtained: float = 0
    totalMarks: float = 0
    percentage: float = 0


class SubjectScore(BaseModel):
    subjectId: str
    subjectName: str
    marksObtained: float = 0
    totalMarks: float = 0
    percentage: float = 0


class AttemptResult(BaseModel):
    """Result of one attempt. Rank and percentile stay null until a cohort pass."""

    totalMarks: float
    marksObtained: float
    percentage: float
    grade: str
    rank: int | None = None
    percentile: float | None = None
    sectionScores: list[SectionScore] = Field(default_factory=list)
    subjectScores: list[SubjectScore] = Field(default_factory=list)
    objectiveMarks: float = 0
    subjectiveMarks: float = 0
    isPassing: bool
