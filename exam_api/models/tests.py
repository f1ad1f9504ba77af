"""Test definition Pydantic models."""
from datetime import datetime

from pydantic import BaseModel, Field

from exam_api.config import DEFAULT_MAX_ATTEMPTS, DEFAULT_PASSING_SCORE


class TestSection(BaseModel):
    """Ordered group of questions, optionally time-limited (minutes, 0 = none)."""

    name: str = Field(..., min_length=1)
    questionIds: list[str] = Field(default_factory=list)
    timeLimit: float = Field(0, ge=0)
    instructions: str = ""
    canGoBack: bool = True


class TestOptions(BaseModel):
    """Delivery and review options of a test."""

    randomizeQuestions: bool = False
    randomizeOptions: bool = False
    showResultsAfterCompletion: bool = True
    showSolutionsAfterCompletion: bool = False
    instantFeedback: bool = False
    allowReview: bool = True
    maxAttempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    passingScore: float = Field(DEFAULT_PASSING_SCORE, ge=0, le=100)


class TestScheduling(BaseModel):
    """Scheduling window; duration in minutes (0 = untimed)."""

    startTime: datetime | None = None
    endTime: datetime | None = None
    availableFrom: datetime | None = None
    duration: float = Field(0, ge=0)


class TestCreate(BaseModel):
    """Model for authoring a new test definition."""

    title: str = Field(..., min_length=1)
    mode: str = "anytime_mock"
    scheduling: TestScheduling = Field(default_factory=TestScheduling)
    sections: list[TestSection] = Field(default_factory=list)
    options: TestOptions = Field(default_factory=TestOptions)
    createdBy: str = "system"


class TestActionRequest(BaseModel):
    """Actor performing a manual lifecycle action."""

    actor: str = Field("system", min_length=1)


class ExtendTimeRequest(BaseModel):
    """Extra minutes granted to a live test."""

    minutes: float = Field(..., gt=0, allow_inf_nan=False)
    actor: str = Field("system", min_length=1)
