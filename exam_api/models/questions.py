"""Question bank payloads.

Question content is a tagged union keyed by question type. Each variant
carries exactly the fields its grading rule needs, so the grading engine
works on typed values instead of probing a loose dict.
"""
import enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator


class QuestionType(str, enum.Enum):
    """Known question types."""

    MCQ_SINGLE = "mcq_single"
    MCQ_MULTIPLE = "mcq_multiple"
    TRUE_FALSE = "true_false"
    FILL_IN_BLANK = "fill_in_blank"
    NUMERICAL = "numerical"
    MATCH_THE_COLUMN = "match_the_column"
    SHORT_ANSWER = "short_answer"
    LONG_ANSWER = "long_answer"
    ESSAY = "essay"
    CREATIVE_WRITING = "creative_writing"


OBJECTIVE_TYPES = frozenset(
    {
        QuestionType.MCQ_SINGLE.value,
        QuestionType.MCQ_MULTIPLE.value,
        QuestionType.TRUE_FALSE.value,
        QuestionType.FILL_IN_BLANK.value,
        QuestionType.NUMERICAL.value,
        QuestionType.MATCH_THE_COLUMN.value,
    }
)

SUBJECTIVE_TYPES = frozenset(
    {
        QuestionType.SHORT_ANSWER.value,
        QuestionType.LONG_ANSWER.value,
        QuestionType.ESSAY.value,
        QuestionType.CREATIVE_WRITING.value,
    }
)

# Content keys never sent to a student while the attempt is open
ANSWER_KEY_FIELDS = frozenset(
    {
        "correctOptionIndex",
        "correctOptionIndices",
        "correctAnswer",
        "acceptedAnswers",
        "correctPairs",
        "solution",
        "explanation",
    }
)


class _ContentBase(BaseModel):
    model_config = ConfigDict(extra="allow")

    body: str | None = None
    solution: str | None = None
    explanation: str | None = None


class SingleChoiceContent(_ContentBase):
    type: Literal["mcq_single"]
    options: list[Any] = Field(default_factory=list)
    correctOptionIndex: int


class MultipleChoiceContent(_ContentBase):
    type: Literal["mcq_multiple"]
    options: list[Any] = Field(default_factory=list)
    correctOptionIndices: list[int]


class TrueFalseContent(_ContentBase):
    type: Literal["true_false"]
    correctAnswer: bool


class FillInBlankContent(_ContentBase):
    type: Literal["fill_in_blank"]
    correctAnswer: str | None = None
    acceptedAnswers: list[str] | None = None

    @model_validator(mode="after")
    def _require_an_answer(self) -> "FillInBlankContent":
        if self.acceptedAnswers is None and self.correctAnswer is None:
            raise ValueError("fill_in_blank needs correctAnswer or acceptedAnswers")
        return self


class NumericalContent(_ContentBase):
    type: Literal["numerical"]
    correctAnswer: float
    tolerance: float = Field(0.0, ge=0)


class MatchTheColumnContent(_ContentBase):
    type: Literal["match_the_column"]
    correctPairs: dict[str, str]


class SubjectiveContent(_ContentBase):
    type: Literal["short_answer", "long_answer", "essay", "creative_writing"]


QuestionContent = Annotated[
    Union[
        SingleChoiceContent,
        MultipleChoiceContent,
        TrueFalseContent,
        FillInBlankContent,
        NumericalContent,
        MatchTheColumnContent,
        SubjectiveContent,
    ],
    Field(discriminator="type"),
]

_content_adapter = TypeAdapter(QuestionContent)


def parse_content(question_type: str, content: object) -> QuestionContent | None:
    """Validate raw content for a question type; None when unknown or malformed."""
    if not isinstance(content, dict):
        return None
    try:
        return _content_adapter.validate_python({**content, "type": question_type})
    except ValidationError:
        return None


def sanitize_content(content: dict[str, Any]) -> dict[str, Any]:
    """Strip answer keys and solutions from raw content."""
    return {key: value for key, value in content.items() if key not in ANSWER_KEY_FIELDS}


class QuestionCreate(BaseModel):
    """Model for adding a question to the bank."""

    type: str = Field(..., min_length=1)
    content: dict[str, Any] = Field(default_factory=dict)
    marks: float = Field(1.0, ge=0)
    subjectId: str | None = None
    subjectName: str | None = None
