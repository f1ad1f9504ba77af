"""Automatic grading of a single answer per question type.

``grade`` is a pure function: the same (type, answer, content, marks)
always produces the same outcome. It returns ``None`` for answers that
cannot be graded automatically (subjective or unknown types, malformed
content), which routes them to manual grading.
"""
import math
from dataclasses import dataclass
from typing import Any

from exam_api.models.questions import (
    OBJECTIVE_TYPES,
    FillInBlankContent,
    MatchTheColumnContent,
    MultipleChoiceContent,
    NumericalContent,
    QuestionContent,
    SingleChoiceContent,
    SubjectiveContent,
    TrueFalseContent,
    parse_content,
)


@dataclass(frozen=True)
class GradeResult:
    is_correct: bool
    marks_awarded: float


@dataclass(frozen=True)
class Feedback:
    """Read-only grading outcome shown to a student during review."""

    is_correct: bool | None
    marks_awarded: float | None
    correct_answer: Any
    solution: str
    explanation: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "isCorrect": self.is_correct,
            "marksAwarded": self.marks_awarded,
            "correctAnswer": self.correct_answer,
            "solution": self.solution,
            "explanation": self.explanation,
        }


def is_objective(question_type: str) -> bool:
    """Whether a question type is auto-gradable."""
    return question_type in OBJECTIVE_TYPES


def is_manually_graded(question_type: str) -> bool:
    """Subjective and unrecognized types go to a teacher."""
    return not is_objective(question_type)


def grade(
    question_type: str,
    student_answer: Any,
    content: dict[str, Any],
    max_marks: float,
) -> GradeResult | None:
    """Grade one answer. None means ungradable."""
    parsed = parse_content(question_type, content)
    if parsed is None or isinstance(parsed, SubjectiveContent):
        return None
    return _grade_parsed(parsed, student_answer, max_marks)


def grade_for_feedback(
    question_type: str,
    student_answer: Any,
    content: dict[str, Any],
    max_marks: float,
) -> Feedback:
    """Grade in feedback mode: adds the correct answer and solution text."""
    solution = content.get("solution") if isinstance(content, dict) else None
    explanation = content.get("explanation") if isinstance(content, dict) else None
    parsed = parse_content(question_type, content)

    outcome = None
    correct_answer = None
    if parsed is not None and not isinstance(parsed, SubjectiveContent):
        outcome = _grade_parsed(parsed, student_answer, max_marks)
        correct_answer = _correct_answer(parsed)

    return Feedback(
        is_correct=outcome.is_correct if outcome else None,
        marks_awarded=outcome.marks_awarded if outcome else None,
        correct_answer=correct_answer,
        solution=solution if isinstance(solution, str) else "",
        explanation=explanation if isinstance(explanation, str) else "",
    )


def _grade_parsed(
    content: QuestionContent, student_answer: Any, max_marks: float
) -> GradeResult:
    if student_answer is None:
        return GradeResult(False, 0)

    if isinstance(content, SingleChoiceContent):
        return _all_or_nothing(
            _is_index(student_answer) and student_answer == content.correctOptionIndex,
            max_marks,
        )
    if isinstance(content, MultipleChoiceContent):
        return _grade_multiple_choice(student_answer, content, max_marks)
    if isinstance(content, TrueFalseContent):
        return _all_or_nothing(_to_bool(student_answer) == content.correctAnswer, max_marks)
    if isinstance(content, FillInBlankContent):
        return _grade_fill_in_blank(student_answer, content, max_marks)
    if isinstance(content, NumericalContent):
        return _grade_numerical(student_answer, content, max_marks)
    if isinstance(content, MatchTheColumnContent):
        return _grade_match_the_column(student_answer, content, max_marks)
    raise TypeError(f"No grading rule for {type(content).__name__}")


def _all_or_nothing(is_correct: bool, max_marks: float) -> GradeResult:
    return GradeResult(is_correct, max_marks if is_correct else 0)


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _to_bool(value: Any) -> bool:
    # "false"/"true" strings arrive from form posts
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return bool(value)


def _grade_multiple_choice(
    student_answer: Any, content: MultipleChoiceContent, max_marks: float
) -> GradeResult:
    if not isinstance(student_answer, (list, tuple)):
        return GradeResult(False, 0)
    if not all(_is_index(item) for item in student_answer):
        return GradeResult(False, 0)
    return _all_or_nothing(
        set(student_answer) == set(content.correctOptionIndices), max_marks
    )


def _normalize_text(value: Any) -> str:
    return str(value).strip().lower()


def _grade_fill_in_blank(
    student_answer: Any, content: FillInBlankContent, max_marks: float
) -> GradeResult:
    submitted = _normalize_text(student_answer)
    if content.acceptedAnswers is not None:
        accepted = {_normalize_text(item) for item in content.acceptedAnswers}
    else:
        accepted = {_normalize_text(content.correctAnswer)}
    return _all_or_nothing(submitted in accepted, max_marks)


def _grade_numerical(
    student_answer: Any, content: NumericalContent, max_marks: float
) -> GradeResult:
    if isinstance(student_answer, bool):
        return GradeResult(False, 0)
    try:
        submitted = float(student_answer)
    except (TypeError, ValueError):
        return GradeResult(False, 0)
    if math.isnan(submitted) or math.isnan(content.correctAnswer):
        return GradeResult(False, 0)
    return _all_or_nothing(
        abs(submitted - content.correctAnswer) <= content.tolerance, max_marks
    )


def _grade_match_the_column(
    student_answer: Any, content: MatchTheColumnContent, max_marks: float
) -> GradeResult:
    total_pairs = len(content.correctPairs)
    if not isinstance(student_answer, dict) or total_pairs == 0:
        return GradeResult(False, 0)

    correct_pairs = sum(
        1
        for left, right in content.correctPairs.items()
        if student_answer.get(left) == right
    )
    marks = round(correct_pairs / total_pairs * max_marks, 2)
    return GradeResult(correct_pairs == total_pairs, marks)


def _correct_answer(content: QuestionContent) -> Any:
    if isinstance(content, SingleChoiceContent):
        return content.correctOptionIndex
    if isinstance(content, MultipleChoiceContent):
        return sorted(content.correctOptionIndices)
    if isinstance(content, TrueFalseContent):
        return content.correctAnswer
    if isinstance(content, FillInBlankContent):
        return content.acceptedAnswers if content.acceptedAnswers is not None else content.correctAnswer
    if isinstance(content, NumericalContent):
        return content.correctAnswer
    if isinstance(content, MatchTheColumnContent):
        return content.correctPairs
    return None
