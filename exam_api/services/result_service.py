"""Service layer for result computation, cohort ranking and test statistics."""
import csv
import io
import logging
import math
from bisect import bisect_left, bisect_right
from collections import Counter
from statistics import median
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_api.models.db.attempt import (
    AWAITING_GRADING_STATUSES,
    Attempt,
    AttemptAnswer,
    AttemptStatus,
    TERMINAL_STATUSES,
)
from exam_api.models.db.question import Question
from exam_api.models.results import AttemptResult, SectionScore, SubjectScore
from exam_api.models.tests import TestSection
from exam_api.services.grading_engine import is_objective
from exam_api.services.test_service import get_test

logger = logging.getLogger(__name__)

# Top-down, inclusive lower bounds
GRADE_BANDS = [
    (90, "A+"),
    (80, "A"),
    (70, "B"),
    (60, "C"),
    (50, "D"),
]
FAILING_GRADE = "F"

UNKNOWN_SUBJECT_ID = "unknown"
UNKNOWN_SUBJECT_NAME = "Unknown"


def grade_band(percentage: float) -> str:
    """Letter grade for a percentage."""
    for lower_bound, letter in GRADE_BANDS:
        if percentage >= lower_bound:
            return letter
    return FAILING_GRADE


def percent(obtained: float, total: float) -> float:
    """Percentage rounded to 2 dp; 0 when total is 0."""
    if total <= 0:
        return 0.0
    return round(obtained / total * 100, 2)


def compute_attempt_result(
    answers: Iterable[AttemptAnswer],
    sections: list[TestSection],
    questions_by_id: dict[str, Question],
    passing_score: float,
) -> AttemptResult:
    """
    Aggregate an attempt's answers into a result.

    Each answer lands in exactly one section bucket (by its section index)
    and exactly one subject bucket (by its question's subject). Ungraded
    answers count towards totals with zero marks obtained.
    """
    answers = list(answers)

    section_totals = {index: [0.0, 0.0] for index in range(len(sections))}
    subject_totals: dict[str, list] = {}
    objective_marks = 0.0
    subjective_marks = 0.0
    total_marks = 0.0
    marks_obtained = 0.0

    for answer in answers:
        awarded = answer.marks_awarded or 0.0
        total_marks += answer.max_marks
        marks_obtained += awarded

        bucket = section_totals.get(answer.section_index)
        if bucket is not None:
            bucket[0] += awarded
            bucket[1] += answer.max_marks

        question = questions_by_id.get(answer.question_id)
        subject_id = UNKNOWN_SUBJECT_ID
        subject_name = UNKNOWN_SUBJECT_NAME
        if question is not None and question.subject_id:
            subject_id = question.subject_id
            subject_name = question.subject_name or question.subject_id
        subject = subject_totals.setdefault(subject_id, [subject_name, 0.0, 0.0])
        subject[1] += awarded
        subject[2] += answer.max_marks

        if question is not None and is_objective(question.type):
            objective_marks += awarded
        else:
            subjective_marks += awarded

    section_scores = [
        SectionScore(
            sectionIndex=index,
            sectionName=section.name,
            marksObtained=round(section_totals[index][0], 2),
            totalMarks=round(section_totals[index][1], 2),
            percentage=percent(*section_totals[index]),
        )
        for index, section in enumerate(sections)
    ]
    subject_scores = [
        SubjectScore(
            subjectId=subject_id,
            subjectName=name,
            marksObtained=round(obtained, 2),
            totalMarks=round(total, 2),
            percentage=percent(obtained, total),
        )
        for subject_id, (name, obtained, total) in subject_totals.items()
    ]

    percentage = percent(marks_obtained, total_marks)
    return AttemptResult(
        totalMarks=round(total_marks, 2),
        marksObtained=round(marks_obtained, 2),
        percentage=percentage,
        grade=grade_band(percentage),
        rank=None,
        percentile=None,
        sectionScores=section_scores,
        subjectScores=subject_scores,
        objectiveMarks=round(objective_marks, 2),
        subjectiveMarks=round(subjective_marks, 2),
        isPassing=percentage >= passing_score,
    )


def rank_scores(scores: list[float]) -> list[tuple[int, float]]:
    """
    Rank scores (higher is better) and compute percentiles.

    Tied scores share a rank; rank = 1 + number of strictly higher scores,
    so {90, 90, 70} ranks as {1, 1, 3}. Percentile is the share of strictly
    lower scores, truncated to 2 dp so it stays in [0, 100).
    """
    total = len(scores)
    ordered = sorted(scores)
    ranked = []
    for score in scores:
        higher = total - bisect_right(ordered, score)
        lower = bisect_left(ordered, score)
        ranked.append((higher + 1, math.floor(lower * 10000 / total) / 100))
    return ranked


def rank_cohort(db: DBSession, test_id: str) -> int:
    """
    Populate rank and percentile for every graded attempt of a test.

    Works on the set of graded attempts read at the start of the pass;
    attempts graded afterwards are picked up by the next pass.
    """
    attempts = list(
        db.execute(
            select(Attempt).where(
                Attempt.test_id == test_id,
                Attempt.status == AttemptStatus.GRADED.value,
                Attempt.result_json.is_not(None),
            )
        ).scalars().all()
    )
    results = [(attempt, attempt.result) for attempt in attempts]
    results = [(attempt, result) for attempt, result in results if result is not None]
    if not results:
        return 0

    ranked = rank_scores([result.marksObtained for _, result in results])
    for (attempt, result), (rank, percentile) in zip(results, ranked):
        result.rank = rank
        result.percentile = percentile
        attempt.result = result

    db.commit()
    logger.info(f"Ranked {len(results)} graded attempts for test {test_id}")
    return len(results)


def get_test_stats(db: DBSession, test_id: str) -> dict[str, object]:
    """Aggregate attempt statistics for a test."""
    get_test(db, test_id)
    attempts = list(
        db.execute(select(Attempt).where(Attempt.test_id == test_id)).scalars().all()
    )

    results = [
        attempt.result
        for attempt in attempts
        if attempt.is_terminal and attempt.result is not None
    ]
    percentages = [result.percentage for result in results]
    status_counts = Counter(attempt.status for attempt in attempts)

    return {
        "testId": test_id,
        "totalAttempts": len(attempts),
        "inProgressCount": status_counts.get(AttemptStatus.IN_PROGRESS.value, 0),
        "completedCount": sum(status_counts.get(status, 0) for status in TERMINAL_STATUSES),
        "awaitingGradingCount": sum(
            status_counts.get(status, 0) for status in AWAITING_GRADING_STATUSES
        ),
        "gradedCount": status_counts.get(AttemptStatus.GRADED.value, 0),
        "averageScore": round(sum(percentages) / len(percentages), 2) if percentages else 0,
        "medianScore": round(median(percentages), 2) if percentages else 0,
        "highestScore": max(percentages) if percentages else 0,
        "lowestScore": min(percentages) if percentages else 0,
        "passRate": percent(sum(1 for result in results if result.isPassing), len(results)),
        "gradeDistribution": dict(Counter(result.grade for result in results)),
    }


def export_result_rows(db: DBSession, test_id: str) -> list[dict[str, object]]:
    """One row per graded attempt, ordered by rank."""
    get_test(db, test_id)
    attempts = db.execute(
        select(Attempt).where(
            Attempt.test_id == test_id,
            Attempt.status == AttemptStatus.GRADED.value,
        )
    ).scalars().all()

    rows = []
    for attempt in attempts:
        result = attempt.result
        if result is None:
            continue
        rows.append(
            {
                "studentId": attempt.student_id,
                "attemptNumber": attempt.attempt_number,
                "sectionScores": {
                    score.sectionIndex: score.marksObtained for score in result.sectionScores
                },
                "percentage": result.percentage,
                "grade": result.grade,
                "rank": result.rank,
            }
        )

    # Unranked rows go last
    rows.sort(key=lambda row: (row["rank"] is None, row["rank"] or 0, row["studentId"]))
    return rows


def render_results_csv(rows: list[dict[str, object]], section_names: list[str]) -> str:
    """Render export rows as CSV text."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(["Student", *section_names, "Percentage", "Grade", "Rank"])
    for row in rows:
        section_scores = row["sectionScores"]
        writer.writerow(
            [
                row["studentId"],
                *[section_scores.get(index, "") for index in range(len(section_names))],
                row["percentage"],
                row["grade"],
                "" if row["rank"] is None else row["rank"],
            ]
        )
    return buffer.getvalue()
