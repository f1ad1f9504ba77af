"""Service layer for teacher grading of submitted attempts."""
import logging
import math
from datetime import datetime
from typing import Any

from fastapi import HTTPException
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session as DBSession

from exam_api.errors import Conflict, NotFound
from exam_api.models.db.attempt import (
    AWAITING_GRADING_STATUSES,
    Attempt,
    AttemptAnswer,
    AttemptStatus,
)
from exam_api.models.grading import BulkGradeEntry
from exam_api.services import question_service, result_service
from exam_api.services.attempt_service import get_attempt
from exam_api.services.events import LifecycleEvents
from exam_api.services.test_service import get_test
from exam_api.utils.time_utils import isoformat, utc_now

logger = logging.getLogger(__name__)


def _pending_attempts(db: DBSession, test_id: str) -> list[Attempt]:
    return list(
        db.execute(
            select(Attempt)
            .where(
                Attempt.test_id == test_id,
                Attempt.status.in_(AWAITING_GRADING_STATUSES),
            )
            .order_by(Attempt.submitted_at)
        ).scalars().all()
    )


def get_ungraded_answers(
    db: DBSession,
    test_id: str,
    question_id: str | None = None,
    section_index: int | None = None,
) -> list[dict[str, Any]]:
    """
    Answers awaiting a teacher mark, grouped by question.

    Covers every answer of a submitted or auto-submitted attempt whose marks
    are still null: subjective questions plus objective questions whose
    content could not be graded automatically.
    """
    test = get_test(db, test_id)
    groups: dict[str, list[dict[str, Any]]] = {}

    for attempt in _pending_attempts(db, test_id):
        for entry in attempt.answers:
            if entry.marks_awarded is not None:
                continue
            if question_id and entry.question_id != question_id:
                continue
            if section_index is not None and entry.section_index != section_index:
                continue
            groups.setdefault(entry.question_id, []).append(
                {
                    "attemptId": attempt.id,
                    "studentId": attempt.student_id,
                    "answer": entry.answer,
                    "maxMarks": entry.max_marks,
                    "timeSpent": entry.time_spent,
                    "submittedAt": isoformat(attempt.submitted_at),
                }
            )

    questions = question_service.get_questions_by_ids(db, groups.keys())
    # Questions in test order
    order = {qid: position for position, qid in enumerate(test.question_ids)}
    payload = []
    for qid in sorted(groups, key=lambda item: order.get(item, len(order))):
        question = questions.get(qid)
        payload.append(
            {
                "questionId": qid,
                "sectionIndex": test.section_index_of(qid),
                "question": (
                    question_service.serialize_question(question, include_answer_key=True)
                    if question
                    else None
                ),
                "answers": groups[qid],
            }
        )
    return payload


def _clamp(marks: float, max_marks: float) -> float:
    if not math.isfinite(marks):
        raise HTTPException(status_code=400, detail="Marks must be a finite number")
    return min(max(marks, 0.0), max_marks)


def _apply_mark(entry: AttemptAnswer, marks: float, feedback: str) -> None:
    entry.marks_awarded = _clamp(marks, entry.max_marks)
    entry.is_correct = entry.marks_awarded > 0
    entry.feedback = feedback or ""


def _refresh_result(db: DBSession, attempt: Attempt) -> None:
    """Recompute the stored result so it reflects the latest marks."""
    test = get_test(db, attempt.test_id)
    answers = list(attempt.answers)
    questions = question_service.get_questions_by_ids(
        db, [entry.question_id for entry in answers]
    )
    attempt.result = result_service.compute_attempt_result(
        answers, test.sections, questions, test.options.passingScore
    )


def grade_answer(
    db: DBSession,
    attempt_id: str,
    question_id: str,
    marks: float,
    feedback: str,
    graded_by: str,
    test_id: str | None = None,
) -> dict[str, Any]:
    """
    Record a teacher's marks for one answer.

    Marks are clamped to [0, maxMarks]; any positive mark counts as correct.
    """
    attempt = get_attempt(db, attempt_id)
    if test_id and attempt.test_id != test_id:
        raise NotFound("Attempt not found")
    if attempt.status == AttemptStatus.IN_PROGRESS.value:
        raise Conflict("Attempt has not been submitted yet")
    if attempt.status == AttemptStatus.GRADED.value:
        raise Conflict("Attempt is already graded")

    entry = attempt.answer_for(question_id)
    if entry is None:
        raise NotFound("Answer not found")

    _apply_mark(entry, marks, feedback)
    _refresh_result(db, attempt)
    db.commit()
    db.refresh(entry)

    logger.info(
        f"{graded_by} graded question {question_id} of attempt {attempt_id}: "
        f"{entry.marks_awarded}/{entry.max_marks}"
    )
    return {
        "attemptId": attempt_id,
        "questionId": question_id,
        "marksAwarded": entry.marks_awarded,
        "maxMarks": entry.max_marks,
        "isCorrect": entry.is_correct,
        "feedback": entry.feedback,
    }


def bulk_grade_question(
    db: DBSession,
    test_id: str,
    question_id: str,
    grades: list[BulkGradeEntry],
    graded_by: str,
) -> int:
    """Grade one question across many attempts. Returns the number graded."""
    get_test(db, test_id)
    graded = 0
    touched: dict[str, Attempt] = {}

    for item in grades:
        attempt = db.get(Attempt, item.attemptId)
        if (
            attempt is None
            or attempt.test_id != test_id
            or attempt.status not in AWAITING_GRADING_STATUSES
        ):
            logger.debug(f"Skipping bulk grade for attempt {item.attemptId}")
            continue
        entry = attempt.answer_for(question_id)
        if entry is None:
            continue
        _apply_mark(entry, item.marks, item.feedback)
        touched[attempt.id] = attempt
        graded += 1

    for attempt in touched.values():
        _refresh_result(db, attempt)
    db.commit()

    logger.info(f"{graded_by} bulk graded question {question_id} on {graded} attempt(s)")
    return graded


def finalize_grading(
    db: DBSession,
    test_id: str,
    graded_by: str,
    events: LifecycleEvents | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Move every fully graded pending attempt to graded and rank the cohort.

    Raises Conflict while any pending attempt still has an unmarked answer.
    Without pending attempts this only re-runs ranking.
    """
    test = get_test(db, test_id)
    pending = _pending_attempts(db, test_id)

    blocking = [
        attempt
        for attempt in pending
        if any(entry.marks_awarded is None for entry in attempt.answers)
    ]
    if blocking:
        raise Conflict(f"{len(blocking)} attempt(s) still have ungraded answers")

    if not pending:
        graded_count = db.execute(
            select(func.count(Attempt.id)).where(
                Attempt.test_id == test_id,
                Attempt.status == AttemptStatus.GRADED.value,
            )
        ).scalar() or 0
        if not graded_count:
            raise NotFound("No graded attempts for this test")

    now = now or utc_now()
    finalized: list[Attempt] = []
    for attempt in pending:
        claimed = db.execute(
            update(Attempt)
            .where(
                Attempt.id == attempt.id,
                Attempt.status.in_(AWAITING_GRADING_STATUSES),
            )
            .values(
                status=AttemptStatus.GRADED.value,
                graded_by=graded_by,
                graded_at=now,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            continue
        attempt.status = AttemptStatus.GRADED.value
        attempt.graded_by = graded_by
        attempt.graded_at = now
        _refresh_result(db, attempt)
        finalized.append(attempt)
    db.commit()

    ranked = result_service.rank_cohort(db, test.id)
    logger.info(f"Finalized {len(finalized)} attempt(s) for test {test_id}, ranked {ranked}")

    if events:
        for attempt in finalized:
            events.attempt_graded(attempt.id, attempt.test_id, attempt.student_id)
        events.test_graded(test.id, ranked)

    return {"testId": test.id, "finalized": len(finalized), "ranked": ranked}


def rank_test(db: DBSession, test_id: str) -> dict[str, Any]:
    """Re-run the cohort ranking pass on demand."""
    get_test(db, test_id)
    ranked = result_service.rank_cohort(db, test_id)
    return {"testId": test_id, "ranked": ranked}
