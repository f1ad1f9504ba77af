"""Manual grading endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DbSession

from exam_api.database import get_db
from exam_api.dependencies import get_events
from exam_api.models import BulkGradeRequest, FinalizeRequest, GradeAnswerRequest
from exam_api.services import grading_service
from exam_api.services.events import LifecycleEvents
from exam_api.utils import validate_id

router = APIRouter(prefix="/api/tests/{test_id}/grading", tags=["grading"])


@router.get("/ungraded")
def get_ungraded(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
    questionId: str | None = None,
    sectionIndex: int | None = None,
) -> list[dict[str, object]]:
    """Answers waiting for a teacher mark, grouped by question."""
    test_id = validate_id("testId", test_id)
    return grading_service.get_ungraded_answers(db, test_id, questionId, sectionIndex)


@router.post("/answers")
def grade_answer(
    test_id: str,
    payload: GradeAnswerRequest,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    test_id = validate_id("testId", test_id)
    return grading_service.grade_answer(
        db,
        payload.attemptId,
        payload.questionId,
        payload.marks,
        payload.feedback,
        payload.gradedBy,
        test_id=test_id,
    )


@router.post("/bulk")
def bulk_grade(
    test_id: str,
    payload: BulkGradeRequest,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Grade one question across many attempts."""
    test_id = validate_id("testId", test_id)
    graded = grading_service.bulk_grade_question(
        db, test_id, payload.questionId, payload.grades, payload.gradedBy
    )
    return {"testId": test_id, "questionId": payload.questionId, "graded": graded}


@router.post("/finalize")
def finalize(
    test_id: str,
    payload: FinalizeRequest,
    db: Annotated[DbSession, Depends(get_db)],
    events: Annotated[LifecycleEvents, Depends(get_events)],
) -> dict[str, object]:
    """Finish grading and rank the cohort."""
    test_id = validate_id("testId", test_id)
    return grading_service.finalize_grading(db, test_id, payload.gradedBy, events)


@router.post("/rank")
def rank(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    test_id = validate_id("testId", test_id)
    return grading_service.rank_test(db, test_id)
