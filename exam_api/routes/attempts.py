"""Attempt endpoints used while taking and reviewing a test."""
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DbSession

from exam_api.database import get_db
from exam_api.dependencies import get_events, get_scheduler
from exam_api.models import AnswerSubmission, FlagRequest
from exam_api.services import attempt_service
from exam_api.services.events import LifecycleEvents
from exam_api.services.scheduler import SchedulerClient
from exam_api.utils import validate_id

router = APIRouter(prefix="/api/attempts/{attempt_id}", tags=["attempts"])


@router.get("")
def get_attempt_state(
    attempt_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Current attempt state, used to resume after a reconnect."""
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.get_attempt_state(db, attempt_id)


@router.post("/answers")
def submit_answer(
    attempt_id: str,
    payload: AnswerSubmission,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Save an answer."""
    attempt_id = validate_id("attemptId", attempt_id)
    question_id = validate_id("questionId", payload.questionId)
    return attempt_service.submit_answer(
        db, attempt_id, question_id, payload.answer, payload.timeSpent
    )


@router.post("/flag")
def flag_question(
    attempt_id: str,
    payload: FlagRequest,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    attempt_id = validate_id("attemptId", attempt_id)
    question_id = validate_id("questionId", payload.questionId)
    return attempt_service.flag_question(db, attempt_id, question_id, payload.flagged)


@router.post("/sections/{section_index}/start")
def start_section(
    attempt_id: str,
    section_index: int,
    db: Annotated[DbSession, Depends(get_db)],
    scheduler: Annotated[SchedulerClient, Depends(get_scheduler)],
) -> dict[str, object]:
    """Enter a section."""
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.start_section(db, scheduler, attempt_id, section_index)


@router.get("/sections/{section_index}")
def get_section_status(
    attempt_id: str,
    section_index: int,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.get_section_status(db, attempt_id, section_index)


@router.post("/submit")
def submit_test(
    attempt_id: str,
    db: Annotated[DbSession, Depends(get_db)],
    events: Annotated[LifecycleEvents, Depends(get_events)],
) -> dict[str, object]:
    """Submit the attempt for grading."""
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.submit_test(db, attempt_id, events)


@router.get("/result")
def get_result(
    attempt_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.get_result(db, attempt_id)


@router.get("/review")
def get_review(
    attempt_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Question-by-question review with solutions."""
    attempt_id = validate_id("attemptId", attempt_id)
    return attempt_service.get_review(db, attempt_id)
