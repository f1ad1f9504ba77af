"""Question bank endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session as DbSession

from exam_api.database import get_db
from exam_api.models import QuestionCreate
from exam_api.services import question_service
from exam_api.utils import validate_id

router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.post("")
def create_question(
    payload: QuestionCreate,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Add a question to the bank."""
    question = question_service.create_question(db, payload)
    return question_service.serialize_question(question, include_answer_key=True)


@router.get("/{question_id}")
def get_question(
    question_id: str,
    db: Annotated[DbSession, Depends(get_db)],
    include_answer_key: bool = False,
) -> dict[str, object]:
    """Get a question, without its answer key unless requested."""
    question_id = validate_id("questionId", question_id)
    question = question_service.get_question(db, question_id)
    return question_service.serialize_question(question, include_answer_key=include_answer_key)
