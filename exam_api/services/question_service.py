"""Service layer for question bank reads."""
import uuid
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_api.errors import NotFound
from exam_api.models.db.question import Question
from exam_api.models.questions import QuestionCreate, sanitize_content


def create_question(db: DBSession, payload: QuestionCreate) -> Question:
    """Add a question to the bank."""
    question = Question(
        id=uuid.uuid4().hex,
        type=payload.type,
        marks=payload.marks,
        subject_id=payload.subjectId,
        subject_name=payload.subjectName,
    )
    question.content = payload.content
    db.add(question)
    db.commit()
    db.refresh(question)
    return question


def get_question(db: DBSession, question_id: str) -> Question:
    """Get question by ID or raise NotFound."""
    question = db.get(Question, question_id)
    if not question:
        raise NotFound("Question not found")
    return question


def get_questions_by_ids(db: DBSession, question_ids: Iterable[str]) -> dict[str, Question]:
    """Load questions keyed by id; missing ids are simply absent."""
    ids = list(dict.fromkeys(question_ids))
    if not ids:
        return {}
    questions = db.execute(select(Question).where(Question.id.in_(ids))).scalars().all()
    return {question.id: question for question in questions}


def serialize_question(question: Question, include_answer_key: bool = False) -> dict[str, Any]:
    """Question payload; answer keys and solutions are stripped unless requested."""
    content = question.content
    return {
        "id": question.id,
        "type": question.type,
        "marks": question.marks,
        "subjectId": question.subject_id,
        "subjectName": question.subject_name,
        "content": content if include_answer_key else sanitize_content(content),
    }
