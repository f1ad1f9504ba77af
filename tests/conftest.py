from datetime import datetime, timezone
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session as DbSession
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import exam_api.models.db  # noqa: F401
from exam_api.database import Base
from exam_api.models import QuestionCreate, TestCreate
from exam_api.services import question_service, test_service
from exam_api.services.scheduler import InProcessScheduler

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def session_factory() -> Callable[[], DbSession]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def db(session_factory: Callable[[], DbSession]) -> DbSession:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scheduler() -> InProcessScheduler:
    """Scheduler that is never started; tests drain it with run_due_jobs."""
    return InProcessScheduler(retry_delay=0, clock=lambda: NOW)


@pytest.fixture
def make_question(db: DbSession) -> Callable[..., str]:
    def _make(
        question_type: str,
        marks: float = 1.0,
        subject_id: str | None = None,
        subject_name: str | None = None,
        **content: Any,
    ) -> str:
        payload = QuestionCreate(
            type=question_type,
            content=content,
            marks=marks,
            subjectId=subject_id,
            subjectName=subject_name,
        )
        return question_service.create_question(db, payload).id

    return _make


@pytest.fixture
def make_test(db: DbSession) -> Callable[..., str]:
    def _make(
        sections: list[dict[str, Any]],
        mode: str = "anytime_mock",
        live: bool = True,
        duration: float = 0,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        **options: Any,
    ) -> str:
        payload = TestCreate(
            title="Weekly mock",
            mode=mode,
            scheduling={"startTime": start_time, "endTime": end_time, "duration": duration},
            sections=sections,
            options=options,
        )
        test = test_service.create_test(db, payload)
        if live:
            test_service.go_live(db, test.id, "admin")
        return test.id

    return _make
