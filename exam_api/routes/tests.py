"""Test lifecycle endpoints."""
from typing import Annotated

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session as DbSession

from exam_api.database import get_db
from exam_api.dependencies import get_events, get_scheduler
from exam_api.models import ExtendTimeRequest, StartAttemptRequest, TestActionRequest, TestCreate
from exam_api.services import attempt_service, result_service, test_service
from exam_api.services.events import LifecycleEvents
from exam_api.services.lifecycle_service import complete_test
from exam_api.services.scheduler import SchedulerClient
from exam_api.utils import validate_id

router = APIRouter(prefix="/api/tests", tags=["tests"])


@router.post("")
def create_test(
    payload: TestCreate,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Create a draft test."""
    test = test_service.create_test(db, payload)
    return test_service.serialize_test(test)


@router.get("/{test_id}")
def get_test(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    """Get a test definition."""
    test_id = validate_id("testId", test_id)
    return test_service.serialize_test(test_service.get_test(db, test_id))


@router.post("/{test_id}/schedule")
def schedule_test(
    test_id: str,
    payload: TestActionRequest,
    db: Annotated[DbSession, Depends(get_db)],
    scheduler: Annotated[SchedulerClient, Depends(get_scheduler)],
) -> dict[str, object]:
    """Schedule a draft test and arm its go-live and auto-complete timers."""
    test_id = validate_id("testId", test_id)
    test = test_service.schedule_test(db, scheduler, test_id, payload.actor)
    return test_service.serialize_test(test)


@router.post("/{test_id}/go-live")
def go_live(
    test_id: str,
    payload: TestActionRequest,
    db: Annotated[DbSession, Depends(get_db)],
    events: Annotated[LifecycleEvents, Depends(get_events)],
) -> dict[str, object]:
    """Make a test live immediately."""
    test_id = validate_id("testId", test_id)
    test = test_service.go_live(db, test_id, payload.actor, events)
    return test_service.serialize_test(test)


@router.post("/{test_id}/complete")
def complete(
    test_id: str,
    payload: TestActionRequest,
    db: Annotated[DbSession, Depends(get_db)],
    events: Annotated[LifecycleEvents, Depends(get_events)],
) -> dict[str, object]:
    """Complete a test and auto-submit its open attempts."""
    test_id = validate_id("testId", test_id)
    return complete_test(db, test_id, payload.actor, events)


@router.post("/{test_id}/extend-time")
def extend_time(
    test_id: str,
    payload: ExtendTimeRequest,
    db: Annotated[DbSession, Depends(get_db)],
    scheduler: Annotated[SchedulerClient, Depends(get_scheduler)],
) -> dict[str, object]:
    """Add minutes to a live test and push back open attempt deadlines."""
    test_id = validate_id("testId", test_id)
    return test_service.extend_test_time(db, scheduler, test_id, payload.minutes, payload.actor)


@router.post("/{test_id}/archive")
def archive_test(
    test_id: str,
    payload: TestActionRequest,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    test_id = validate_id("testId", test_id)
    test = test_service.archive_test(db, test_id, payload.actor)
    return test_service.serialize_test(test)


@router.post("/{test_id}/publish-results")
def publish_results(
    test_id: str,
    payload: TestActionRequest,
    db: Annotated[DbSession, Depends(get_db)],
    events: Annotated[LifecycleEvents, Depends(get_events)],
) -> dict[str, object]:
    """Release results once grading is complete."""
    test_id = validate_id("testId", test_id)
    test = test_service.publish_results(db, test_id, payload.actor, events)
    return test_service.serialize_test(test)


@router.get("/{test_id}/stats")
def get_stats(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> dict[str, object]:
    test_id = validate_id("testId", test_id)
    return result_service.get_test_stats(db, test_id)


@router.get("/{test_id}/export")
def export_results(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
) -> Response:
    """Download graded results as CSV."""
    test_id = validate_id("testId", test_id)
    rows = result_service.export_result_rows(db, test_id)
    section_names = [section.name for section in test_service.get_test(db, test_id).sections]
    content = result_service.render_results_csv(rows, section_names)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{test_id}-results.csv"'},
    )


@router.get("/{test_id}/attempts")
def list_attempts(
    test_id: str,
    db: Annotated[DbSession, Depends(get_db)],
    status: str | None = None,
    studentId: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, object]]:
    """List attempts for a test."""
    test_id = validate_id("testId", test_id)
    test_service.get_test(db, test_id)
    attempts = attempt_service.list_attempts(db, test_id, status, studentId, limit, offset)
    return [attempt_service.serialize_attempt_summary(attempt) for attempt in attempts]


@router.post("/{test_id}/attempts")
def start_attempt(
    test_id: str,
    payload: StartAttemptRequest,
    request: Request,
    db: Annotated[DbSession, Depends(get_db)],
    scheduler: Annotated[SchedulerClient, Depends(get_scheduler)],
) -> dict[str, object]:
    """Start an attempt for a student."""
    test_id = validate_id("testId", test_id)
    student_id = validate_id("studentId", payload.studentId)
    return attempt_service.start_attempt(
        db,
        scheduler,
        test_id,
        student_id,
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )
