"""Timer-driven lifecycle transitions, executed by scheduler jobs."""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session as DBSession

from exam_api.config import SYSTEM_ACTOR
from exam_api.errors import NotFound
from exam_api.models.db.attempt import Attempt, AttemptStatus
from exam_api.models.db.online_test import OnlineTest, TestStatus
from exam_api.services import attempt_service, test_service
from exam_api.services.events import LifecycleEvents
from exam_api.services.scheduler import JobKind, SchedulerClient
from exam_api.utils.time_utils import as_utc, isoformat, utc_now

logger = logging.getLogger(__name__)


def complete_test(
    db: DBSession,
    test_id: str,
    actor: str = SYSTEM_ACTOR,
    events: LifecycleEvents | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Complete a test and auto-submit every attempt still in progress.

    Safe to re-run: the status change happens once and later runs only sweep
    attempts that are still open. A failing attempt does not stop the sweep;
    the failure is raised after the remaining attempts are processed.
    """
    changed = test_service.mark_completed(db, test_id, actor)

    open_ids = list(
        db.execute(
            select(Attempt.id).where(
                Attempt.test_id == test_id,
                Attempt.status == AttemptStatus.IN_PROGRESS.value,
            )
        ).scalars().all()
    )

    submitted = 0
    failures = []
    for attempt_id in open_ids:
        try:
            attempt_service.auto_submit(db, attempt_id, events, now)
            submitted += 1
        except Exception as e:
            db.rollback()
            logger.error(f"Auto-submit of attempt {attempt_id} failed: {e}")
            failures.append(attempt_id)

    if changed:
        logger.info(f"Test {test_id} completed, auto-submitted {submitted} attempt(s)")
        if events:
            events.test_completed(test_id)

    if failures:
        raise RuntimeError(f"Auto-submit failed for {len(failures)} attempt(s) of test {test_id}")

    return {"testId": test_id, "completed": changed, "autoSubmitted": submitted}


def rearm_timers(db: DBSession, scheduler: SchedulerClient) -> int:
    """
    Re-enqueue lifecycle jobs from stored state.

    Queued jobs live in process memory, so they are rebuilt on startup.
    Overdue jobs fire immediately; handlers ignore anything already done.
    Returns the number of jobs enqueued.
    """
    enqueued = 0

    tests = db.execute(
        select(OnlineTest).where(
            OnlineTest.status.in_((TestStatus.SCHEDULED.value, TestStatus.LIVE.value))
        )
    ).scalars().all()
    for test in tests:
        if test.status == TestStatus.SCHEDULED.value and test.start_time:
            scheduler.enqueue(JobKind.GO_LIVE, {"testId": test.id}, as_utc(test.start_time))
            enqueued += 1
        if test.end_time:
            scheduler.enqueue(JobKind.AUTO_COMPLETE, {"testId": test.id}, as_utc(test.end_time))
            enqueued += 1

    attempts = db.execute(
        select(Attempt).where(Attempt.status == AttemptStatus.IN_PROGRESS.value)
    ).scalars().all()
    for attempt in attempts:
        if attempt.due_at:
            scheduler.enqueue(
                JobKind.AUTO_SUBMIT_ATTEMPT, {"attemptId": attempt.id}, as_utc(attempt.due_at)
            )
            enqueued += 1
        test = db.get(OnlineTest, attempt.test_id)
        if test is None or not test.is_section_timed:
            continue
        sections = test.sections
        for progress in attempt.sections:
            if progress.is_locked or progress.started_at is None:
                continue
            if progress.section_index >= len(sections):
                continue
            time_limit = sections[progress.section_index].timeLimit
            if time_limit > 0:
                scheduler.enqueue(
                    JobKind.SECTION_TIMEOUT,
                    {"attemptId": attempt.id, "sectionIndex": progress.section_index},
                    as_utc(progress.started_at) + timedelta(minutes=time_limit),
                )
                enqueued += 1

    logger.info(f"Re-armed {enqueued} lifecycle job(s)")
    return enqueued


class AttemptLifecycleService:
    """
    Scheduler-facing lifecycle operations.

    Opens one session per job. Every handler re-reads current state, so a
    duplicate or late job is a no-op.
    """

    def __init__(
        self,
        session_factory: Callable[[], DBSession],
        events: LifecycleEvents | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.events = events or LifecycleEvents()
        self.clock = clock

    def go_live(self, test_id: str) -> None:
        db = self.session_factory()
        try:
            test_service.go_live(db, test_id, SYSTEM_ACTOR, self.events)
        except NotFound:
            logger.warning(f"go-live skipped, test {test_id} no longer exists")
        finally:
            db.close()

    def complete_test(self, test_id: str) -> None:
        db = self.session_factory()
        try:
            complete_test(db, test_id, SYSTEM_ACTOR, self.events, self.clock())
        except NotFound:
            logger.warning(f"auto-complete skipped, test {test_id} no longer exists")
        finally:
            db.close()

    def auto_submit_attempt(self, attempt_id: str) -> None:
        db = self.session_factory()
        try:
            now = self.clock()
            attempt = attempt_service.get_attempt(db, attempt_id)
            due_at = as_utc(attempt.due_at)
            if attempt.status == AttemptStatus.IN_PROGRESS.value and due_at and now < due_at:
                # Deadline was extended after this job was queued
                logger.info(f"auto-submit of attempt {attempt_id} skipped, now due at {isoformat(due_at)}")
                return
            attempt_service.auto_submit(db, attempt_id, self.events, now)
        except NotFound:
            logger.warning(f"auto-submit skipped, attempt {attempt_id} no longer exists")
        finally:
            db.close()

    def lock_expired_section(self, attempt_id: str, section_index: int) -> None:
        db = self.session_factory()
        try:
            attempt_service.lock_expired_section(db, attempt_id, section_index, self.clock())
        finally:
            db.close()
