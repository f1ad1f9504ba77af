"""Service layer for the attempt state machine.

Statuses move in_progress -> submitted | auto_submitted -> graded and
never back. Every write to an open attempt is committed behind a
status-guarded UPDATE, so a timer-fired submit racing a student submit
(or a late answer) resolves to whichever is recorded first; the loser
sees the stored state and changes nothing.
"""
import logging
import random
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session as DBSession

from exam_api.config import SYSTEM_ACTOR
from exam_api.errors import Conflict, NotFound, SchedulingConflict
from exam_api.models.db.attempt import (
    Attempt,
    AttemptAnswer,
    AttemptSectionProgress,
    AttemptStatus,
)
from exam_api.models.db.online_test import OnlineTest, TestMode, TestStatus
from exam_api.models.db.question import Question
from exam_api.models.tests import TestSection
from exam_api.services import question_service, result_service
from exam_api.services.events import LifecycleEvents
from exam_api.services.grading_engine import grade, grade_for_feedback
from exam_api.services.scheduler import JobKind, SchedulerClient
from exam_api.services.test_service import get_test
from exam_api.utils.time_utils import as_utc, isoformat, seconds_between, utc_now

logger = logging.getLogger(__name__)


# ---- Lookups ----


def get_attempt(db: DBSession, attempt_id: str) -> Attempt:
    """Get attempt by ID or raise NotFound."""
    attempt = db.get(Attempt, attempt_id)
    if not attempt:
        raise NotFound("Attempt not found")
    return attempt


def list_attempts(
    db: DBSession,
    test_id: str,
    status: str | None = None,
    student_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[Attempt]:
    """
    Get attempts for a test, optionally filtered by status and student.
    """
    query = select(Attempt).where(Attempt.test_id == test_id)

    if status:
        query = query.where(Attempt.status == status)
    if student_id:
        query = query.where(Attempt.student_id == student_id)

    query = query.order_by(Attempt.started_at.desc()).limit(limit).offset(offset)

    return list(db.execute(query).scalars().all())


def serialize_attempt_summary(attempt: Attempt) -> dict[str, object]:
    result = attempt.result
    return {
        "attemptId": attempt.id,
        "testId": attempt.test_id,
        "studentId": attempt.student_id,
        "attemptNumber": attempt.attempt_number,
        "status": attempt.status,
        "startedAt": isoformat(attempt.started_at),
        "submittedAt": isoformat(attempt.submitted_at),
        "percentage": result.percentage if result else None,
        "grade": result.grade if result else None,
        "rank": result.rank if result else None,
    }


def _require_in_progress(attempt: Attempt) -> None:
    if attempt.status != AttemptStatus.IN_PROGRESS.value:
        raise Conflict(f"Attempt is {attempt.status}")


# ---- Start ----


def check_availability(test: OnlineTest, now: datetime) -> None:
    """Raise SchedulingConflict unless the test can be started now in its mode."""
    status = test.status
    start_time = as_utc(test.start_time)
    end_time = as_utc(test.end_time)
    available_from = as_utc(test.available_from)

    if test.mode == TestMode.LIVE_MOCK.value:
        if status != TestStatus.LIVE.value:
            raise SchedulingConflict("Test is not live")
        if start_time and now < start_time:
            raise SchedulingConflict("Test has not started yet")
        if end_time and now > end_time:
            raise SchedulingConflict("Test has ended")
    elif test.mode == TestMode.ANYTIME_MOCK.value:
        if status not in (TestStatus.LIVE.value, TestStatus.SCHEDULED.value):
            raise SchedulingConflict("Test is not available")
        if available_from and now < available_from:
            raise SchedulingConflict("Test is not available yet")
        if end_time and now > end_time:
            raise SchedulingConflict("Test has ended")
    elif test.mode == TestMode.PRACTICE.value:
        if status not in (TestStatus.LIVE.value, TestStatus.COMPLETED.value):
            raise SchedulingConflict("Test is not available for practice")
    elif status != TestStatus.LIVE.value:
        raise SchedulingConflict("Test is not live")


def attempt_duration_minutes(test: OnlineTest) -> float:
    """Attempt time limit; section-timed tests use the sum of section limits."""
    if test.is_section_timed:
        return sum(section.timeLimit for section in test.sections)
    return test.duration_minutes


def start_attempt(
    db: DBSession,
    scheduler: SchedulerClient,
    test_id: str,
    student_id: str,
    ip_address: str = "",
    user_agent: str = "",
    now: datetime | None = None,
    rng: random.Random | None = None,
) -> dict[str, Any]:
    """
    Start a new attempt with question order, option order and marks snapshots.

    Args:
        db: Database session
        scheduler: Client used to arm the auto-submit and section timers
        test_id: Test being attempted
        student_id: Student starting the attempt
        ip_address: Client IP recorded on the attempt
        user_agent: Client user agent recorded on the attempt
        now: Current time (defaults to UTC now)
        rng: Random source for shuffling
    """
    test = get_test(db, test_id)
    now = now or utc_now()
    rng = rng or random.Random()
    check_availability(test, now)

    options = test.options
    existing = list(
        db.execute(
            select(Attempt).where(
                Attempt.test_id == test_id,
                Attempt.student_id == student_id,
            )
        ).scalars().all()
    )
    if any(item.status == AttemptStatus.IN_PROGRESS.value for item in existing):
        raise Conflict("An attempt is already in progress for this test")
    if len(existing) >= options.maxAttempts:
        raise Conflict("Maximum number of attempts reached")

    sections = test.sections
    questions = question_service.get_questions_by_ids(db, test.question_ids)

    # Shuffle within sections so section membership stays intact
    question_order: list[str] = []
    for section in sections:
        section_ids = list(section.questionIds)
        if options.randomizeQuestions:
            rng.shuffle(section_ids)
        question_order.extend(section_ids)

    option_orders: dict[str, list[int]] = {}
    if options.randomizeOptions:
        for question_id in question_order:
            question = questions.get(question_id)
            choices = question.content.get("options") if question else None
            if isinstance(choices, list) and choices:
                order = list(range(len(choices)))
                rng.shuffle(order)
                option_orders[question_id] = order

    duration = attempt_duration_minutes(test)
    due_at = now + timedelta(minutes=duration) if duration > 0 else None

    attempt = Attempt(
        id=uuid.uuid4().hex,
        test_id=test_id,
        student_id=student_id,
        attempt_number=max((item.attempt_number for item in existing), default=0) + 1,
        status=AttemptStatus.IN_PROGRESS.value,
        started_at=now,
        due_at=due_at,
        current_section_index=0,
        ip_address=(ip_address or "")[:64],
        user_agent=(user_agent or "")[:500],
    )
    attempt.question_order = question_order
    attempt.option_orders = option_orders
    attempt.question_marks = {
        question_id: questions[question_id].marks if question_id in questions else 1.0
        for question_id in question_order
    }
    for index in range(len(sections)):
        progress = AttemptSectionProgress(section_index=index)
        if test.is_section_timed and index == 0:
            progress.started_at = now
        attempt.sections.append(progress)

    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Another attempt was started at the same time")
    db.refresh(attempt)

    if due_at:
        scheduler.enqueue(JobKind.AUTO_SUBMIT_ATTEMPT, {"attemptId": attempt.id}, due_at)
    if test.is_section_timed and sections:
        _arm_section_timeout(scheduler, attempt.id, sections[0], 0, now)

    logger.info(
        f"Started attempt {attempt.id} (#{attempt.attempt_number}) "
        f"for student {student_id} on test {test_id}"
    )

    return {
        "attemptId": attempt.id,
        "attemptNumber": attempt.attempt_number,
        "status": attempt.status,
        "mode": test.mode,
        "duration": duration,
        "startedAt": isoformat(attempt.started_at),
        "dueAt": isoformat(attempt.due_at),
        "sections": _sections_info(test),
        "currentSectionIndex": attempt.current_section_index,
        "questions": _section_questions(attempt, sections, 0, questions),
        "questionOrder": question_order,
        "optionOrders": option_orders,
        "options": {
            "randomizeQuestions": options.randomizeQuestions,
            "randomizeOptions": options.randomizeOptions,
            "instantFeedback": options.instantFeedback,
            "allowReview": options.allowReview,
            "showResultsAfterCompletion": options.showResultsAfterCompletion,
        },
    }


def _can_go_back(test: OnlineTest, section: TestSection) -> bool:
    # Section-timed tests never allow revisiting a section
    return False if test.is_section_timed else section.canGoBack


def _sections_info(test: OnlineTest) -> list[dict[str, object]]:
    return [
        {
            "sectionIndex": index,
            "name": section.name,
            "questionCount": len(section.questionIds),
            "timeLimit": section.timeLimit,
            "instructions": section.instructions,
            "canGoBack": _can_go_back(test, section),
        }
        for index, section in enumerate(test.sections)
    ]


def _section_questions(
    attempt: Attempt,
    sections: list[TestSection],
    section_index: int,
    questions: dict[str, Question],
) -> list[dict[str, Any]]:
    """Sanitized questions of one section in the attempt's snapshot order."""
    if not 0 <= section_index < len(sections):
        return []
    members = set(sections[section_index].questionIds)
    option_orders = attempt.option_orders
    payload = []
    for question_id in attempt.question_order:
        question = questions.get(question_id)
        if question_id not in members or question is None:
            continue
        item = question_service.serialize_question(question)
        item["marks"] = attempt.question_marks.get(question_id, question.marks)
        item["optionOrder"] = option_orders.get(question_id)
        payload.append(item)
    return payload


def _arm_section_timeout(
    scheduler: SchedulerClient,
    attempt_id: str,
    section: TestSection,
    section_index: int,
    started_at: datetime,
) -> None:
    if section.timeLimit <= 0:
        return
    scheduler.enqueue(
        JobKind.SECTION_TIMEOUT,
        {"attemptId": attempt_id, "sectionIndex": section_index},
        as_utc(started_at) + timedelta(minutes=section.timeLimit),
    )


# ---- Guarded writes ----


def _commit_if_in_progress(db: DBSession, attempt: Attempt, now: datetime) -> None:
    """
    Commit pending changes only if the attempt is still in progress.

    The status check and the write share one transaction, so a submit that
    lands first makes this write fail instead of slipping in after grading.
    """
    claimed = db.execute(
        update(Attempt)
        .where(
            Attempt.id == attempt.id,
            Attempt.status == AttemptStatus.IN_PROGRESS.value,
        )
        .values(auto_saved_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not claimed:
        db.rollback()
        raise Conflict("Attempt is no longer in progress")
    db.commit()


def _snapshot_marks(db: DBSession, attempt: Attempt, question_id: str) -> float:
    marks = attempt.question_marks.get(question_id)
    if marks is not None:
        return marks
    question = db.get(Question, question_id)
    return question.marks if question else 1.0


def _write_answer(
    db: DBSession,
    attempt: Attempt,
    question_id: str,
    section_index: int,
    now: datetime,
    **fields: Any,
) -> AttemptAnswer:
    """Upsert the answer entry for a question; last write wins."""
    for _ in range(2):
        entry = attempt.answer_for(question_id)
        if entry is None:
            entry = AttemptAnswer(
                question_id=question_id,
                section_index=section_index,
                max_marks=_snapshot_marks(db, attempt, question_id),
            )
            attempt.answers.append(entry)
        for name, value in fields.items():
            setattr(entry, name, value)
        try:
            _commit_if_in_progress(db, attempt, now)
            return entry
        except IntegrityError:
            # Same question inserted by a concurrent request: retry as an update
            db.rollback()
            db.refresh(attempt)
    raise Conflict("Answer could not be saved, please retry")


def _section_expired(section: TestSection, progress: AttemptSectionProgress, now: datetime) -> bool:
    if section.timeLimit <= 0 or progress.started_at is None:
        return False
    return seconds_between(progress.started_at, now) >= section.timeLimit * 60


def _lock_section(progress: AttemptSectionProgress, now: datetime) -> None:
    progress.is_locked = True
    if progress.completed_at is None:
        progress.completed_at = now
    if progress.started_at is not None:
        progress.time_spent = int(seconds_between(progress.started_at, now))


def _resolve_section(test: OnlineTest, question_id: str) -> int:
    section_index = test.section_index_of(question_id)
    if section_index is None:
        raise NotFound("Question does not belong to this test")
    return section_index


def _lock_if_expired(
    db: DBSession,
    attempt: Attempt,
    test: OnlineTest,
    progress: AttemptSectionProgress | None,
    now: datetime,
) -> None:
    if progress is None or progress.is_locked:
        return
    section = test.sections[progress.section_index]
    if _section_expired(section, progress, now):
        _lock_section(progress, now)
        _commit_if_in_progress(db, attempt, now)
        logger.info(f"Section {progress.section_index} of attempt {attempt.id} timed out")


# ---- Answers and flags ----


def submit_answer(
    db: DBSession,
    attempt_id: str,
    question_id: str,
    answer: Any,
    time_spent: int = 0,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Save an answer. Pure write: grading happens on submit."""
    attempt = get_attempt(db, attempt_id)
    _require_in_progress(attempt)
    now = now or utc_now()
    if attempt.due_at and now >= as_utc(attempt.due_at):
        raise Conflict("Time limit for this attempt has passed")

    test = get_test(db, attempt.test_id)
    section_index = _resolve_section(test, question_id)
    progress = attempt.section_progress(section_index)
    _lock_if_expired(db, attempt, test, progress, now)
    if progress is not None and progress.is_locked:
        raise Conflict("This section is locked")
    if test.is_section_timed and section_index != attempt.current_section_index:
        raise Conflict("Question is not in the current section")

    entry = _write_answer(
        db,
        attempt,
        question_id,
        section_index,
        now,
        answer=answer,
        time_spent=time_spent,
        answered_at=now,
    )

    response: dict[str, Any] = {
        "saved": True,
        "questionId": question_id,
        "answeredAt": isoformat(entry.answered_at),
    }

    options = test.options
    if test.mode == TestMode.PRACTICE.value and options.instantFeedback:
        question = db.get(Question, question_id)
        if question is not None:
            feedback = grade_for_feedback(question.type, answer, question.content, entry.max_marks)
            response["feedback"] = feedback.to_dict()

    return response


def flag_question(
    db: DBSession,
    attempt_id: str,
    question_id: str,
    flagged: bool,
) -> dict[str, Any]:
    """Toggle the review flag; creates an empty entry for untouched questions."""
    attempt = get_attempt(db, attempt_id)
    _require_in_progress(attempt)
    test = get_test(db, attempt.test_id)
    section_index = _resolve_section(test, question_id)

    _write_answer(db, attempt, question_id, section_index, utc_now(), flagged=flagged)
    return {"questionId": question_id, "flagged": flagged}


# ---- Sections ----


def _get_section(test: OnlineTest, section_index: int) -> TestSection:
    sections = test.sections
    if not 0 <= section_index < len(sections):
        raise NotFound("Section not found")
    return sections[section_index]


def start_section(
    db: DBSession,
    scheduler: SchedulerClient,
    attempt_id: str,
    section_index: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Enter a section and record its start time."""
    attempt = get_attempt(db, attempt_id)
    _require_in_progress(attempt)
    test = get_test(db, attempt.test_id)
    section = _get_section(test, section_index)
    now = now or utc_now()

    current = attempt.current_section_index
    progress = attempt.section_progress(section_index)
    previous = attempt.section_progress(current)

    if test.is_section_timed:
        already_started = section_index == current and progress and progress.started_at
        if not already_started:
            if section_index != current + 1:
                raise Conflict(
                    f"Sections must be taken in order; next section is {current + 1}"
                )
            if previous is not None and not previous.is_locked:
                _lock_section(previous, now)
    else:
        _lock_if_expired(db, attempt, test, progress, now)
        if progress is not None and progress.is_locked:
            raise Conflict("This section is locked")
        leaving = test.sections[current] if 0 <= current < len(test.sections) else None
        if (
            section_index > current
            and leaving is not None
            and not leaving.canGoBack
            and previous is not None
            and not previous.is_locked
        ):
            _lock_section(previous, now)

    newly_started = False
    if progress is not None and progress.started_at is None:
        progress.started_at = now
        newly_started = True
    attempt.current_section_index = section_index
    _commit_if_in_progress(db, attempt, now)

    if newly_started and test.is_section_timed:
        _arm_section_timeout(scheduler, attempt.id, section, section_index, now)

    questions = question_service.get_questions_by_ids(db, section.questionIds)
    return {
        "sectionIndex": section_index,
        "name": section.name,
        "questions": _section_questions(attempt, test.sections, section_index, questions),
        "timeLimit": section.timeLimit,
        "instructions": section.instructions,
        "canGoBack": _can_go_back(test, section),
        "startedAt": isoformat(progress.started_at) if progress else None,
    }


def get_section_status(
    db: DBSession,
    attempt_id: str,
    section_index: int,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Section timing and progress; locks the section once its time is up."""
    attempt = get_attempt(db, attempt_id)
    test = get_test(db, attempt.test_id)
    section = _get_section(test, section_index)
    now = now or utc_now()

    progress = attempt.section_progress(section_index)
    if attempt.status == AttemptStatus.IN_PROGRESS.value:
        _lock_if_expired(db, attempt, test, progress, now)

    remaining = None
    if section.timeLimit > 0 and progress is not None and progress.started_at is not None:
        elapsed = seconds_between(progress.started_at, now)
        remaining = max(0, int(section.timeLimit * 60 - elapsed))

    members = set(section.questionIds)
    answered = sum(
        1
        for entry in attempt.answers
        if entry.question_id in members and entry.answer is not None
    )

    return {
        "sectionIndex": section_index,
        "name": section.name,
        "timeRemainingSeconds": remaining,
        "totalQuestions": len(section.questionIds),
        "questionsAnswered": answered,
        "isLocked": progress.is_locked if progress else False,
        "canGoBack": _can_go_back(test, section),
        "startedAt": isoformat(progress.started_at) if progress else None,
        "completedAt": isoformat(progress.completed_at) if progress else None,
    }


def lock_expired_section(
    db: DBSession,
    attempt_id: str,
    section_index: int,
    now: datetime | None = None,
) -> bool:
    """Section timer handler. Returns True when the section was locked."""
    attempt = db.get(Attempt, attempt_id)
    if attempt is None or attempt.status != AttemptStatus.IN_PROGRESS.value:
        return False
    progress = attempt.section_progress(section_index)
    if progress is None or progress.is_locked:
        return False

    test = get_test(db, attempt.test_id)
    now = now or utc_now()
    section = test.sections[section_index]
    if not _section_expired(section, progress, now):
        logger.debug(f"Section {section_index} of attempt {attempt_id} not expired yet")
        return False

    _lock_section(progress, now)
    try:
        _commit_if_in_progress(db, attempt, now)
    except Conflict:
        return False
    logger.info(f"Locked section {section_index} of attempt {attempt_id} on timeout")
    return True


# ---- State and submission ----


def get_attempt_state(
    db: DBSession,
    attempt_id: str,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Current attempt state without grading fields."""
    attempt = get_attempt(db, attempt_id)
    now = now or utc_now()

    remaining = None
    if attempt.due_at and attempt.status == AttemptStatus.IN_PROGRESS.value:
        remaining = max(0, int(seconds_between(now, attempt.due_at)))

    return {
        "attemptId": attempt.id,
        "testId": attempt.test_id,
        "studentId": attempt.student_id,
        "attemptNumber": attempt.attempt_number,
        "status": attempt.status,
        "startedAt": isoformat(attempt.started_at),
        "dueAt": isoformat(attempt.due_at),
        "autoSavedAt": isoformat(attempt.auto_saved_at),
        "timeRemainingSeconds": remaining,
        "currentSectionIndex": attempt.current_section_index,
        "questionOrder": attempt.question_order,
        "optionOrders": attempt.option_orders,
        "answers": [
            {
                "questionId": entry.question_id,
                "sectionIndex": entry.section_index,
                "answer": entry.answer,
                "flagged": entry.flagged,
                "timeSpent": entry.time_spent,
                "answeredAt": isoformat(entry.answered_at),
            }
            for entry in attempt.answers
        ],
        "flaggedQuestions": [entry.question_id for entry in attempt.answers if entry.flagged],
        "sections": [
            {
                "sectionIndex": progress.section_index,
                "startedAt": isoformat(progress.started_at),
                "completedAt": isoformat(progress.completed_at),
                "timeSpent": progress.time_spent,
                "isLocked": progress.is_locked,
            }
            for progress in attempt.sections
        ],
    }


def submit_test(
    db: DBSession,
    attempt_id: str,
    events: LifecycleEvents | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Student-initiated submit. Idempotent."""
    return _submit(db, attempt_id, AttemptStatus.SUBMITTED, events, now)


def auto_submit(
    db: DBSession,
    attempt_id: str,
    events: LifecycleEvents | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Timer- or admin-initiated submit. Idempotent."""
    return _submit(db, attempt_id, AttemptStatus.AUTO_SUBMITTED, events, now)


def _submission_payload(attempt: Attempt) -> dict[str, Any]:
    result = attempt.result
    return {
        "attemptId": attempt.id,
        "status": attempt.status,
        "submittedAt": isoformat(attempt.submitted_at),
        "result": result.model_dump() if result else None,
    }


def grade_answers(answers: list[AttemptAnswer], questions: dict[str, Question]) -> None:
    """Run the grading engine over answers; ungradable ones stay null."""
    for entry in answers:
        question = questions.get(entry.question_id)
        outcome = None
        if question is not None:
            outcome = grade(question.type, entry.answer, question.content, entry.max_marks)
        entry.is_correct = outcome.is_correct if outcome else None
        entry.marks_awarded = outcome.marks_awarded if outcome else None


def _submit(
    db: DBSession,
    attempt_id: str,
    target_status: AttemptStatus,
    events: LifecycleEvents | None,
    now: datetime | None,
) -> dict[str, Any]:
    attempt = get_attempt(db, attempt_id)
    if attempt.status != AttemptStatus.IN_PROGRESS.value:
        logger.debug(f"Submit of attempt {attempt_id} ignored, status is {attempt.status}")
        return _submission_payload(attempt)

    now = now or utc_now()
    claimed = db.execute(
        update(Attempt)
        .where(
            Attempt.id == attempt_id,
            Attempt.status == AttemptStatus.IN_PROGRESS.value,
        )
        .values(status=target_status.value, submitted_at=now)
        .execution_options(synchronize_session=False)
    ).rowcount
    if not claimed:
        # Another submit was recorded first
        db.rollback()
        db.refresh(attempt)
        return _submission_payload(attempt)

    attempt.status = target_status.value
    attempt.submitted_at = now
    test = get_test(db, attempt.test_id)

    for progress in attempt.sections:
        if not progress.is_locked:
            _lock_section(progress, now)

    answers = list(attempt.answers)
    questions = question_service.get_questions_by_ids(
        db, [entry.question_id for entry in answers]
    )
    grade_answers(answers, questions)
    attempt.result = result_service.compute_attempt_result(
        answers, test.sections, questions, test.options.passingScore
    )

    fully_graded = all(entry.marks_awarded is not None for entry in answers)
    if fully_graded:
        attempt.status = AttemptStatus.GRADED.value
        attempt.graded_by = SYSTEM_ACTOR
        attempt.graded_at = now

    db.commit()
    db.refresh(attempt)
    logger.info(f"Attempt {attempt.id} {target_status.value}, now {attempt.status}")

    if events:
        events.attempt_submitted(attempt.id, attempt.test_id, attempt.student_id, target_status.value)
        if fully_graded:
            events.attempt_graded(attempt.id, attempt.test_id, attempt.student_id)

    return _submission_payload(attempt)


# ---- Results and review ----


def _results_visible(test: OnlineTest) -> bool:
    return test.options.showResultsAfterCompletion or test.results_published


def get_result(db: DBSession, attempt_id: str) -> dict[str, Any]:
    """Result of a submitted attempt."""
    attempt = get_attempt(db, attempt_id)
    if attempt.status == AttemptStatus.IN_PROGRESS.value:
        raise Conflict("Attempt is still in progress")

    test = get_test(db, attempt.test_id)
    visible = _results_visible(test)
    result = attempt.result

    response: dict[str, Any] = {
        "attemptId": attempt.id,
        "attemptNumber": attempt.attempt_number,
        "status": attempt.status,
        "startedAt": isoformat(attempt.started_at),
        "submittedAt": isoformat(attempt.submitted_at),
        "resultsAvailable": visible,
        "result": result.model_dump() if visible and result else None,
    }
    if visible:
        response["answers"] = [
            {
                "questionId": entry.question_id,
                "sectionIndex": entry.section_index,
                "answer": entry.answer,
                "isCorrect": entry.is_correct,
                "marksAwarded": entry.marks_awarded,
                "maxMarks": entry.max_marks,
                "feedback": entry.feedback,
            }
            for entry in attempt.answers
        ]
    if attempt.status == AttemptStatus.GRADED.value:
        response["gradedBy"] = attempt.graded_by
        response["gradedAt"] = isoformat(attempt.graded_at)
    return response


def get_review(db: DBSession, attempt_id: str) -> dict[str, Any]:
    """
    Question-by-question review with correct answers and solutions.

    Runs the grading engine in feedback mode; the attempt is not modified.
    """
    attempt = get_attempt(db, attempt_id)
    if not attempt.is_terminal:
        raise Conflict("Attempt is still in progress")

    test = get_test(db, attempt.test_id)
    options = test.options
    if not options.allowReview:
        raise Conflict("Review is disabled for this test")
    if not (options.showSolutionsAfterCompletion or test.results_published):
        raise Conflict("Solutions have not been released yet")

    questions = question_service.get_questions_by_ids(db, attempt.question_order)
    marks = attempt.question_marks
    items = []
    for question_id in attempt.question_order:
        question = questions.get(question_id)
        if question is None:
            continue
        entry = attempt.answer_for(question_id)
        max_marks = entry.max_marks if entry else marks.get(question_id, question.marks)
        answer = entry.answer if entry else None
        feedback = grade_for_feedback(question.type, answer, question.content, max_marks)
        items.append(
            {
                "question": question_service.serialize_question(question, include_answer_key=True),
                "answer": answer,
                "flagged": entry.flagged if entry else False,
                "isCorrect": entry.is_correct if entry else None,
                "marksAwarded": entry.marks_awarded if entry else None,
                "maxMarks": max_marks,
                "teacherFeedback": entry.feedback if entry else "",
                "correctAnswer": feedback.correct_answer,
                "solution": feedback.solution,
                "explanation": feedback.explanation,
            }
        )

    return {"attemptId": attempt.id, "status": attempt.status, "questions": items}
