import random
from datetime import timedelta
from typing import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session as DbSession
from sqlalchemy.orm import sessionmaker

from exam_api.database import Base
from exam_api.errors import Conflict, NotFound, SchedulingConflict
from exam_api.models import QuestionCreate
from exam_api.models import tests as test_models
from exam_api.services import attempt_service, question_service, test_service
from exam_api.services.events import LifecycleEvents
from exam_api.services.scheduler import InProcessScheduler, JobKind

from conftest import NOW


class RecordingNotifier:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def notify(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))


class RecordingAnalytics:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def recompute(self, student_id: str, test_id: str) -> None:
        self.calls.append((student_id, test_id))


@pytest.fixture
def objective_test(make_question: Callable[..., str], make_test: Callable[..., str]) -> Callable[..., tuple]:
    def _make(**options: object) -> tuple[str, str, str]:
        q1 = make_question(
            "mcq_single",
            marks=2,
            options=["a", "b", "c"],
            correctOptionIndex=1,
            solution="b is right",
        )
        q2 = make_question("numerical", marks=3, correctAnswer=10, tolerance=0.5)
        test_id = make_test([{"name": "Main", "questionIds": [q1, q2]}], **options)
        return test_id, q1, q2

    return _make


def test_start_attempt_snapshots_and_hides_answer_keys(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, q2 = objective_test()

    started = attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)

    assert started["attemptNumber"] == 1
    assert started["status"] == "in_progress"
    assert started["questionOrder"] == [q1, q2]
    assert started["dueAt"] is None
    first = started["questions"][0]
    assert first["id"] == q1
    assert "correctOptionIndex" not in first["content"]
    assert "solution" not in first["content"]

    attempt = attempt_service.get_attempt(db, started["attemptId"])
    assert attempt.question_marks == {q1: 2, q2: 3}
    assert scheduler.pending_jobs == []


def test_second_start_conflicts_when_max_attempts_reached(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, _, _ = objective_test(maxAttempts=1)
    started = attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)

    with pytest.raises(Conflict):
        attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)

    attempt_service.submit_test(db, started["attemptId"], now=NOW)
    with pytest.raises(Conflict):
        attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)


def test_retake_gets_next_attempt_number(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, _, _ = objective_test(maxAttempts=2)
    first = attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)
    attempt_service.submit_test(db, first["attemptId"], now=NOW)

    second = attempt_service.start_attempt(db, scheduler, test_id, "student-1", now=NOW)
    assert second["attemptNumber"] == 2


def test_start_outside_live_window_is_scheduling_conflict(
    db: DbSession,
    scheduler: InProcessScheduler,
    make_question: Callable[..., str],
    make_test: Callable[..., str],
) -> None:
    qid = make_question("true_false", correctAnswer=True)
    live_mock = make_test(
        [{"name": "A", "questionIds": [qid]}],
        mode="live_mock",
        start_time=NOW + timedelta(hours=1),
        end_time=NOW + timedelta(hours=2),
    )
    draft = make_test([{"name": "A", "questionIds": [qid]}], live=False, mode="classroom")

    with pytest.raises(SchedulingConflict):
        attempt_service.start_attempt(db, scheduler, live_mock, "s1", now=NOW)
    with pytest.raises(SchedulingConflict):
        attempt_service.start_attempt(db, scheduler, draft, "s1", now=NOW)

    started = attempt_service.start_attempt(
        db, scheduler, live_mock, "s1", now=NOW + timedelta(hours=1, minutes=5)
    )
    assert started["mode"] == "live_mock"


def test_randomized_order_stays_within_sections(
    db: DbSession,
    scheduler: InProcessScheduler,
    make_question: Callable[..., str],
    make_test: Callable[..., str],
) -> None:
    first = [make_question("true_false", correctAnswer=True) for _ in range(5)]
    second = [make_question("true_false", correctAnswer=False) for _ in range(5)]
    test_id = make_test(
        [{"name": "One", "questionIds": first}, {"name": "Two", "questionIds": second}],
        randomizeQuestions=True,
    )

    started = attempt_service.start_attempt(
        db, scheduler, test_id, "s1", now=NOW, rng=random.Random(7)
    )

    order = started["questionOrder"]
    assert sorted(order[:5]) == sorted(first)
    assert sorted(order[5:]) == sorted(second)


def test_randomized_options_are_permutations(
    db: DbSession,
    scheduler: InProcessScheduler,
    objective_test: Callable[..., tuple],
) -> None:
    test_id, q1, q2 = objective_test(randomizeOptions=True)
    started = attempt_service.start_attempt(
        db, scheduler, test_id, "s1", now=NOW, rng=random.Random(1)
    )

    assert sorted(started["optionOrders"][q1]) == [0, 1, 2]
    assert q2 not in started["optionOrders"]


def test_timed_attempt_arms_auto_submit(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, _ = objective_test(duration=30)
    started = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)

    jobs = scheduler.pending_jobs
    assert [job.kind for job in jobs] == [JobKind.AUTO_SUBMIT_ATTEMPT]
    assert jobs[0].run_at == NOW + timedelta(minutes=30)
    assert jobs[0].payload == {"attemptId": started["attemptId"]}

    with pytest.raises(Conflict):
        attempt_service.submit_answer(
            db, started["attemptId"], q1, 1, now=NOW + timedelta(minutes=31)
        )


def test_submit_answer_last_write_wins(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, _ = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    attempt_service.submit_answer(db, attempt_id, q1, 0, time_spent=5, now=NOW)
    saved = attempt_service.submit_answer(db, attempt_id, q1, 1, time_spent=9, now=NOW)

    assert saved["saved"] is True
    assert "feedback" not in saved
    state = attempt_service.get_attempt_state(db, attempt_id, now=NOW)
    assert state["answers"] == [
        {
            "questionId": q1,
            "sectionIndex": 0,
            "answer": 1,
            "flagged": False,
            "timeSpent": 9,
            "answeredAt": state["answers"][0]["answeredAt"],
        }
    ]
    assert "marksAwarded" not in state["answers"][0]


def test_submit_answer_for_foreign_question(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, _, _ = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    with pytest.raises(NotFound):
        attempt_service.submit_answer(db, attempt_id, "not-in-test", 1, now=NOW)
    with pytest.raises(NotFound):
        attempt_service.submit_answer(db, "missing", "q", 1, now=NOW)


def test_submit_grades_objective_attempt(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, q2 = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, q1, 1, now=NOW)
    attempt_service.submit_answer(db, attempt_id, q2, 10.4, now=NOW)

    submitted = attempt_service.submit_test(db, attempt_id, now=NOW)

    assert submitted["status"] == "graded"
    assert submitted["result"]["marksObtained"] == 5
    assert submitted["result"]["percentage"] == 100.0
    assert submitted["result"]["grade"] == "A+"

    attempt = attempt_service.get_attempt(db, attempt_id)
    assert attempt.graded_by == "system"
    assert all(progress.is_locked for progress in attempt.sections)

    with pytest.raises(Conflict):
        attempt_service.submit_answer(db, attempt_id, q1, 0, now=NOW)


def test_submit_is_idempotent(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, _ = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, q1, 0, now=NOW)

    first = attempt_service.submit_test(db, attempt_id, now=NOW)
    again = attempt_service.submit_test(db, attempt_id, now=NOW + timedelta(minutes=5))
    timer = attempt_service.auto_submit(db, attempt_id, now=NOW + timedelta(minutes=9))

    assert again == first
    assert timer == first


def test_subjective_answer_waits_for_manual_grading(
    db: DbSession,
    scheduler: InProcessScheduler,
    make_question: Callable[..., str],
    make_test: Callable[..., str],
) -> None:
    mcq = make_question("mcq_single", options=["x", "y"], correctOptionIndex=0)
    essay = make_question("essay", marks=5)
    test_id = make_test([{"name": "Mixed", "questionIds": [mcq, essay]}])
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, mcq, 0, now=NOW)
    attempt_service.submit_answer(db, attempt_id, essay, "An essay", now=NOW)

    notifier = RecordingNotifier()
    analytics = RecordingAnalytics()
    events = LifecycleEvents(notifier=notifier, analytics=analytics)
    submitted = attempt_service.auto_submit(db, attempt_id, events, now=NOW)

    assert submitted["status"] == "auto_submitted"
    assert submitted["result"]["totalMarks"] == 6
    assert submitted["result"]["marksObtained"] == 1
    assert submitted["result"]["subjectiveMarks"] == 0
    assert [name for name, _ in notifier.events] == ["attempt.submitted"]
    assert analytics.calls == []

    attempt = attempt_service.get_attempt(db, attempt_id)
    assert attempt.answer_for(essay).marks_awarded is None


def test_graded_submit_emits_events(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, _ = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s9", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, q1, 1, now=NOW)

    notifier = RecordingNotifier()
    analytics = RecordingAnalytics()
    attempt_service.submit_test(
        db, attempt_id, LifecycleEvents(notifier=notifier, analytics=analytics), now=NOW
    )

    assert [name for name, _ in notifier.events] == ["attempt.submitted", "attempt.graded"]
    assert analytics.calls == [("s9", test_id)]


def test_flag_question_creates_empty_entry(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, _, q2 = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    assert attempt_service.flag_question(db, attempt_id, q2, True) == {
        "questionId": q2,
        "flagged": True,
    }

    state = attempt_service.get_attempt_state(db, attempt_id, now=NOW)
    assert state["flaggedQuestions"] == [q2]
    assert state["answers"][0]["answer"] is None

    # Untouched flagged question scores zero out of its marks
    submitted = attempt_service.submit_test(db, attempt_id, now=NOW)
    assert submitted["result"]["totalMarks"] == 3
    assert submitted["result"]["marksObtained"] == 0


@pytest.fixture
def section_timed_test(make_question: Callable[..., str], make_test: Callable[..., str]) -> tuple:
    first = make_question("true_false", correctAnswer=True)
    second = make_question("true_false", correctAnswer=False)
    third = make_question("true_false", correctAnswer=True)
    test_id = make_test(
        [
            {"name": "One", "questionIds": [first], "timeLimit": 10},
            {"name": "Two", "questionIds": [second], "timeLimit": 10},
            {"name": "Three", "questionIds": [third], "timeLimit": 5},
        ],
        mode="section_timed",
    )
    return test_id, first, second, third


def test_section_timed_start_arms_timers(
    db: DbSession, scheduler: InProcessScheduler, section_timed_test: tuple
) -> None:
    test_id, first, _, _ = section_timed_test
    started = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)

    assert started["duration"] == 25
    assert [section["canGoBack"] for section in started["sections"]] == [False, False, False]
    assert [question["id"] for question in started["questions"]] == [first]

    jobs = {job.kind: job for job in scheduler.pending_jobs}
    assert jobs[JobKind.AUTO_SUBMIT_ATTEMPT].run_at == NOW + timedelta(minutes=25)
    assert jobs[JobKind.SECTION_TIMEOUT].run_at == NOW + timedelta(minutes=10)
    assert jobs[JobKind.SECTION_TIMEOUT].payload == {
        "attemptId": started["attemptId"],
        "sectionIndex": 0,
    }


def test_section_timed_sections_run_in_order(
    db: DbSession, scheduler: InProcessScheduler, section_timed_test: tuple
) -> None:
    test_id, first, second, _ = section_timed_test
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    with pytest.raises(Conflict):
        attempt_service.submit_answer(db, attempt_id, second, False, now=NOW)
    with pytest.raises(Conflict):
        attempt_service.start_section(db, scheduler, attempt_id, 2, now=NOW)

    later = NOW + timedelta(minutes=4)
    section = attempt_service.start_section(db, scheduler, attempt_id, 1, now=later)
    assert section["name"] == "Two"
    assert section["canGoBack"] is False

    status = attempt_service.get_section_status(db, attempt_id, 0, now=later)
    assert status["isLocked"] is True
    with pytest.raises(Conflict):
        attempt_service.submit_answer(db, attempt_id, first, True, now=later)

    attempt_service.submit_answer(db, attempt_id, second, False, now=later)
    with pytest.raises(Conflict):
        attempt_service.start_section(db, scheduler, attempt_id, 0, now=later)


def test_expired_section_locks_lazily(
    db: DbSession, scheduler: InProcessScheduler, section_timed_test: tuple
) -> None:
    test_id, first, _, _ = section_timed_test
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    status = attempt_service.get_section_status(db, attempt_id, 0, now=NOW + timedelta(minutes=3))
    assert status["timeRemainingSeconds"] == 420
    assert status["isLocked"] is False

    with pytest.raises(Conflict):
        attempt_service.submit_answer(
            db, attempt_id, first, True, now=NOW + timedelta(minutes=10, seconds=1)
        )
    status = attempt_service.get_section_status(db, attempt_id, 0, now=NOW + timedelta(minutes=11))
    assert status["isLocked"] is True
    assert status["timeRemainingSeconds"] == 0


def test_lock_expired_section_handler(
    db: DbSession, scheduler: InProcessScheduler, section_timed_test: tuple
) -> None:
    test_id, _, _, _ = section_timed_test
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    assert attempt_service.lock_expired_section(db, attempt_id, 0, now=NOW + timedelta(minutes=9)) is False
    assert attempt_service.lock_expired_section(db, attempt_id, 0, now=NOW + timedelta(minutes=10)) is True
    # Re-delivered timer is a no-op
    assert attempt_service.lock_expired_section(db, attempt_id, 0, now=NOW + timedelta(minutes=10)) is False
    assert attempt_service.lock_expired_section(db, "missing", 0) is False


def test_no_going_back_locks_previous_section(
    db: DbSession,
    scheduler: InProcessScheduler,
    make_question: Callable[..., str],
    make_test: Callable[..., str],
) -> None:
    first = make_question("true_false", correctAnswer=True)
    second = make_question("true_false", correctAnswer=True)
    test_id = make_test(
        [
            {"name": "One", "questionIds": [first], "canGoBack": False},
            {"name": "Two", "questionIds": [second]},
        ]
    )
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, first, True, now=NOW)

    attempt_service.start_section(db, scheduler, attempt_id, 1, now=NOW)

    with pytest.raises(Conflict):
        attempt_service.submit_answer(db, attempt_id, first, False, now=NOW)
    with pytest.raises(Conflict):
        attempt_service.start_section(db, scheduler, attempt_id, 0, now=NOW)
    with pytest.raises(NotFound):
        attempt_service.start_section(db, scheduler, attempt_id, 5, now=NOW)


def test_practice_mode_instant_feedback(
    db: DbSession,
    scheduler: InProcessScheduler,
    make_question: Callable[..., str],
    make_test: Callable[..., str],
) -> None:
    qid = make_question("numerical", marks=2, correctAnswer=3.14, tolerance=0.01, solution="pi")
    test_id = make_test([{"name": "Drill", "questionIds": [qid]}], mode="practice", instantFeedback=True)
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    saved = attempt_service.submit_answer(db, attempt_id, qid, 3, now=NOW)

    assert saved["feedback"]["isCorrect"] is False
    assert saved["feedback"]["correctAnswer"] == 3.14
    assert saved["feedback"]["solution"] == "pi"
    attempt = attempt_service.get_attempt(db, attempt_id)
    assert attempt.answer_for(qid).marks_awarded is None


def test_result_visibility_follows_options(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, _ = objective_test(showResultsAfterCompletion=False)
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]

    with pytest.raises(Conflict):
        attempt_service.get_result(db, attempt_id)

    attempt_service.submit_answer(db, attempt_id, q1, 1, now=NOW)
    attempt_service.submit_test(db, attempt_id, now=NOW)

    hidden = attempt_service.get_result(db, attempt_id)
    assert hidden["resultsAvailable"] is False
    assert hidden["result"] is None
    assert "answers" not in hidden


def test_review_requires_released_solutions(
    db: DbSession, scheduler: InProcessScheduler, objective_test: Callable[..., tuple]
) -> None:
    test_id, q1, q2 = objective_test()
    attempt_id = attempt_service.start_attempt(db, scheduler, test_id, "s1", now=NOW)["attemptId"]
    attempt_service.submit_answer(db, attempt_id, q1, 2, now=NOW)
    attempt_service.submit_test(db, attempt_id, now=NOW)

    with pytest.raises(Conflict):
        attempt_service.get_review(db, attempt_id)

    test_service.publish_results(db, test_id, "admin")
    review = attempt_service.get_review(db, attempt_id)

    first, second = review["questions"]
    assert first["question"]["id"] == q1
    assert first["answer"] == 2
    assert first["isCorrect"] is False
    assert first["correctAnswer"] == 1
    assert first["solution"] == "b is right"
    assert second["answer"] is None
    assert second["correctAnswer"] == 10


@pytest.fixture
def file_sessions(tmp_path) -> Callable[[], DbSession]:
    """Sessions on a file database, so each one has its own connection."""
    engine = create_engine(f"sqlite:///{tmp_path / 'attempts.db'}")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


def _open_attempt(factory: Callable[[], DbSession], scheduler: InProcessScheduler) -> tuple[str, str]:
    setup = factory()
    try:
        question = question_service.create_question(
            setup, QuestionCreate(type="true_false", content={"correctAnswer": True})
        )
        test = test_service.create_test(
            setup,
            test_models.TestCreate(
                title="Race", sections=[{"name": "Main", "questionIds": [question.id]}]
            ),
        )
        test_service.go_live(setup, test.id, "admin")
        attempt_id = attempt_service.start_attempt(setup, scheduler, test.id, "s1", now=NOW)[
            "attemptId"
        ]
        attempt_service.submit_answer(setup, attempt_id, question.id, True, now=NOW)
        return attempt_id, question.id
    finally:
        setup.close()


def test_timer_submit_losing_race_returns_winner(
    file_sessions: Callable[[], DbSession], scheduler: InProcessScheduler
) -> None:
    attempt_id, _ = _open_attempt(file_sessions, scheduler)
    student, timer = file_sessions(), file_sessions()
    try:
        # Timer worker read the attempt before the student submitted
        assert attempt_service.get_attempt(timer, attempt_id).status == "in_progress"

        first = attempt_service.submit_test(student, attempt_id, now=NOW + timedelta(minutes=3))
        second = attempt_service.auto_submit(timer, attempt_id, now=NOW + timedelta(minutes=4))

        assert first["status"] == "graded"
        assert first["submittedAt"] == (NOW + timedelta(minutes=3)).isoformat()
        assert second == first
    finally:
        student.close()
        timer.close()


def test_answer_after_concurrent_submit_conflicts(
    file_sessions: Callable[[], DbSession], scheduler: InProcessScheduler
) -> None:
    attempt_id, question_id = _open_attempt(file_sessions, scheduler)
    student, timer = file_sessions(), file_sessions()
    try:
        # Student session still holds the attempt, its answers and sections as open
        stale = attempt_service.get_attempt(student, attempt_id)
        assert stale.answer_for(question_id).answer is True
        assert stale.section_progress(0).is_locked is False

        attempt_service.auto_submit(timer, attempt_id, now=NOW + timedelta(minutes=5))

        with pytest.raises(Conflict):
            attempt_service.submit_answer(
                student, attempt_id, question_id, False, now=NOW + timedelta(minutes=6)
            )
    finally:
        student.close()
        timer.close()

    check = file_sessions()
    try:
        attempt = attempt_service.get_attempt(check, attempt_id)
        assert attempt.status == "graded"
        assert attempt.answer_for(question_id).answer is True
        assert attempt.result.percentage == 100.0
    finally:
        check.close()
