import threading
from datetime import timedelta

import pytest

from exam_api.services.scheduler import (
    InProcessScheduler,
    Job,
    JobDispatcher,
    JobKind,
    fire_delay,
)

from conftest import NOW


class RecordingLifecycle:
    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def go_live(self, test_id: str) -> None:
        self.calls.append(("go_live", test_id))

    def complete_test(self, test_id: str) -> None:
        self.calls.append(("complete_test", test_id))

    def auto_submit_attempt(self, attempt_id: str) -> None:
        self.calls.append(("auto_submit_attempt", attempt_id))

    def lock_expired_section(self, attempt_id: str, section_index: int) -> None:
        self.calls.append(("lock_expired_section", attempt_id, section_index))


def test_fire_delay_never_negative() -> None:
    assert fire_delay(NOW - timedelta(minutes=5), NOW) == 0
    assert fire_delay(NOW + timedelta(seconds=90), NOW) == 90


def test_run_due_jobs_only_runs_due_jobs_in_order(scheduler: InProcessScheduler) -> None:
    seen: list[str] = []
    scheduler.enqueue(JobKind.GO_LIVE, {"testId": "later"}, NOW + timedelta(minutes=10))
    scheduler.enqueue(JobKind.GO_LIVE, {"testId": "second"}, NOW - timedelta(minutes=1))
    scheduler.enqueue(JobKind.GO_LIVE, {"testId": "first"}, NOW - timedelta(minutes=2))

    ran = scheduler.run_due_jobs(lambda job: seen.append(job.payload["testId"]))

    assert ran == 2
    assert seen == ["first", "second"]
    assert [job.payload["testId"] for job in scheduler.pending_jobs] == ["later"]

    scheduler.run_due_jobs(
        lambda job: seen.append(job.payload["testId"]), now=NOW + timedelta(minutes=10)
    )
    assert seen == ["first", "second", "later"]


def test_failed_job_is_retried_until_it_succeeds(scheduler: InProcessScheduler) -> None:
    runs: list[int] = []

    def flaky(job: Job) -> None:
        runs.append(job.attempts_made)
        if len(runs) < 3:
            raise RuntimeError("database unavailable")

    scheduler.enqueue(JobKind.AUTO_SUBMIT_ATTEMPT, {"attemptId": "a1"}, NOW)
    for _ in range(3):
        scheduler.run_due_jobs(flaky)

    assert runs == [0, 1, 2]
    assert scheduler.pending_jobs == []
    assert scheduler.failed_jobs == []


def test_job_is_dropped_after_max_attempts() -> None:
    scheduler = InProcessScheduler(max_attempts=2, retry_delay=5, clock=lambda: NOW)

    def failing(job: Job) -> None:
        raise RuntimeError("boom")

    scheduler.enqueue(JobKind.AUTO_COMPLETE, {"testId": "t1"}, NOW)
    assert scheduler.run_due_jobs(failing) == 1

    retry = scheduler.pending_jobs[0]
    assert retry.run_at == NOW + timedelta(seconds=5)
    assert scheduler.run_due_jobs(failing) == 0

    assert scheduler.run_due_jobs(failing, now=NOW + timedelta(seconds=5)) == 1
    assert scheduler.pending_jobs == []
    assert [job.payload for job in scheduler.failed_jobs] == [{"testId": "t1"}]


def test_failed_jobs_keep_only_the_newest_failures() -> None:
    scheduler = InProcessScheduler(max_attempts=1, failed_jobs_kept=2, clock=lambda: NOW)

    def failing(job: Job) -> None:
        raise RuntimeError("boom")

    for index in range(3):
        scheduler.enqueue(JobKind.AUTO_COMPLETE, {"testId": f"t{index}"}, NOW)
    assert scheduler.run_due_jobs(failing) == 3

    assert scheduler.pending_jobs == []
    assert [job.payload for job in scheduler.failed_jobs] == [{"testId": "t1"}, {"testId": "t2"}]


def test_run_due_jobs_requires_handler(scheduler: InProcessScheduler) -> None:
    with pytest.raises(RuntimeError):
        scheduler.run_due_jobs()


def test_dispatcher_routes_job_kinds(scheduler: InProcessScheduler) -> None:
    lifecycle = RecordingLifecycle()
    dispatcher = JobDispatcher(lifecycle)
    scheduler.enqueue(JobKind.GO_LIVE, {"testId": "t1"}, NOW)
    scheduler.enqueue(JobKind.AUTO_COMPLETE, {"testId": "t1"}, NOW + timedelta(seconds=1))
    scheduler.enqueue(JobKind.AUTO_SUBMIT_ATTEMPT, {"attemptId": "a1"}, NOW + timedelta(seconds=2))
    scheduler.enqueue(
        JobKind.SECTION_TIMEOUT,
        {"attemptId": "a1", "sectionIndex": "2"},
        NOW + timedelta(seconds=3),
    )

    scheduler.run_due_jobs(dispatcher, now=NOW + timedelta(seconds=3))

    assert lifecycle.calls == [
        ("go_live", "t1"),
        ("complete_test", "t1"),
        ("auto_submit_attempt", "a1"),
        ("lock_expired_section", "a1", 2),
    ]


def test_dispatcher_reraises_for_retry(scheduler: InProcessScheduler) -> None:
    dispatcher = JobDispatcher(RecordingLifecycle())
    scheduler.enqueue(JobKind.GO_LIVE, {}, NOW)

    scheduler.run_due_jobs(dispatcher)

    # Missing testId raised inside the dispatcher, so the job was re-queued
    assert [job.attempts_made for job in scheduler.pending_jobs] == [1]


def test_background_thread_dispatches_due_jobs() -> None:
    scheduler = InProcessScheduler(concurrency=2, poll_interval=0.05)
    done = threading.Event()
    received: list[dict] = []

    def handler(job: Job) -> None:
        received.append(job.payload)
        done.set()

    scheduler.start(handler)
    try:
        assert scheduler.is_running
        scheduler.enqueue(JobKind.AUTO_SUBMIT_ATTEMPT, {"attemptId": "a1"}, NOW)
        assert done.wait(timeout=5)
    finally:
        scheduler.stop()

    assert received == [{"attemptId": "a1"}]
    assert not scheduler.is_running
