"""Lifecycle scheduler: delayed jobs for time-based test and attempt transitions.

Job producers depend only on ``SchedulerClient``; job handlers depend only
on the ``AttemptLifecycle`` port, so neither side imports the attempt
service. Delivery is at-least-once: a failing handler is retried with a
fixed backoff, so every lifecycle handler must be idempotent.
"""
import enum
import heapq
import itertools
import logging
import threading
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from exam_api.config import (
    SCHEDULER_CONCURRENCY,
    SCHEDULER_FAILED_JOBS_KEPT,
    SCHEDULER_MAX_ATTEMPTS,
    SCHEDULER_POLL_SECONDS,
    SCHEDULER_RETRY_DELAY_SECONDS,
)
from exam_api.utils.time_utils import as_utc, utc_now

logger = logging.getLogger(__name__)


class JobKind(str, enum.Enum):
    """Kinds of delayed lifecycle jobs."""

    GO_LIVE = "go_live"
    AUTO_COMPLETE = "auto_complete"
    AUTO_SUBMIT_ATTEMPT = "auto_submit_attempt"
    SECTION_TIMEOUT = "section_timeout"


@dataclass
class Job:
    kind: JobKind
    payload: dict[str, Any]
    run_at: datetime
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attempts_made: int = 0


JobHandler = Callable[[Job], None]


def fire_delay(target: datetime, now: datetime | None = None) -> float:
    """Seconds until target, never negative."""
    now = now or utc_now()
    return max(0.0, (as_utc(target) - as_utc(now)).total_seconds())


class SchedulerClient(Protocol):
    def enqueue(self, kind: JobKind, payload: dict[str, Any], run_at: datetime) -> str: ...


class AttemptLifecycle(Protocol):
    """Transitions the scheduler can drive. Each call re-checks state first."""

    def go_live(self, test_id: str) -> None: ...

    def complete_test(self, test_id: str) -> None: ...

    def auto_submit_attempt(self, attempt_id: str) -> None: ...

    def lock_expired_section(self, attempt_id: str, section_index: int) -> None: ...


class JobDispatcher:
    """Routes jobs to the lifecycle port and logs their outcome."""

    def __init__(self, lifecycle: AttemptLifecycle) -> None:
        self.lifecycle = lifecycle

    def __call__(self, job: Job) -> None:
        started = time.monotonic()
        logger.info(
            f"Scheduler job {job.id} ({job.kind.value}) started, attempt {job.attempts_made + 1}"
        )
        try:
            if job.kind == JobKind.GO_LIVE:
                self.lifecycle.go_live(job.payload["testId"])
            elif job.kind == JobKind.AUTO_COMPLETE:
                self.lifecycle.complete_test(job.payload["testId"])
            elif job.kind == JobKind.AUTO_SUBMIT_ATTEMPT:
                self.lifecycle.auto_submit_attempt(job.payload["attemptId"])
            elif job.kind == JobKind.SECTION_TIMEOUT:
                self.lifecycle.lock_expired_section(
                    job.payload["attemptId"], int(job.payload["sectionIndex"])
                )
            else:
                logger.warning(f"Unknown scheduler job kind {job.kind}")
                return
        except Exception as e:
            logger.error(
                f"Scheduler job {job.id} ({job.kind.value}) failed on attempt "
                f"{job.attempts_made + 1}: {e}"
            )
            raise

        duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(f"Scheduler job {job.id} ({job.kind.value}) completed in {duration_ms}ms")


class InProcessScheduler:
    """
    Delayed-job broker running inside the application process.

    Jobs wait in a heap ordered by due time. A daemon dispatcher thread
    hands due jobs to one bounded thread pool per job kind. A failing job
    is re-queued after ``retry_delay`` seconds until ``max_attempts`` is
    reached, then kept in ``failed_jobs``. Only the newest
    ``failed_jobs_kept`` failures are retained.
    """

    def __init__(
        self,
        concurrency: int = SCHEDULER_CONCURRENCY,
        max_attempts: int = SCHEDULER_MAX_ATTEMPTS,
        retry_delay: float = SCHEDULER_RETRY_DELAY_SECONDS,
        poll_interval: float = SCHEDULER_POLL_SECONDS,
        failed_jobs_kept: int = SCHEDULER_FAILED_JOBS_KEPT,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._concurrency = max(1, concurrency)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._poll_interval = poll_interval
        self._failed_jobs_kept = max(1, failed_jobs_kept)
        self._clock = clock

        self._queue: list[tuple[datetime, int, Job]] = []
        self._counter = itertools.count()
        self._condition = threading.Condition()
        self._handler: JobHandler | None = None
        self._thread: threading.Thread | None = None
        self._running = False
        self._executors: dict[JobKind, ThreadPoolExecutor] = {}
        self.failed_jobs: list[Job] = []

    def enqueue(self, kind: JobKind, payload: dict[str, Any], run_at: datetime) -> str:
        """Queue a job to fire at run_at (immediately if already past)."""
        job = Job(kind=JobKind(kind), payload=dict(payload), run_at=as_utc(run_at))
        self._push(job)
        logger.debug(
            f"Enqueued {job.kind.value} job {job.id}, fires in "
            f"{fire_delay(job.run_at, self._clock()):.1f}s"
        )
        return job.id

    @property
    def pending_jobs(self) -> list[Job]:
        with self._condition:
            return [job for _, _, job in sorted(self._queue)]

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self, handler: JobHandler) -> None:
        """Start the dispatcher thread and worker pools."""
        if self._thread is not None:
            return
        self._handler = handler
        self._executors = {
            kind: ThreadPoolExecutor(
                max_workers=self._concurrency,
                thread_name_prefix=f"scheduler_{kind.value}",
            )
            for kind in JobKind
        }
        self._running = True
        self._thread = threading.Thread(
            target=self._worker,
            name="lifecycle_scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("Lifecycle scheduler started")

    def stop(self, wait: bool = True) -> None:
        """Stop dispatching; queued jobs that are not yet due are dropped."""
        with self._condition:
            self._running = False
            self._condition.notify_all()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        for executor in self._executors.values():
            executor.shutdown(wait=wait)
        self._executors = {}
        logger.info("Lifecycle scheduler stopped")

    def run_due_jobs(
        self,
        handler: JobHandler | None = None,
        now: datetime | None = None,
    ) -> int:
        """Run every due job in the calling thread. Returns the number run."""
        handler = handler or self._handler
        if handler is None:
            raise RuntimeError("No job handler configured")
        jobs = self._pop_due(as_utc(now) if now else self._clock())
        for job in jobs:
            self._execute(job, handler)
        return len(jobs)

    def _push(self, job: Job) -> None:
        with self._condition:
            heapq.heappush(self._queue, (job.run_at, next(self._counter), job))
            self._condition.notify()

    def _pop_due(self, now: datetime) -> list[Job]:
        due = []
        with self._condition:
            while self._queue and self._queue[0][0] <= now:
                due.append(heapq.heappop(self._queue)[2])
        return due

    def _worker(self) -> None:
        while True:
            with self._condition:
                if not self._running:
                    return
                timeout = self._poll_interval
                if self._queue:
                    timeout = min(timeout, fire_delay(self._queue[0][0], self._clock()))
                if timeout > 0:
                    self._condition.wait(timeout)
                if not self._running:
                    return
            for job in self._pop_due(self._clock()):
                self._executors[job.kind].submit(self._execute, job, self._handler)

    def _execute(self, job: Job, handler: JobHandler) -> None:
        try:
            handler(job)
        except Exception as e:
            job.attempts_made += 1
            if job.attempts_made < self._max_attempts:
                job.run_at = self._clock() + timedelta(seconds=self._retry_delay)
                logger.warning(
                    f"Retrying {job.kind.value} job {job.id} in {self._retry_delay}s "
                    f"({job.attempts_made}/{self._max_attempts} attempts used)"
                )
                self._push(job)
            else:
                logger.error(
                    f"{job.kind.value} job {job.id} failed after "
                    f"{job.attempts_made} attempts: {e}"
                )
                with self._condition:
                    self.failed_jobs.append(job)
                    if len(self.failed_jobs) > self._failed_jobs_kept:
                        del self.failed_jobs[: -self._failed_jobs_kept]
