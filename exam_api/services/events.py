"""Outbound lifecycle events for the notification and analytics collaborators.

Delivery is best effort: a failing collaborator is logged and never
rolls back the transition that produced the event.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, event: str, payload: dict[str, Any]) -> None: ...


class AnalyticsTrigger(Protocol):
    def recompute(self, student_id: str, test_id: str) -> None: ...


class LoggingNotifier:
    """Default notifier: records events in the log."""

    def notify(self, event: str, payload: dict[str, Any]) -> None:
        logger.info(f"Event {event}: {payload}")


class LoggingAnalyticsTrigger:
    """Default analytics trigger: records the recompute request in the log."""

    def recompute(self, student_id: str, test_id: str) -> None:
        logger.info(f"Analytics recompute requested for student {student_id} on test {test_id}")


@dataclass
class LifecycleEvents:
    notifier: Notifier = field(default_factory=LoggingNotifier)
    analytics: AnalyticsTrigger = field(default_factory=LoggingAnalyticsTrigger)

    def _notify(self, event: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.notify(event, payload)
        except Exception as e:
            logger.warning(f"Failed to deliver {event} event: {e}")

    def attempt_submitted(self, attempt_id: str, test_id: str, student_id: str, status: str) -> None:
        self._notify(
            "attempt.submitted",
            {"attemptId": attempt_id, "testId": test_id, "studentId": student_id, "status": status},
        )

    def attempt_graded(self, attempt_id: str, test_id: str, student_id: str) -> None:
        self._notify(
            "attempt.graded",
            {"attemptId": attempt_id, "testId": test_id, "studentId": student_id},
        )
        try:
            self.analytics.recompute(student_id, test_id)
        except Exception as e:
            logger.warning(
                f"Failed to queue analytics recompute for student {student_id}: {e}"
            )

    def test_went_live(self, test_id: str) -> None:
        self._notify("test.live", {"testId": test_id})

    def test_completed(self, test_id: str) -> None:
        self._notify("test.completed", {"testId": test_id})

    def test_graded(self, test_id: str, graded_count: int) -> None:
        self._notify("test.graded", {"testId": test_id, "gradedCount": graded_count})

    def results_available(self, test_id: str) -> None:
        self._notify("test.results_available", {"testId": test_id})
