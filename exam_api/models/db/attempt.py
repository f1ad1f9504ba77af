"""
Attempt, section progress and answer models for the test-taking state machine.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from exam_api.database import Base
from exam_api.models.results import AttemptResult
from exam_api.utils.json_utils import dump_json_column, load_json_column


class AttemptStatus(str, enum.Enum):
    """Status of a test attempt. Transitions only move forward."""

    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    AUTO_SUBMITTED = "auto_submitted"
    GRADED = "graded"


TERMINAL_STATUSES = frozenset(
    {
        AttemptStatus.SUBMITTED.value,
        AttemptStatus.AUTO_SUBMITTED.value,
        AttemptStatus.GRADED.value,
    }
)

# Submitted but not yet finalized
AWAITING_GRADING_STATUSES = frozenset(
    {AttemptStatus.SUBMITTED.value, AttemptStatus.AUTO_SUBMITTED.value}
)


class Attempt(Base):
    """
    One student's attempt at a test.
    Keyed by (test_id, student_id, attempt_number).
    """

    __tablename__ = "attempts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)

    # References
    test_id: Mapped[str] = mapped_column(
        ForeignKey("online_tests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    attempt_number: Mapped[int] = mapped_column(default=1, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=AttemptStatus.IN_PROGRESS.value, nullable=False, index=True
    )

    # Timing
    started_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    submitted_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    due_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    auto_saved_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    current_section_index: Mapped[int] = mapped_column(default=0, nullable=False)

    # Client context
    ip_address: Mapped[str] = mapped_column(String(64), default="", nullable=False)
    user_agent: Mapped[str] = mapped_column(String(500), default="", nullable=False)

    # Snapshots taken at start (stored as JSON strings)
    question_order_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    option_orders_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    question_marks_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Result and grading metadata
    result_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    graded_by: Mapped[str | None] = mapped_column(String(200), nullable=True)
    graded_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        UniqueConstraint(
            "test_id", "student_id", "attempt_number", name="uq_attempt_number"
        ),
    )

    # Relationships
    answers: Mapped[list["AttemptAnswer"]] = relationship(
        "AttemptAnswer",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="AttemptAnswer.id",
    )
    sections: Mapped[list["AttemptSectionProgress"]] = relationship(
        "AttemptSectionProgress",
        back_populates="attempt",
        cascade="all, delete-orphan",
        order_by="AttemptSectionProgress.section_index",
    )

    @property
    def question_order(self) -> list[str]:
        data = load_json_column(self.question_order_json, [])
        return data if isinstance(data, list) else []

    @question_order.setter
    def question_order(self, value: list[str]) -> None:
        self.question_order_json = dump_json_column(list(value))

    @property
    def option_orders(self) -> dict[str, list[int]]:
        data = load_json_column(self.option_orders_json, {})
        return data if isinstance(data, dict) else {}

    @option_orders.setter
    def option_orders(self, value: dict[str, list[int]]) -> None:
        self.option_orders_json = dump_json_column(dict(value))

    @property
    def question_marks(self) -> dict[str, float]:
        """Max marks per question, frozen at start time."""
        data = load_json_column(self.question_marks_json, {})
        return data if isinstance(data, dict) else {}

    @question_marks.setter
    def question_marks(self, value: dict[str, float]) -> None:
        self.question_marks_json = dump_json_column(dict(value))

    @property
    def result(self) -> AttemptResult | None:
        """Parse result from JSON."""
        data = load_json_column(self.result_json, None)
        if not isinstance(data, dict):
            return None
        return AttemptResult.model_validate(data)

    @result.setter
    def result(self, value: AttemptResult | None) -> None:
        """Serialize result to JSON."""
        self.result_json = dump_json_column(value.model_dump() if value else None)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def answer_for(self, question_id: str) -> "AttemptAnswer | None":
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None

    def section_progress(self, section_index: int) -> "AttemptSectionProgress | None":
        for progress in self.sections:
            if progress.section_index == section_index:
                return progress
        return None


class AttemptSectionProgress(Base):
    """Per-section timing and lock state within an attempt."""

    __tablename__ = "attempt_sections"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    attempt_id: Mapped[str] = mapped_column(
        ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    section_index: Mapped[int] = mapped_column(nullable=False)
    started_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    time_spent: Mapped[int] = mapped_column(default=0, nullable=False)  # seconds
    is_locked: Mapped[bool] = mapped_column(default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", "section_index", name="uq_attempt_section"),
    )

    attempt: Mapped["Attempt"] = relationship("Attempt", back_populates="sections")


class AttemptAnswer(Base):
    """
    Answer entry for one touched question.
    max_marks is a snapshot taken at attempt start.
    """

    __tablename__ = "attempt_answers"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    attempt_id: Mapped[str] = mapped_column(
        ForeignKey("attempts.id", ondelete="CASCADE"), nullable=False, index=True
    )

    question_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    section_index: Mapped[int] = mapped_column(default=0, nullable=False)

    answer_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_correct: Mapped[bool | None] = mapped_column(nullable=True)
    marks_awarded: Mapped[float | None] = mapped_column(nullable=True)
    max_marks: Mapped[float] = mapped_column(default=1.0, nullable=False)
    time_spent: Mapped[int] = mapped_column(default=0, nullable=False)  # seconds
    flagged: Mapped[bool] = mapped_column(default=False, nullable=False)
    answered_at: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    feedback: Mapped[str] = mapped_column(Text, default="", nullable=False)

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_attempt_question"),
    )

    attempt: Mapped["Attempt"] = relationship("Attempt", back_populates="answers")

    @property
    def answer(self) -> Any:
        """Parse the student's answer from JSON."""
        return load_json_column(self.answer_json, None)

    @answer.setter
    def answer(self, value: Any) -> None:
        """Serialize the student's answer to JSON."""
        self.answer_json = dump_json_column(value)
