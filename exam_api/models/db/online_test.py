"""
Test definition model: sections, options, scheduling and status.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from exam_api.database import Base
from exam_api.models.tests import TestOptions, TestSection
from exam_api.utils.json_utils import dump_json_column, load_json_column


class TestStatus(str, enum.Enum):
    """Lifecycle status of a test definition."""

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    LIVE = "live"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TestMode(str, enum.Enum):
    """Delivery mode; decides the availability window and section rules."""

    LIVE_MOCK = "live_mock"
    ANYTIME_MOCK = "anytime_mock"
    PRACTICE = "practice"
    CLASSROOM = "classroom"
    SECTION_TIMED = "section_timed"


class OnlineTest(Base):
    """
    Test definition record.
    Sections and options are stored as JSON documents.
    """

    __tablename__ = "online_tests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    mode: Mapped[str] = mapped_column(
        String(20), default=TestMode.ANYTIME_MOCK.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=TestStatus.DRAFT.value, nullable=False, index=True
    )

    # Scheduling
    start_time: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    end_time: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    available_from: Mapped[datetime | None] = mapped_column(
        sa.DateTime(timezone=True), nullable=True
    )
    duration_minutes: Mapped[float] = mapped_column(default=0, nullable=False)

    sections_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    options_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    results_published: Mapped[bool] = mapped_column(default=False, nullable=False)
    created_by: Mapped[str] = mapped_column(String(200), default="system", nullable=False)
    updated_by: Mapped[str] = mapped_column(String(200), default="system", nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def sections(self) -> list[TestSection]:
        """Parse sections from JSON."""
        data = load_json_column(self.sections_json, [])
        if not isinstance(data, list):
            return []
        return [TestSection.model_validate(item) for item in data]

    @sections.setter
    def sections(self, value: list[TestSection] | None) -> None:
        """Serialize sections to JSON."""
        self.sections_json = dump_json_column(
            [section.model_dump() for section in value or []]
        )

    @property
    def options(self) -> TestOptions:
        """Parse options from JSON, filling defaults."""
        data = load_json_column(self.options_json, {})
        return TestOptions.model_validate(data if isinstance(data, dict) else {})

    @options.setter
    def options(self, value: TestOptions | None) -> None:
        """Serialize options to JSON."""
        self.options_json = dump_json_column((value or TestOptions()).model_dump())

    @property
    def question_ids(self) -> list[str]:
        """All question ids in section order."""
        return [qid for section in self.sections for qid in section.questionIds]

    def section_index_of(self, question_id: str) -> int | None:
        """Index of the section containing a question."""
        for index, section in enumerate(self.sections):
            if question_id in section.questionIds:
                return index
        return None

    @property
    def is_section_timed(self) -> bool:
        return self.mode == TestMode.SECTION_TIMED.value
