"""
Question bank record, consumed read-only by grading.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from exam_api.database import Base
from exam_api.utils.json_utils import dump_json_column, load_json_column


class Question(Base):
    """Typed question with per-type content and its marks."""

    __tablename__ = "questions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    content_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    marks: Mapped[float] = mapped_column(default=1.0, nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    subject_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    @property
    def content(self) -> dict[str, Any]:
        """Parse content from JSON."""
        data = load_json_column(self.content_json, {})
        return data if isinstance(data, dict) else {}

    @content.setter
    def content(self, value: dict[str, Any] | None) -> None:
        """Serialize content to JSON."""
        self.content_json = dump_json_column(value or {})
