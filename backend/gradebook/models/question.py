from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, validates

from gradebook.db.base_class import Base
from gradebook.services.grading_engine import normalize_mcq_answer, normalize_true_false_answer


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(primary_key=True)
    assessment_id: Mapped[int] = mapped_column(ForeignKey("assessments.id", ondelete="CASCADE"), index=True, nullable=False)
    question_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # MCQ | TrueFalse | ShortAnswer | Essay
    type: Mapped[str] = mapped_column(String(30), nullable=False, default="MCQ")
    question_text: Mapped[str] = mapped_column(Text, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))

    # MCQ / TrueFalse
    choices: Mapped[list[str]] = mapped_column(JSONB, nullable=False, default=list, server_default=text("'[]'::jsonb"))

    # MCQ: choice index (0, 1, ...).
    # TrueFalse: list of accepted values ("true" / "false").
    # ShortAnswer: accepted text, or a list of accepted texts.
    answer: Mapped[Any] = mapped_column(JSONB, nullable=True)

    # ShortAnswer: exact text match (True) or keyword match (False)
    text_match: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    auto_graded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @validates("answer")
    def _normalize_answer(self, key: str, value: Any) -> Any:
        """Store the canonical answer key; raises InvalidQuestionData on bad data.

        Set ``type`` and ``choices`` before ``answer``.
        """
        if value is None:
            return value
        if self.type == "MCQ" and self.choices:
            return int(normalize_mcq_answer(self.choices, value))
        if self.type == "TrueFalse":
            return normalize_true_false_answer(value)
        return value
