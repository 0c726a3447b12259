from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gradebook.db.base_class import Base


class Assessment(Base):
    """An exam or a quiz-style assignment owning an ordered set of questions.

    Exams and assignments share one table; ``kind`` tells them apart and only
    exams use the ``open_at`` / ``close_at`` window.
    """

    __tablename__ = "assessments"

    id: Mapped[int] = mapped_column(primary_key=True)
    course_id: Mapped[int] = mapped_column(ForeignKey("courses.id", ondelete="CASCADE"), index=True, nullable=False)
    created_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    # Exam | Assignment
    kind: Mapped[str] = mapped_column(String(20), nullable=False, default="Assignment", server_default=text("'Assignment'"))
    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Nominal max score and relative weight used by the course-wide aggregate.
    max_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    # published | unpublished
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="unpublished", server_default=text("'unpublished'"))

    # Minutes a learner has once an attempt is started (null = untimed)
    time_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Exam-only window
    open_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    close_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    questions = relationship(
        "Question",
        order_by="Question.question_number",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_exam(self) -> bool:
        return self.kind == "Exam"

    @property
    def is_published(self) -> bool:
        return self.visibility == "published"
