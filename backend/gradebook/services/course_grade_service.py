from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from gradebook.db.session import get_or_create
from gradebook.models.grade import Grade, GradesSummary
from gradebook.models.user import User
from gradebook.services.grading_engine import letter_grade, round_half_up

logger = logging.getLogger(__name__)


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def weighted_contribution(grade: Any) -> float:
    """``(score / max_score) * weight``; 0 when score or max_score is falsy.

    Weights are taken literally and are not normalised against the sum of
    weights in the course, so a course whose weights add up to more than 1
    produces totals above 100.
    """
    score = _attr(grade, "score")
    max_score = _attr(grade, "max_score")
    if not score or not max_score:
        return 0.0
    weight = float(_attr(grade, "weight") or 0)
    return (float(score) / float(max_score)) * weight


def _pct(grades: Iterable[Any]) -> int:
    return int(round_half_up(100 * sum(weighted_contribution(g) for g in grades)))


def summarize_student_grades(grades: Iterable[Any]) -> Dict[str, Any]:
    rows = list(grades or [])
    exams = [g for g in rows if _attr(g, "type") == "Exam"]
    assignments = [g for g in rows if _attr(g, "type") == "Assignment"]

    total = _pct(rows)
    return {
        "total_score_pct": total,
        "exams_score_pct": _pct(exams),
        "assignments_score_pct": _pct(assignments),
        "grade_letter": letter_grade(total),
    }


def _grade_row_out(g: Grade) -> Dict[str, Any]:
    return {
        "assessment_id": int(g.assessment_id),
        "title": g.title,
        "type": g.type,
        "score": g.score,
        "max_score": g.max_score,
        "weight": g.weight,
        "graded_at": g.graded_at.isoformat() if g.graded_at else None,
    }


def get_course_grades_summary(db: Session, course_id: int) -> Dict[str, Any]:
    """Per-student aggregate for a course, recomputed from the stored Grade rows."""
    summary = db.query(GradesSummary).filter(GradesSummary.course_id == int(course_id)).first()
    if not summary:
        return {"course_id": int(course_id), "students": []}

    rows = (
        db.query(Grade)
        .filter(Grade.grades_summary_id == int(summary.id))
        .order_by(Grade.student_id.asc(), Grade.assessment_id.asc())
        .all()
    )

    by_student: "OrderedDict[int, List[Grade]]" = OrderedDict()
    for g in rows:
        by_student.setdefault(int(g.student_id), []).append(g)

    names: Dict[int, str] = {}
    if by_student:
        users = db.query(User).filter(User.id.in_(list(by_student.keys()))).all()
        names = {int(u.id): (u.full_name or u.email) for u in users}

    students = []
    for student_id, grades in by_student.items():
        item = {"student_id": student_id, "student_name": names.get(student_id)}
        item.update(summarize_student_grades(grades))
        item["grades"] = [_grade_row_out(g) for g in grades]
        students.append(item)

    return {"course_id": int(course_id), "students": students}


def get_or_create_summary(db: Session, course_id: int) -> GradesSummary:
    summary, _ = get_or_create(db, GradesSummary, course_id=int(course_id))
    return summary


def upsert_grade(
    db: Session,
    *,
    course_id: int,
    student_id: int,
    assessment_id: int,
    score: float,
    max_score: float,
    weight: int,
    type: str,
    title: str,
    graded_at: Optional[datetime] = None,
) -> Grade:
    """Insert or update the Grade keyed by (course summary, student, assessment).

    Safe under concurrent graders: a lost insert race falls back to the row
    the other writer created, which is then updated (last write wins).
    Flushes but never commits; the caller owns the transaction.
    """
    summary = get_or_create_summary(db, course_id)
    fields = {
        "score": float(score or 0),
        "max_score": float(max_score or 0),
        "weight": int(weight or 0),
        "type": str(type),
        "title": str(title),
        "graded_at": graded_at or datetime.now(timezone.utc),
    }
    grade, created = get_or_create(
        db,
        Grade,
        defaults=fields,
        grades_summary_id=int(summary.id),
        student_id=int(student_id),
        assessment_id=int(assessment_id),
    )
    if not created:
        for name, value in fields.items():
            setattr(grade, name, value)
        db.flush()

    logger.debug("Grade upserted student=%s assessment=%s score=%s/%s", student_id, assessment_id, score, max_score)
    return grade
