from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from gradebook.api.deps import require_user
from gradebook.db.session import get_db
from gradebook.models.user import User
from gradebook.services.course_grade_service import get_course_grades_summary


router = APIRouter(tags=["grades"])


@router.get("/courses/{course_id}/grades")
def course_grades(
    request: Request,
    course_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = get_course_grades_summary(db, course_id)
    # Students only see their own row
    if user.role != "teacher":
        data["students"] = [s for s in data["students"] if int(s["student_id"]) == int(user.id)]
    return {"request_id": request.state.request_id, "data": data, "error": None}
