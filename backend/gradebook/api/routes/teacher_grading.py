from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gradebook.api.deps import require_teacher
from gradebook.api.errors import to_http
from gradebook.db.session import get_db
from gradebook.infra.queue import enqueue
from gradebook.models.assessment import Assessment
from gradebook.models.user import User
from gradebook.schemas.grading import ManualGradeRequest
from gradebook.services.errors import GradingError
from gradebook.services.grading_service import auto_grade_submission, grade_manual_questions
from gradebook.tasks.regrade_tasks import task_regrade_assessment


router = APIRouter(prefix="/teacher", tags=["teacher-grading"])


@router.post("/submissions/{submission_id}/grade")
def grade_submission(
    request: Request,
    submission_id: int,
    payload: ManualGradeRequest,
    db: Session = Depends(get_db),
    teacher: User = Depends(require_teacher),
):
    try:
        data = grade_manual_questions(db, submission_id, payload.as_mapping(), graded_by=int(teacher.id))
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/submissions/{submission_id}/regrade")
def regrade_submission(
    request: Request,
    submission_id: int,
    db: Session = Depends(get_db),
    teacher: User = Depends(require_teacher),
):
    try:
        data = auto_grade_submission(db, submission_id)
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/assessments/{assessment_id}/regrade")
def regrade_assessment(
    request: Request,
    assessment_id: int,
    db: Session = Depends(get_db),
    teacher: User = Depends(require_teacher),
):
    exists = db.query(Assessment.id).filter(Assessment.id == int(assessment_id)).first()
    if not exists:
        raise HTTPException(status_code=404, detail="Assessment not found")
    res = enqueue(task_regrade_assessment, int(assessment_id), queue_name="grading")
    return {"request_id": request.state.request_id, "data": res, "error": None}
