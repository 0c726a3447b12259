from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gradebook.api.deps import require_user
from gradebook.api.errors import to_http
from gradebook.db.session import get_db
from gradebook.models.assessment import Assessment
from gradebook.models.user import User
from gradebook.schemas.grading import SaveAnswersRequest, SubmitRequest
from gradebook.services.availability_service import assessment_window
from gradebook.services.errors import GradingError
from gradebook.services.submission_service import get_results, save_answers, start_attempt, submit_attempt


router = APIRouter(tags=["submissions"])


@router.post("/courses/{course_id}/assessments/{assessment_id}/start")
def start(
    request: Request,
    course_id: int,
    assessment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    try:
        data = start_attempt(db, course_id, assessment_id, int(user.id))
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.put("/submissions/{submission_id}/answers")
def save(
    request: Request,
    submission_id: int,
    payload: SaveAnswersRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    try:
        data = save_answers(db, submission_id, int(user.id), payload.as_mapping())
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/courses/{course_id}/assessments/{assessment_id}/submit")
def submit(
    request: Request,
    course_id: int,
    assessment_id: int,
    payload: SubmitRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    try:
        data = submit_attempt(db, course_id, assessment_id, int(user.id), payload.as_mapping())
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.get("/courses/{course_id}/assessments/{assessment_id}/results")
def results(
    request: Request,
    course_id: int,
    assessment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    try:
        data = get_results(db, course_id, assessment_id, int(user.id))
    except GradingError as e:
        raise to_http(e)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.get("/assessments/{assessment_id}/window")
def window(request: Request, assessment_id: int, db: Session = Depends(get_db)):
    assessment = db.query(Assessment).filter(Assessment.id == int(assessment_id)).first()
    if not assessment:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return {"request_id": request.state.request_id, "data": assessment_window(assessment), "error": None}
