from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from gradebook.db.session import get_or_create
from gradebook.models.assessment import Assessment
from gradebook.models.course import CourseEnrollment
from gradebook.models.submission import Submission
from gradebook.services import grading_engine
from gradebook.services.availability_service import exam_status, time_remaining_seconds
from gradebook.services.errors import AccessDenied, AssessmentNotFound, SubmissionNotFound, SubmissionStateError
from gradebook.services.grading_service import grade_in_session, submission_out

logger = logging.getLogger(__name__)


def _clean_answers(answers: Any) -> Dict[str, Any]:
    """Answers keyed by question id as strings (the JSON column shape)."""
    if isinstance(answers, list):
        return {
            str(a.get("question_id")): a.get("answer")
            for a in answers
            if isinstance(a, dict) and a.get("question_id") is not None
        }
    return {str(k): v for k, v in (answers or {}).items()}


def _get_assessment(db: Session, course_id: int, assessment_id: int) -> Assessment:
    assessment = (
        db.query(Assessment)
        .filter(Assessment.id == int(assessment_id), Assessment.course_id == int(course_id))
        .first()
    )
    if not assessment:
        raise AssessmentNotFound(f"Assessment {assessment_id} not found in course {course_id}")
    return assessment


def _ensure_can_take(db: Session, assessment: Assessment, user_id: int) -> None:
    enrolled = (
        db.query(CourseEnrollment)
        .filter(CourseEnrollment.course_id == int(assessment.course_id), CourseEnrollment.user_id == int(user_id))
        .first()
    )
    if not enrolled:
        raise AccessDenied("You are not enrolled in this course")
    if not assessment.is_published:
        raise AccessDenied("This assessment is not published")


def _find_submission(db: Session, course_id: int, assessment_id: int, user_id: int) -> Optional[Submission]:
    return (
        db.query(Submission)
        .filter(
            Submission.course_id == int(course_id),
            Submission.assessment_id == int(assessment_id),
            Submission.user_id == int(user_id),
        )
        .first()
    )


def _attempt_out(submission: Submission, assessment: Assessment, *, already_submitted: bool, now: Optional[datetime] = None) -> Dict[str, Any]:
    return {
        "submission_id": int(submission.id),
        "assessment_id": int(assessment.id),
        "title": assessment.title,
        "kind": assessment.kind,
        "already_submitted": already_submitted,
        "answers": submission.answers or {},
        "time_limit": assessment.time_limit,
        "time_remaining_seconds": time_remaining_seconds(assessment.time_limit, submission.created_at, now),
        "questions": [_question_out(q) for q in assessment.questions or []],
    }


def _question_out(q: Any) -> Dict[str, Any]:
    # Learner-facing: never expose the correct answer
    return {
        "question_id": int(q.id),
        "question_number": int(q.question_number or 0),
        "type": q.type,
        "question_text": q.question_text,
        "points": int(q.points or 0),
        "choices": list(q.choices or []),
    }


def start_attempt(db: Session, course_id: int, assessment_id: int, user_id: int, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    assessment = _get_assessment(db, course_id, assessment_id)
    _ensure_can_take(db, assessment, user_id)

    submission = _find_submission(db, course_id, assessment_id, user_id)
    if submission and submission.finished:
        return _attempt_out(submission, assessment, already_submitted=True, now=now)

    if assessment.is_exam:
        status = exam_status(assessment.open_at, assessment.close_at, now)
        if status["code"] != "open":
            raise SubmissionStateError(status["message"])

    if not submission:
        # A double-clicked "start" may race; the loser reuses the winner's row
        submission, created = get_or_create(
            db,
            Submission,
            defaults={"answers": {}, "finished": False, "auto_grading_status": "unGraded"},
            course_id=int(course_id),
            assessment_id=int(assessment_id),
            user_id=int(user_id),
        )
        if not created and submission.finished:
            return _attempt_out(submission, assessment, already_submitted=True, now=now)
        db.commit()
        db.refresh(submission)
        if created:
            logger.info("Attempt started: submission=%s assessment=%s user=%s", submission.id, assessment_id, user_id)

    return _attempt_out(submission, assessment, already_submitted=False, now=now)


def save_answers(db: Session, submission_id: int, user_id: int, answers: Any) -> Dict[str, Any]:
    submission = db.query(Submission).filter(Submission.id == int(submission_id)).first()
    if not submission:
        raise SubmissionNotFound(f"Submission {submission_id} not found")
    if int(submission.user_id) != int(user_id):
        raise AccessDenied("This submission belongs to another user")
    if submission.finished:
        raise SubmissionStateError("Submission is already finished")

    merged = dict(submission.answers or {})
    merged.update(_clean_answers(answers))
    submission.answers = merged
    flag_modified(submission, "answers")
    db.commit()
    return {"submission_id": int(submission.id), "answers": merged, "finished": False}


def submit_attempt(
    db: Session,
    course_id: int,
    assessment_id: int,
    user_id: int,
    answers: Any = None,
    *,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Finish the learner's attempt and auto-grade it in the same transaction."""
    assessment = _get_assessment(db, course_id, assessment_id)
    submission = _find_submission(db, course_id, assessment_id, user_id)
    if not submission:
        raise SubmissionNotFound("No attempt has been started for this assessment")
    if submission.finished:
        raise SubmissionStateError("This assessment has already been submitted")

    result = None
    try:
        merged = dict(submission.answers or {})
        merged.update(_clean_answers(answers))
        submission.answers = merged
        flag_modified(submission, "answers")
        submission.finished = True
        submission.submitted_at = now or datetime.now(timezone.utc)

        if grading_engine.can_auto_grade(assessment.questions or []) and submission.answers:
            result = grade_in_session(db, submission, assessment, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Submission %s finished (auto-graded=%s)",
        submission.id,
        result is not None,
    )
    return submission_out(submission, result)


def get_results(db: Session, course_id: int, assessment_id: int, user_id: int) -> Dict[str, Any]:
    assessment = _get_assessment(db, course_id, assessment_id)
    submission = _find_submission(db, course_id, assessment_id, user_id)
    if not submission:
        raise SubmissionNotFound("No submission for this assessment")

    out = submission_out(submission)
    out["title"] = assessment.title
    out["kind"] = assessment.kind
    out["questions"] = [_question_out(q) for q in assessment.questions or []]
    return out
