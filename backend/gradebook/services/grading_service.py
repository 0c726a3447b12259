from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from gradebook.models.assessment import Assessment
from gradebook.models.submission import Submission
from gradebook.services import grading_engine
from gradebook.services.course_grade_service import upsert_grade
from gradebook.services.errors import AssessmentNotFound, SubmissionNotFound, SubmissionNotGradable
from gradebook.services.notification_service import notify_submission_graded

logger = logging.getLogger(__name__)


def _load_submission(db: Session, submission_id: int) -> Submission:
    submission = db.query(Submission).filter(Submission.id == int(submission_id)).first()
    if not submission:
        raise SubmissionNotFound(f"Submission {submission_id} not found")
    return submission


def _load_assessment(db: Session, assessment_id: int) -> Optional[Assessment]:
    return db.query(Assessment).filter(Assessment.id == int(assessment_id)).first()


def _record_grade(db: Session, submission: Submission, assessment: Optional[Assessment]) -> None:
    if assessment is None:
        return
    upsert_grade(
        db,
        course_id=int(submission.course_id),
        student_id=int(submission.user_id),
        assessment_id=int(submission.assessment_id),
        score=submission.score or 0,
        # Computed max of the graded questions, not the nominal assessment max
        max_score=submission.max_score or 0,
        weight=int(assessment.weight or 0),
        type=assessment.kind,
        title=assessment.title,
        graded_at=submission.graded_at,
    )


def submission_out(submission: Submission, result: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    percentage = submission.percentage or 0
    return {
        "submission_id": int(submission.id),
        "assessment_id": int(submission.assessment_id),
        "course_id": int(submission.course_id),
        "user_id": int(submission.user_id),
        "finished": bool(submission.finished),
        "submitted_at": submission.submitted_at.isoformat() if submission.submitted_at else None,
        "auto_grading_status": submission.auto_grading_status,
        "total_score": submission.score,
        "max_score": submission.max_score,
        "percentage": percentage,
        "letter_grade": grading_engine.letter_grade(percentage),
        "requires_manual_grading": bool(result["requires_manual_grading"]) if result else submission.auto_grading_status == "PartiallyGraded",
        "graded_at": submission.graded_at.isoformat() if submission.graded_at else None,
        "grading_details": submission.grading_details or {},
    }


def grade_in_session(
    db: Session,
    submission: Submission,
    assessment: Optional[Assessment],
    *,
    notify: bool = True,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Grade ``submission`` and stage every write on ``db`` without committing.

    Manual scores a teacher already gave are carried over, so re-grading
    never erases them.
    """
    grading_engine.ensure_gradable(submission)
    previous = grading_engine.carried_manual_grades(submission.grading_details)

    questions = list(assessment.questions or []) if assessment is not None else []
    result = grading_engine.grade_answers(questions, submission.answers)
    if previous:
        result = grading_engine.apply_manual_grades(result, previous)

    grading_engine.apply_result(submission, result, now=now)
    flag_modified(submission, "grading_details")
    _record_grade(db, submission, assessment)

    if notify:
        notify_submission_graded(db, submission=submission, assessment=assessment)
    return result


def auto_grade_submission(db: Session, submission_id: int, *, notify: bool = True) -> Dict[str, Any]:
    submission = _load_submission(db, submission_id)
    assessment = _load_assessment(db, submission.assessment_id)

    try:
        result = grade_in_session(db, submission, assessment, notify=notify)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Auto-graded submission %s: %s/%s (%s%%) status=%s",
        submission.id,
        result["total_score"],
        result["max_score"],
        result["percentage"],
        submission.auto_grading_status,
    )
    return submission_out(submission, result)


def grade_manual_questions(
    db: Session,
    submission_id: int,
    grades: Dict[str, Dict[str, Any]],
    graded_by: int,
) -> Dict[str, Any]:
    """Apply teacher scores to the manually graded questions of a submission."""
    submission = _load_submission(db, submission_id)
    if not submission.finished:
        raise SubmissionNotGradable("Submission is not finished")
    if not submission.grading_details:
        raise SubmissionNotGradable("Submission has not been auto-graded yet")

    assessment = _load_assessment(db, submission.assessment_id)
    current = grading_engine.summarize_details(submission.grading_details)
    result = grading_engine.apply_manual_grades(current, {str(k): v for k, v in (grades or {}).items()})

    try:
        grading_engine.apply_result(submission, result)
        submission.graded_by = int(graded_by)
        flag_modified(submission, "grading_details")
        _record_grade(db, submission, assessment)
        notify_submission_graded(db, submission=submission, assessment=assessment, manual=True)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Manual grades applied to submission %s by user %s", submission.id, graded_by)
    return submission_out(submission, result)


def regrade_assessment(db: Session, assessment_id: int) -> Dict[str, int]:
    """Re-grade every finished submission of an assessment, one transaction each."""
    assessment = _load_assessment(db, assessment_id)
    if not assessment:
        raise AssessmentNotFound(f"Assessment {assessment_id} not found")

    submissions = (
        db.query(Submission)
        .filter(Submission.assessment_id == int(assessment_id), Submission.finished.is_(True))
        .order_by(Submission.id.asc())
        .all()
    )

    counts = {"regraded": 0, "skipped": 0, "failed": 0}
    now = datetime.now(timezone.utc)
    for submission in submissions:
        if not submission.answers:
            counts["skipped"] += 1
            continue
        try:
            grade_in_session(db, submission, assessment, notify=False, now=now)
            db.commit()
            counts["regraded"] += 1
        except Exception:
            db.rollback()
            counts["failed"] += 1
            logger.error("Re-grade failed for submission %s", submission.id, exc_info=True)

    logger.info("Re-graded assessment %s: %s", assessment_id, counts)
    return counts
