from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.orm import Session

from gradebook.core.config import settings
from gradebook.models.notification import Notification, NotificationType

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    *,
    user_id: int,
    type: str,
    title: str,
    message: str,
    level: str = "info",
    data: dict[str, Any] | None = None,
    action_url: str | None = None,
) -> Notification:
    """Stage a notification row; flushed, committed by the caller."""
    row = Notification(
        user_id=int(user_id),
        type=NotificationType(type),
        level=str(level),
        title=str(title),
        message=str(message),
        payload_json=data or {},
        action_url=action_url,
        is_read=False,
    )
    db.add(row)
    db.flush()
    return row


def notify_submission_graded(
    db: Session,
    *,
    submission: Any,
    assessment: Any,
    manual: bool = False,
) -> Notification | None:
    if not settings.GRADE_NOTIFICATIONS_ENABLED:
        return None

    title = str(getattr(assessment, "title", "") or f"Assessment {submission.assessment_id}")
    pending = submission.auto_grading_status == "PartiallyGraded"
    if manual:
        message = f"Your submission for {title} has been graded."
    elif pending:
        message = f"Your submission for {title} was auto-graded. Some answers are waiting for your teacher."
    else:
        message = f"Your submission for {title} has been auto-graded."

    row = create_notification(
        db,
        user_id=int(submission.user_id),
        type=(NotificationType.submission_graded if manual else NotificationType.assessment_graded).value,
        title="Submission Graded" if manual else "Assessment Graded",
        message=message,
        level="info" if pending else "success",
        data={
            "submission_id": int(submission.id),
            "assessment_id": int(submission.assessment_id),
            "course_id": int(submission.course_id),
            "score": submission.score,
            "max_score": submission.max_score,
            "percentage": submission.percentage,
        },
        action_url=f"/courses/{submission.course_id}/assessments/{submission.assessment_id}/results",
    )
    logger.info("[NOTIFY] user_id=%s: %s", submission.user_id, message)
    return row
