from __future__ import annotations

import logging

from gradebook.db.session import SessionLocal
from gradebook.services.grading_service import regrade_assessment

logger = logging.getLogger(__name__)


def task_regrade_assessment(assessment_id: int) -> dict:
    """Worker entry point: re-grade all finished submissions of an assessment."""
    db = SessionLocal()
    try:
        counts = regrade_assessment(db, int(assessment_id))
        return {"assessment_id": int(assessment_id), **counts}
    finally:
        db.close()
