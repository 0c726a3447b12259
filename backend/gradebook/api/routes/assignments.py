from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from gradebook.db.session import get_db
from gradebook.models.assignment import Assignment


router = APIRouter(tags=["assignments"])


@router.get("/assignments/{assignment_id}/status")
def assignment_status(request: Request, assignment_id: int, db: Session = Depends(get_db)):
    assignment = db.query(Assignment).filter(Assignment.id == int(assignment_id)).first()
    if not assignment:
        raise HTTPException(status_code=404, detail="Assignment not found")

    cache = request.app.state.status_cache
    status = cache.status_for(int(assignment.id), assignment.started_at, assignment.expired_at)
    data = {
        "assignment_id": int(assignment.id),
        "title": assignment.title,
        "status": status,
        "started_at": assignment.started_at.isoformat() if assignment.started_at else None,
        "expired_at": assignment.expired_at.isoformat() if assignment.expired_at else None,
    }
    return {"request_id": request.state.request_id, "data": data, "error": None}
