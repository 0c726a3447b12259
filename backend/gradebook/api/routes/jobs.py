from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from rq.exceptions import NoSuchJobError

from gradebook.api.deps import require_teacher
from gradebook.infra.queue import fetch_job, is_async_enabled
from gradebook.models.user import User

router = APIRouter(tags=["jobs"])


@router.get("/jobs/status/{job_id}")
def job_status(request: Request, job_id: str, teacher: User = Depends(require_teacher)) -> Dict[str, Any]:
    if not is_async_enabled():
        raise HTTPException(status_code=400, detail="Async queue disabled (ASYNC_QUEUE_ENABLED=false)")
    try:
        job = fetch_job(str(job_id))
    except NoSuchJobError:
        raise HTTPException(status_code=404, detail="Job not found")
    data: Dict[str, Any] = {
        "job_id": str(job.id),
        "status": str(job.get_status()),
        "enqueued_at": str(job.enqueued_at) if job.enqueued_at else None,
        "started_at": str(job.started_at) if job.started_at else None,
        "ended_at": str(job.ended_at) if job.ended_at else None,
        "exc_info": job.exc_info if job.is_failed else None,
    }
    if job.is_finished:
        data["result"] = job.result
    return {"request_id": request.state.request_id, "data": data, "error": None}
