from __future__ import annotations

from fastapi import HTTPException

from gradebook.services.errors import (
    AccessDenied,
    AssessmentNotFound,
    GradingError,
    SubmissionNotFound,
    SubmissionNotGradable,
    SubmissionStateError,
)


def to_http(exc: GradingError) -> HTTPException:
    if isinstance(exc, (SubmissionNotFound, AssessmentNotFound)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, AccessDenied):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, SubmissionNotGradable):
        return HTTPException(status_code=400, detail={"code": "NOT_GRADABLE", "message": str(exc)})
    if isinstance(exc, SubmissionStateError):
        return HTTPException(status_code=400, detail={"code": "INVALID_STATE", "message": str(exc)})
    return HTTPException(status_code=400, detail=str(exc))
