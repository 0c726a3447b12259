from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gradebook import __version__
from gradebook.core.config import settings
from gradebook.api.routes.health import router as health_router
from gradebook.api.routes.submissions import router as submissions_router
from gradebook.api.routes.teacher_grading import router as teacher_grading_router
from gradebook.api.routes.grades import router as grades_router
from gradebook.api.routes.assignments import router as assignments_router
from gradebook.api.routes.jobs import router as jobs_router
from gradebook.db.session import SessionLocal
from gradebook.services.availability_service import StatusCache
from gradebook.services.user_service import ensure_user_exists


logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def envelope(request_id: str, data: Any = None, error: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    return {"request_id": request_id, "data": data, "error": error}


app = FastAPI(
    title=settings.APP_NAME,
    version=__version__,
)

# Assignment status memo, owned by the app instance
app.state.status_cache = StatusCache()

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = req_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = req_id
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))

    detail = exc.detail
    # Structured details keep their own code (e.g. NOT_GRADABLE)
    if isinstance(detail, dict):
        code = str(detail.get("code") or "HTTP_ERROR")
        message = detail.get("message") or str(detail)
        error = {"code": code, "message": message, "details": detail}
    else:
        error = {"code": "HTTP_ERROR", "message": str(detail)}

    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(request_id=req_id, data=None, error=error),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=422,
        content=envelope(
            request_id=req_id,
            data=None,
            error={
                "code": "VALIDATION_ERROR",
                "message": "Invalid request",
                "details": {"errors": exc.errors()},
            },
        ),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    req_id = getattr(request.state, "request_id", str(uuid.uuid4()))
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=envelope(
            request_id=req_id,
            data=None,
            error={"code": "INTERNAL_ERROR", "message": str(exc)},
        ),
    )


@app.on_event("startup")
def bootstrap_demo_teacher():
    """Make sure the demo teacher (user_id=1) exists. Safe to run repeatedly."""
    db = SessionLocal()
    try:
        t = ensure_user_exists(db, 1, role="teacher")
        if t.role != "teacher":
            t.role = "teacher"
            db.commit()
    finally:
        db.close()


app.include_router(health_router, prefix="/api")
app.include_router(submissions_router, prefix="/api")
app.include_router(teacher_grading_router, prefix="/api")
app.include_router(grades_router, prefix="/api")
app.include_router(assignments_router, prefix="/api")
app.include_router(jobs_router, prefix="/api")
