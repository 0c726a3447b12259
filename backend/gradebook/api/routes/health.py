from fastapi import APIRouter, Request

from gradebook import __version__
from gradebook.infra.queue import is_async_enabled


router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request):
    data = {"status": "ok", "version": __version__, "async_queue": {"enabled": bool(is_async_enabled())}}
    return {"request_id": request.state.request_id, "data": data, "error": None}
