"""FastAPI identity dependencies.

There is no login: clients send demo headers X-User-Id and X-User-Role.
The role header is only used when the user is first seen; after that the
stored role decides.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from gradebook.db.session import get_db
from gradebook.models.user import User
from gradebook.services.user_service import ensure_user_exists


def require_user(
    db: Session = Depends(get_db),
    x_user_id: Optional[str] = Header(default=None, alias="X-User-Id"),
    x_user_role: Optional[str] = Header(default=None, alias="X-User-Role"),
) -> User:
    try:
        uid = int(str(x_user_id or "").strip())
    except ValueError:
        raise HTTPException(status_code=401, detail="Not authenticated")

    role = str(x_user_role or "").strip().lower()
    return ensure_user_exists(db, uid, role=role if role in {"teacher", "student"} else "student")


def require_teacher(user: User = Depends(require_user)) -> User:
    if user.role != "teacher":
        raise HTTPException(status_code=403, detail="Teacher role required")
    return user
