from __future__ import annotations

from typing import Any, Dict, Iterator, Optional, Tuple, Type, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from gradebook.core.config import settings


engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True, future=True)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)

T = TypeVar("T")


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_or_create(db: Session, model: Type[T], defaults: Optional[Dict[str, Any]] = None, **lookup: Any) -> Tuple[T, bool]:
    """Fetch the row matching ``lookup`` or insert it inside a savepoint.

    When a concurrent writer inserts the same unique key first, the savepoint
    is rolled back and the winner's row is returned. The outer transaction is
    left untouched; the caller still owns the commit.
    """
    row = db.query(model).filter_by(**lookup).first()
    if row is not None:
        return row, False

    try:
        with db.begin_nested():
            row = model(**lookup, **(defaults or {}))
            db.add(row)
    except IntegrityError:
        row = db.query(model).filter_by(**lookup).first()
        if row is None:
            raise
        return row, False
    return row, True
