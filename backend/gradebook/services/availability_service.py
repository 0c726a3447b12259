"""Time-window status for assignments and exams.

Status is never stored: it is derived from the window timestamps and the
current time. ``StatusCache`` memoizes computed assignment statuses for a
short TTL; a cached entry never outlives the next window boundary, so a
cached value always equals a fresh recomputation.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Hashable, Optional

from gradebook.core.config import settings


DRAFT = "draft"
COMING_SOON = "coming-soon"
OPEN = "open"
ENDED = "ended"

EXAM_WILL_OPEN = "willOpen"
EXAM_OPEN = "open"
EXAM_CLOSED = "closed"


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps are treated as UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _now(now: Optional[datetime]) -> datetime:
    return _utc(now) or datetime.now(timezone.utc)


def assignment_status(started_at: Optional[datetime], expired_at: Optional[datetime], now: Optional[datetime] = None) -> str:
    start, end, current = _utc(started_at), _utc(expired_at), _now(now)
    if start is None and end is None:
        return DRAFT
    if start is not None and current < start:
        return COMING_SOON
    if end is not None and current >= end:
        return ENDED
    return OPEN


def next_boundary(started_at: Optional[datetime], expired_at: Optional[datetime], now: datetime) -> Optional[datetime]:
    """First window boundary strictly after ``now`` (None when none remains)."""
    current = _utc(now)
    for boundary in (_utc(started_at), _utc(expired_at)):
        if boundary is not None and boundary > current:
            return boundary
    return None


def is_fresh(computed_at: datetime, now: datetime, ttl: float, boundary: Optional[datetime] = None) -> bool:
    computed, current = _utc(computed_at), _utc(now)
    if current < computed:
        return False
    if (current - computed).total_seconds() >= ttl:
        return False
    if boundary is not None and current >= _utc(boundary):
        return False
    return True


@dataclass(frozen=True)
class StatusCacheEntry:
    value: str
    computed_at: datetime
    valid_until: Optional[datetime] = None


@dataclass
class StatusCache:
    """Caller-owned memo of assignment statuses keyed by assignment id."""

    ttl: float = field(default_factory=lambda: float(settings.STATUS_CACHE_TTL_SEC))
    entries: Dict[Hashable, StatusCacheEntry] = field(default_factory=dict)

    def get(self, key: Hashable, now: datetime) -> Optional[StatusCacheEntry]:
        entry = self.entries.get(key)
        if entry is None:
            return None
        if not is_fresh(entry.computed_at, now, self.ttl, entry.valid_until):
            self.entries.pop(key, None)
            return None
        return entry

    def status_for(
        self,
        key: Hashable,
        started_at: Optional[datetime],
        expired_at: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> str:
        current = _now(now)
        entry = self.get(key, current)
        if entry is not None:
            return entry.value
        value = assignment_status(started_at, expired_at, current)
        self.entries[key] = StatusCacheEntry(
            value=value,
            computed_at=current,
            valid_until=next_boundary(started_at, expired_at, current),
        )
        return value

    def invalidate(self, key: Hashable) -> None:
        self.entries.pop(key, None)

    def clear(self) -> None:
        self.entries.clear()


# ---------------------------------------------------------------------------
# Exams
# ---------------------------------------------------------------------------


def exam_status(open_at: Optional[datetime], close_at: Optional[datetime], now: Optional[datetime] = None) -> Dict[str, Any]:
    start, end, current = _utc(open_at), _utc(close_at), _now(now)
    if start is not None and current < start:
        return {"code": EXAM_WILL_OPEN, "message": f"The exam opens at {start.isoformat()}."}
    if end is not None and current >= end:
        return {"code": EXAM_CLOSED, "message": "The exam is closed."}
    return {"code": EXAM_OPEN, "message": "The exam is open."}


def exam_is_open(open_at: Optional[datetime], close_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    return exam_status(open_at, close_at, now)["code"] == EXAM_OPEN


def exam_time_limit_seconds(time_limit_minutes: Optional[int]) -> Optional[int]:
    if not time_limit_minutes:
        return None
    return int(time_limit_minutes) * 60


def exam_remaining_seconds(close_at: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Seconds until the exam closes; None when there is no close time."""
    end = _utc(close_at)
    if end is None:
        return None
    return max(0, int(math.floor((end - _now(now)).total_seconds())))


def time_remaining_seconds(
    time_limit_minutes: Optional[int],
    started_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> Optional[int]:
    """Seconds left on a timed attempt started at ``started_at``."""
    limit = exam_time_limit_seconds(time_limit_minutes)
    if limit is None:
        return None
    start = _utc(started_at)
    if start is None:
        return limit
    deadline = start + timedelta(seconds=limit)
    return max(0, int(math.floor((deadline - _now(now)).total_seconds())))


def assessment_window(assessment: Any, now: Optional[datetime] = None) -> Dict[str, Any]:
    current = _now(now)
    status = exam_status(assessment.open_at, assessment.close_at, current)
    return {
        "assessment_id": int(assessment.id),
        "kind": assessment.kind,
        "status": status["code"],
        "message": status["message"],
        "is_open": status["code"] == EXAM_OPEN,
        "open_at": assessment.open_at.isoformat() if assessment.open_at else None,
        "close_at": assessment.close_at.isoformat() if assessment.close_at else None,
        "time_limit_seconds": exam_time_limit_seconds(assessment.time_limit),
        "remaining_seconds": exam_remaining_seconds(assessment.close_at, current),
    }
