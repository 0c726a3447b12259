from types import SimpleNamespace

import pytest

from gradebook.infra import queue
from gradebook.tasks import regrade_tasks


def test_enqueue_runs_inline_when_async_disabled(monkeypatch):
    monkeypatch.setattr(queue.settings, "ASYNC_QUEUE_ENABLED", False)

    out = queue.enqueue(lambda x, y=0: x + y, 2, y=3)

    assert out == {"job_id": None, "queued": False, "sync_executed": True, "result": 5}


def test_enqueue_uses_rq_when_async_enabled(monkeypatch):
    monkeypatch.setattr(queue.settings, "ASYNC_QUEUE_ENABLED", True)
    seen = {}

    class _Queue:
        def enqueue(self, fn, *args, **kwargs):
            seen.update(fn=fn, args=args)
            return SimpleNamespace(id="job-1")

    monkeypatch.setattr(queue, "get_queue", lambda name: _Queue())

    out = queue.enqueue(regrade_tasks.task_regrade_assessment, 3, queue_name="grading")

    assert out == {"job_id": "job-1", "queued": True, "sync_executed": False}
    assert seen == {"fn": regrade_tasks.task_regrade_assessment, "args": (3,)}


def test_fetch_job_requires_async(monkeypatch):
    monkeypatch.setattr(queue.settings, "ASYNC_QUEUE_ENABLED", False)
    with pytest.raises(RuntimeError):
        queue.fetch_job("job-1")


def test_regrade_task_opens_and_closes_its_own_session(monkeypatch):
    class _Session:
        closed = False

        def close(self):
            self.closed = True

    session = _Session()
    monkeypatch.setattr(regrade_tasks, "SessionLocal", lambda: session)
    monkeypatch.setattr(
        regrade_tasks,
        "regrade_assessment",
        lambda db, assessment_id: {"regraded": 4, "skipped": 1, "failed": 0},
    )

    out = regrade_tasks.task_regrade_assessment(3)

    assert out == {"assessment_id": 3, "regraded": 4, "skipped": 1, "failed": 0}
    assert session.closed is True
