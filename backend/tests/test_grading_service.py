from contextlib import contextmanager

import pytest

from gradebook.models.assessment import Assessment
from gradebook.models.grade import Grade, GradesSummary
from gradebook.models.notification import Notification
from gradebook.models.question import Question
from gradebook.models.submission import Submission
from gradebook.services import grading_service
from gradebook.services.errors import AssessmentNotFound, SubmissionNotFound, SubmissionNotGradable


class _FakeQuery:
    def __init__(self, rows):
        self._rows = rows

    def filter(self, *args, **kwargs):
        return self

    def filter_by(self, **kwargs):
        return _FakeQuery([r for r in self._rows if all(getattr(r, k, None) == v for k, v in kwargs.items())])

    def order_by(self, *args, **kwargs):
        return self

    def first(self):
        return self._rows[0] if self._rows else None

    def all(self):
        return list(self._rows)


class _FakeDB:
    def __init__(self, rows=None):
        self.rows = rows or {}
        self.commits = 0
        self.rollbacks = 0

    def query(self, entity):
        return _FakeQuery(self.rows.get(getattr(entity, "class_", entity), []))

    def add(self, obj):
        self.rows.setdefault(type(obj), []).append(obj)

    @contextmanager
    def begin_nested(self):
        yield self
        self.flush()

    def flush(self):
        for bucket in self.rows.values():
            for i, obj in enumerate(bucket, start=1):
                if getattr(obj, "id", None) is None:
                    obj.id = i

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _assessment(**kwargs):
    questions = [
        Question(id=1, question_number=1, type="MCQ", question_text="Capital of France?", points=2,
                 choices=["Paris", "London"], answer="0", text_match=True, auto_graded=True),
        Question(id=2, question_number=2, type="TrueFalse", question_text="The sky is blue.", points=1,
                 choices=["True", "False"], answer="True", text_match=True, auto_graded=True),
        Question(id=3, question_number=3, type="Essay", question_text="Explain gravity.", points=7,
                 choices=[], answer=None, text_match=True, auto_graded=False),
    ]
    fields = dict(id=3, course_id=1, kind="Exam", title="Midterm", max_score=10, weight=20,
                  visibility="published", questions=questions)
    fields.update(kwargs)
    return Assessment(**fields)


def _submission(**kwargs):
    fields = dict(id=5, course_id=1, assessment_id=3, user_id=7, answers={"1": "0", "2": "1", "3": "Mass attracts."},
                  finished=True, grading_details={}, auto_grading_status="unGraded")
    fields.update(kwargs)
    return Submission(**fields)


def test_auto_grade_persists_result_grade_and_notification_in_one_commit():
    submission = _submission()
    db = _FakeDB({Submission: [submission], Assessment: [_assessment()]})

    out = grading_service.auto_grade_submission(db, 5)

    assert db.commits == 1
    assert out["total_score"] == 2
    assert out["max_score"] == 10
    assert out["percentage"] == 20
    assert out["auto_grading_status"] == "PartiallyGraded"
    assert out["requires_manual_grading"] is True
    assert submission.grading_details["3"]["requires_manual_grading"] is True

    grade = db.rows[Grade][0]
    assert (grade.student_id, grade.assessment_id, grade.score, grade.max_score) == (7, 3, 2, 10)
    assert grade.type == "Exam"
    assert len(db.rows[GradesSummary]) == 1

    notification = db.rows[Notification][0]
    assert notification.user_id == 7
    assert notification.title == "Assessment Graded"
    assert notification.data["submission_id"] == 5


def test_auto_grade_rolls_back_when_persisting_fails(monkeypatch):
    db = _FakeDB({Submission: [_submission()], Assessment: [_assessment()]})

    def _boom(*args, **kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr("gradebook.services.grading_service.upsert_grade", _boom)

    with pytest.raises(RuntimeError):
        grading_service.auto_grade_submission(db, 5)
    assert db.commits == 0
    assert db.rollbacks == 1


def test_auto_grade_rejects_missing_or_unfinished_submissions():
    with pytest.raises(SubmissionNotFound):
        grading_service.auto_grade_submission(_FakeDB(), 1)

    db = _FakeDB({Submission: [_submission(finished=False)], Assessment: [_assessment()]})
    with pytest.raises(SubmissionNotGradable):
        grading_service.auto_grade_submission(db, 5)
    assert db.commits == 0


def test_manual_grades_complete_the_submission():
    submission = _submission()
    db = _FakeDB({Submission: [submission], Assessment: [_assessment()]})
    grading_service.auto_grade_submission(db, 5, notify=False)

    out = grading_service.grade_manual_questions(db, 5, {"3": {"score": 9, "feedback": "Good"}}, graded_by=1)

    assert out["auto_grading_status"] == "Graded"
    assert out["total_score"] == 9
    assert out["percentage"] == 90
    assert out["letter_grade"] == "A"
    assert submission.graded_by == 1
    assert submission.grading_details["3"]["score"] == 7
    assert db.rows[Grade][0].score == 9
    assert db.rows[Notification][-1].title == "Submission Graded"


def test_regrade_keeps_manual_essay_scores():
    submission = _submission()
    db = _FakeDB({Submission: [submission], Assessment: [_assessment()]})
    grading_service.auto_grade_submission(db, 5, notify=False)
    grading_service.grade_manual_questions(db, 5, {"3": {"score": 5}}, graded_by=1)

    out = grading_service.auto_grade_submission(db, 5, notify=False)

    assert out["total_score"] == 7
    assert out["auto_grading_status"] == "Graded"
    assert submission.grading_details["3"]["manually_graded"] is True


def test_regrade_picks_up_a_corrected_answer_key():
    submission = _submission(answers={"1": "1", "2": "0"})
    assessment = _assessment()
    db = _FakeDB({Submission: [submission], Assessment: [assessment]})
    assert grading_service.auto_grade_submission(db, 5, notify=False)["total_score"] == 1

    assessment.questions[0].answer = "1"
    assert grading_service.auto_grade_submission(db, 5, notify=False)["total_score"] == 3


def test_regrade_assessment_counts_outcomes():
    graded = _submission()
    empty = _submission(id=6, user_id=8, answers={})
    db = _FakeDB({Submission: [graded, empty], Assessment: [_assessment()]})

    counts = grading_service.regrade_assessment(db, 3)

    assert counts == {"regraded": 1, "skipped": 1, "failed": 0}
    assert graded.auto_grading_status == "PartiallyGraded"
    assert empty.auto_grading_status == "unGraded"
    assert Notification not in db.rows


def test_regrade_assessment_isolates_failures(monkeypatch):
    db = _FakeDB({Submission: [_submission(), _submission(id=6, user_id=8)], Assessment: [_assessment()]})
    calls = {"n": 0}
    real = grading_service.grade_in_session

    def _flaky(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("bad row")
        return real(*args, **kwargs)

    monkeypatch.setattr(grading_service, "grade_in_session", _flaky)

    assert grading_service.regrade_assessment(db, 3) == {"regraded": 1, "skipped": 0, "failed": 1}
    assert db.rollbacks == 1
    assert db.commits == 1


def test_regrade_assessment_requires_assessment():
    with pytest.raises(AssessmentNotFound):
        grading_service.regrade_assessment(_FakeDB(), 99)
