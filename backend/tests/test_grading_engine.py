from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from gradebook.services import grading_engine
from gradebook.services.errors import InvalidQuestionData, SubmissionNotGradable
from gradebook.services.grading_engine import (
    apply_manual_grades,
    compute_percentage,
    grade_answers,
    grade_question,
    grade_submission,
    letter_grade,
    normalize_mcq_answer,
    normalize_true_false_answer,
    round_half_up,
)


def _q(id, type, *, number=None, points=1, choices=None, answer=None, text_match=True, auto_graded=True):
    return SimpleNamespace(
        id=id,
        question_number=id if number is None else number,
        type=type,
        question_text=f"Question {id}",
        points=points,
        choices=choices or [],
        answer=answer,
        text_match=text_match,
        auto_graded=auto_graded,
    )


def test_letter_grade_bands_are_total_and_monotonic():
    cases = [0, 59.9, 60, 66.9, 67, 75.9, 76, 88.9, 89, 100]
    assert [letter_grade(p) for p in cases] == ["F", "F", "D", "D", "C", "C", "B", "B", "A", "A"]


def test_percentage_rounds_half_up_to_two_decimals():
    assert compute_percentage(1, 3) == 33.33
    assert compute_percentage(2, 3) == 66.67
    assert compute_percentage(1, 8) == 12.5
    assert compute_percentage(5, 0) == 0
    assert round_half_up(2.5) == 3
    assert round_half_up(0.125, 2) == 0.13


def test_mcq_matches_choice_index():
    q = _q(1, "MCQ", points=2, choices=["Paris", "London", "Rome"], answer="0")

    assert grade_question(q, 0)["score"] == 2
    assert grade_question(q, "0 ")["is_correct"] is True
    assert grade_question(q, 1)["score"] == 0
    missing = grade_question(q, None)
    assert missing["score"] == 0 and missing["is_correct"] is False


def test_mcq_legacy_choice_text_answer_is_mapped_to_index():
    assert normalize_mcq_answer(["Paris", "London"], "London") == "1"
    assert normalize_mcq_answer(["Paris", "London"], 0) == "0"

    q = _q(1, "MCQ", choices=["Paris", "London"], answer="London")
    detail = grade_question(q, "1")
    assert detail["is_correct"] is True
    assert detail["correct_answer"] == "1"


def test_mcq_unresolvable_answer_is_flagged_not_raised():
    with pytest.raises(InvalidQuestionData):
        normalize_mcq_answer(["Paris", "London"], "Berlin")
    with pytest.raises(InvalidQuestionData):
        normalize_mcq_answer(["Paris", "London"], "5")

    detail = grade_question(_q(1, "MCQ", choices=["Paris"], answer="Berlin"), "0")
    assert detail["score"] == 0
    assert detail["grading_error"]


def test_mcq_numeric_choices_reject_ambiguous_digit_answers():
    # "2" is both index 2 and the text of choice 1
    with pytest.raises(InvalidQuestionData, match="ambiguous MCQ answer"):
        normalize_mcq_answer(["1", "2", "3"], "2")

    detail = grade_question(_q(1, "MCQ", choices=["1", "2", "3"], answer="2"), "1")
    assert detail["score"] == 0
    assert "ambiguous" in detail["grading_error"]


def test_mcq_numeric_choices_resolve_when_unambiguous():
    assert normalize_mcq_answer(["1", "2", "3"], 1) == "1"
    # Digit string naming its own index
    assert normalize_mcq_answer(["0", "1"], "1") == "1"
    # Out of range as an index, so it can only be choice text
    assert normalize_mcq_answer(["10", "20"], "20") == "1"

    q = _q(1, "MCQ", choices=["1", "2", "3"], answer=1)
    assert grade_question(q, 1)["is_correct"] is True
    assert grade_question(q, "2")["is_correct"] is False


def test_true_false_accepts_index_text_and_answer_lists():
    q = _q(1, "TrueFalse", points=3, choices=["True", "False"], answer="True")
    assert grade_question(q, "0")["score"] == 3
    assert grade_question(q, "1")["score"] == 0
    assert grade_question(q, "true")["is_correct"] is True

    no_choices = _q(2, "TrueFalse", answer=["yes", "t"])
    assert normalize_true_false_answer(["yes", "t"]) == ["true"]
    assert grade_question(no_choices, "True")["is_correct"] is True
    assert grade_question(no_choices, "no")["is_correct"] is False
    assert grade_question(no_choices, None)["score"] == 0


def test_short_answer_exact_match_is_case_insensitive_and_trimmed():
    q = _q(1, "ShortAnswer", points=4, answer=["Photosynthesis", "photo synthesis"])
    assert grade_question(q, "  PHOTOSYNTHESIS ", partial_credit=False)["score"] == 4
    # Only the first accepted answer counts in exact mode
    assert grade_question(q, "photo synthesis", partial_credit=False)["score"] == 0
    assert grade_question(q, "", partial_credit=False)["feedback"] == "No answer provided."


def test_short_answer_keyword_mode_needs_every_keyword_as_a_whole_word():
    q = _q(1, "ShortAnswer", points=2, answer=["mitochondria", "energy"], text_match=False)
    assert grade_question(q, "The Mitochondria produce energy.", partial_credit=False)["score"] == 2
    assert grade_question(q, "Mitochondria are energetic", partial_credit=False)["score"] == 0


def test_short_answer_partial_credit_when_enabled():
    close = _q(1, "ShortAnswer", points=5, answer="photosynthesis")
    detail = grade_question(close, "photosynthesys", partial_credit=True)
    assert detail["score"] == 4
    assert detail["is_correct"] is True

    half = _q(2, "ShortAnswer", points=2, answer="cat")
    detail = grade_question(half, "car", partial_credit=True)
    assert detail["score"] == 1
    assert detail["is_correct"] is False

    assert grade_question(half, "car", partial_credit=False)["score"] == 0


def test_essay_and_manual_only_questions_wait_for_teacher():
    essay = grade_question(_q(1, "Essay", points=10), "My essay")
    assert essay["score"] == 0
    assert essay["requires_manual_grading"] is True

    manual_mcq = grade_question(_q(2, "MCQ", choices=["a", "b"], answer="0", auto_graded=False), "0")
    assert manual_mcq["score"] == 0
    assert manual_mcq["requires_manual_grading"] is True


def test_unknown_type_scores_zero_and_grading_continues():
    questions = [
        _q(1, "Matching", points=3),
        _q(2, "MCQ", points=2, choices=["a", "b"], answer="1"),
    ]
    out = grade_answers(questions, {"1": "x", "2": "1"}, partial_credit=False)

    assert out["grading_details"]["1"]["grading_error"]
    assert out["grading_details"]["1"]["score"] == 0
    assert out["grading_details"]["2"]["score"] == 2
    assert out["total_score"] == 2
    assert out["max_score"] == 5
    assert out["percentage"] == 40


def test_grade_answers_orders_by_question_number_and_ignores_stale_answers():
    questions = [
        _q(10, "MCQ", number=2, choices=["a", "b"], answer="0"),
        _q(11, "MCQ", number=1, choices=["a", "b"], answer="1"),
    ]
    out = grade_answers(questions, {"10": "0", "99": "1"}, partial_credit=False)

    assert list(out["grading_details"].keys()) == ["11", "10"]
    assert out["grading_details"]["11"]["user_answer"] is None
    assert "99" not in out["grading_details"]
    assert out["total_score"] == 1
    assert out["percentage"] == 50
    assert out["letter_grade"] == "F"


def test_grade_answers_accepts_list_shaped_answers():
    questions = [_q(1, "MCQ", choices=["a", "b"], answer="1")]
    out = grade_answers(questions, [{"question_id": 1, "answer": 1}], partial_credit=False)
    assert out["total_score"] == 1


def test_zero_question_assessment_grades_to_zero():
    out = grade_answers([], {"1": "x"})
    assert out["total_score"] == 0
    assert out["max_score"] == 0
    assert out["percentage"] == 0
    assert out["grading_details"] == {}


def test_grading_is_idempotent():
    questions = [
        _q(1, "MCQ", choices=["a", "b"], answer="0"),
        _q(2, "ShortAnswer", points=2, answer="Hanoi"),
        _q(3, "Essay", points=5),
    ]
    answers = {"1": "0", "2": "hanoi", "3": "text"}
    assert grade_answers(questions, answers, partial_credit=False) == grade_answers(questions, answers, partial_credit=False)


def test_grade_submission_requires_finished_submission_with_answers():
    assessment = SimpleNamespace(questions=[_q(1, "MCQ", choices=["a"], answer="0")])

    with pytest.raises(SubmissionNotGradable):
        grade_submission(SimpleNamespace(finished=False, answers={"1": "0"}), assessment)
    with pytest.raises(SubmissionNotGradable):
        grade_submission(SimpleNamespace(finished=True, answers={}), assessment)


def test_grade_submission_writes_result_onto_submission():
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assessment = SimpleNamespace(
        questions=[
            _q(1, "MCQ", points=2, choices=["a", "b"], answer="1"),
            _q(2, "Essay", points=8),
        ]
    )
    submission = SimpleNamespace(finished=True, answers={"1": "1", "2": "essay"})

    result = grade_submission(submission, assessment, now=now, partial_credit=False)

    assert result["requires_manual_grading"] is True
    assert submission.score == 2
    assert submission.max_score == 10
    assert submission.percentage == 20
    assert submission.auto_grading_status == "PartiallyGraded"
    assert submission.graded_at == now
    assert set(submission.grading_details.keys()) == {"1", "2"}
    assert 0 <= submission.score <= submission.max_score


def test_apply_manual_grades_clamps_and_only_touches_pending_questions():
    questions = [
        _q(1, "MCQ", points=2, choices=["a", "b"], answer="1"),
        _q(2, "Essay", points=8),
    ]
    result = grade_answers(questions, {"1": "0", "2": "essay"}, partial_credit=False)

    out = apply_manual_grades(result, {"1": {"score": 2}, "2": {"score": 12, "feedback": "Great"}})

    assert out["grading_details"]["1"]["score"] == 0
    assert out["grading_details"]["2"]["score"] == 8
    assert out["grading_details"]["2"]["is_correct"] is True
    assert out["grading_details"]["2"]["manually_graded"] is True
    assert out["grading_details"]["2"]["feedback"] == "Great"
    assert out["requires_manual_grading"] is False
    assert out["total_score"] == 8
    assert out["percentage"] == 80


def test_can_auto_grade_needs_an_auto_gradable_type():
    assert grading_engine.can_auto_grade([_q(1, "Essay"), _q(2, "TrueFalse")]) is True
    assert grading_engine.can_auto_grade([_q(1, "Essay")]) is False
