"""Auto-grading rules for assessment submissions.

Everything in this module is pure: it reads questions and answers (ORM rows,
``SimpleNamespace`` objects or plain dicts) and returns plain dicts. Persisting
the result is the job of ``grading_service``.

Question types:
  - MCQ: the learner sends a choice index; the stored answer is the choice
    index (legacy rows holding a digit string or the choice text are mapped
    to their index, and a digit string that is also another choice's text
    is rejected as ambiguous).
  - TrueFalse: binary MCQ; the stored answer may be one value or a list of
    accepted values.
  - ShortAnswer: trimmed, case-insensitive exact match with the first
    accepted answer (``text_match``), or whole-word keyword match.
  - Essay: never auto-graded; scored 0 and flagged for manual grading.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from difflib import SequenceMatcher
from typing import Any, Callable, Dict, Iterable, List, Optional

from gradebook.core.config import settings
from gradebook.services.errors import InvalidQuestionData, SubmissionNotGradable


logger = logging.getLogger(__name__)


AUTO_GRADABLE_TYPES = ("MCQ", "TrueFalse", "ShortAnswer")

_TRUE_VALUES = {"true", "t", "1", "yes", "y"}
_FALSE_VALUES = {"false", "f", "0", "no", "n"}

# Share of points a short answer needs to count as correct (partial credit mode)
_CORRECT_SHARE = 0.8


def _attr(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def round_half_up(value: float, ndigits: int = 0) -> float:
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _num(value: float) -> int | float:
    value = round_half_up(value, 2)
    return int(value) if float(value).is_integer() else value


def compute_percentage(score: float, max_score: float) -> float:
    if not max_score or max_score <= 0:
        return 0
    return round_half_up(100.0 * float(score) / float(max_score), 2)


def letter_grade(percentage: float) -> str:
    pct = float(percentage or 0)
    if pct < 60:
        return "F"
    if pct < 67:
        return "D"
    if pct < 76:
        return "C"
    if pct < 89:
        return "B"
    return "A"


# ---------------------------------------------------------------------------
# Answer normalisation
# ---------------------------------------------------------------------------


def normalize_mcq_answer(choices: Any, answer: Any) -> str:
    """Return the canonical MCQ answer: the choice index as a digit string.

    Accepts an index (int or digit string) or the literal text of a choice.
    An int is always an index. A digit string is read as an index when it is
    in range, unless it is also the text of a different choice; that case is
    ambiguous and rejected. Raises ``InvalidQuestionData`` when the answer
    matches no choice.
    """
    if not isinstance(choices, list) or not choices:
        raise InvalidQuestionData("MCQ question has no choices")
    if answer is None or isinstance(answer, bool):
        raise InvalidQuestionData("MCQ question has no correct answer")

    if isinstance(answer, int):
        index = answer
    else:
        text = str(answer).strip()
        matches = [
            i for i, choice in enumerate(choices)
            if str(choice) == str(answer) or str(choice).strip() == text
        ]
        if text.isdigit() and int(text) < len(choices):
            index = int(text)
            others = [i for i in matches if i != index]
            if others:
                raise InvalidQuestionData(
                    f"ambiguous MCQ answer {answer!r}: choice index {index} or the text of choice {others[0]}"
                )
        elif matches:
            index = matches[0]
        elif text.isdigit():
            index = int(text)
        else:
            raise InvalidQuestionData(f"MCQ answer {answer!r} does not match any choice")

    if not 0 <= index < len(choices):
        raise InvalidQuestionData(f"MCQ answer index {index} is out of range")
    return str(index)


def _bool_token(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bool):
        return "true" if value else "false"
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE_VALUES:
        return "true"
    if text in _FALSE_VALUES:
        return "false"
    return text


def normalize_true_false_answer(answer: Any) -> List[str]:
    """Canonical accepted values of a TrueFalse question (``["true"]`` etc.)."""
    values = answer if isinstance(answer, (list, tuple)) else [answer]
    accepted = [t for t in (_bool_token(v) for v in values) if t]
    if not accepted:
        raise InvalidQuestionData("TrueFalse question has no accepted answer")
    return sorted(set(accepted))


def _accepted_texts(answer: Any) -> List[str]:
    values = answer if isinstance(answer, (list, tuple)) else [answer]
    return [str(v).strip() for v in values if v is not None and str(v).strip()]


def lookup_answer(answers: Any, question_id: Any) -> Any:
    """Find the learner's raw answer for a question.

    ``answers`` is normally ``{question_id: answer}`` (JSON keys are strings);
    a list of ``{"question_id": .., "answer": ..}`` items is also accepted.
    """
    qid = str(question_id)
    if isinstance(answers, dict):
        if qid in answers:
            return answers[qid]
        if question_id in answers:
            return answers[question_id]
        return None

    if isinstance(answers, list):
        for item in answers:
            if isinstance(item, dict) and str(item.get("question_id")) == qid:
                return item.get("answer")
    return None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


# ---------------------------------------------------------------------------
# Per-type evaluators: (question, user_answer, points) -> partial detail
# ---------------------------------------------------------------------------


def _grade_mcq(question: Any, user_answer: Any, points: int) -> Dict[str, Any]:
    correct = normalize_mcq_answer(_attr(question, "choices"), _attr(question, "answer"))
    if _is_blank(user_answer) or isinstance(user_answer, bool):
        chosen = None
    else:
        chosen = str(user_answer).strip()
    is_correct = chosen is not None and chosen == correct
    return {
        "correct_answer": correct,
        "is_correct": is_correct,
        "score": points if is_correct else 0,
        "feedback": "Correct answer!" if is_correct else "Incorrect answer.",
    }


def _grade_true_false(question: Any, user_answer: Any, points: int) -> Dict[str, Any]:
    accepted = normalize_true_false_answer(_attr(question, "answer"))

    chosen = user_answer
    choices = _attr(question, "choices") or []
    if isinstance(choices, list) and choices and not isinstance(user_answer, bool):
        # The learner picked one of the two choices by index
        raw = str(user_answer).strip() if user_answer is not None else ""
        if raw.isdigit() and int(raw) < len(choices):
            chosen = choices[int(raw)]

    token = _bool_token(chosen)
    is_correct = token is not None and token in accepted
    return {
        "correct_answer": accepted if len(accepted) > 1 else accepted[0],
        "is_correct": is_correct,
        "score": points if is_correct else 0,
        "feedback": "Correct answer!" if is_correct else "Incorrect answer.",
    }


def _keyword_hit(keyword: str, text: str) -> bool:
    return re.search(rf"(?<!\w){re.escape(keyword)}(?!\w)", text) is not None


def _grade_short_answer(
    question: Any,
    user_answer: Any,
    points: int,
    *,
    partial_credit: bool = False,
) -> Dict[str, Any]:
    accepted = _accepted_texts(_attr(question, "answer"))
    if not accepted:
        raise InvalidQuestionData("ShortAnswer question has no accepted answer")

    text_match = _attr(question, "text_match")
    text_match = True if text_match is None else bool(text_match)
    correct_answer: Any = accepted[0] if text_match else accepted

    if _is_blank(user_answer) or isinstance(user_answer, (list, dict)):
        return {"correct_answer": correct_answer, "is_correct": False, "score": 0, "feedback": "No answer provided."}

    given = str(user_answer).strip().lower()

    if not text_match:
        hits = [k for k in accepted if _keyword_hit(k.lower(), given)]
        is_correct = len(hits) == len(accepted)
        return {
            "correct_answer": correct_answer,
            "is_correct": is_correct,
            "score": points if is_correct else 0,
            "feedback": "Correct answer!" if is_correct else f"Matched {len(hits)} of {len(accepted)} keywords.",
        }

    expected = accepted[0].lower()
    if given == expected:
        return {"correct_answer": correct_answer, "is_correct": True, "score": points, "feedback": "Correct answer!"}

    if partial_credit:
        similarity = SequenceMatcher(None, given, expected).ratio()
        score = 0.0
        feedback = "Incorrect answer."
        if similarity >= settings.SHORT_ANSWER_CLOSE_SIMILARITY:
            score = points * 0.8
            feedback = "Very close to the correct answer."
        elif similarity >= settings.SHORT_ANSWER_PARTIAL_SIMILARITY:
            score = points * 0.5
            feedback = "Partially correct answer."
        score = _num(score)
        return {
            "correct_answer": correct_answer,
            "is_correct": bool(points) and score >= points * _CORRECT_SHARE,
            "score": score,
            "feedback": feedback,
        }

    return {"correct_answer": correct_answer, "is_correct": False, "score": 0, "feedback": "Incorrect answer."}


def _manual_only(question: Any, user_answer: Any, points: int) -> Dict[str, Any]:
    return {
        "correct_answer": _attr(question, "answer"),
        "is_correct": False,
        "score": 0,
        "feedback": "Awaiting manual grading.",
        "requires_manual_grading": True,
    }

_EVALUATORS: Dict[str, Callable[..., Dict[str, Any]]] = {
    "MCQ": _grade_mcq,
    "TrueFalse": _grade_true_false,
    "ShortAnswer": _grade_short_answer,
    "Essay": _manual_only,
}


def _question_points(question: Any) -> int:
    raw = _attr(question, "points")
    if isinstance(raw, bool):
        raise InvalidQuestionData("Question points must be a number")
    try:
        points = int(raw)
    except (TypeError, ValueError):
        raise InvalidQuestionData(f"Question points {raw!r} is not a number")
    if points < 0:
        raise InvalidQuestionData("Question points must not be negative")
    return points


def grade_question(question: Any, user_answer: Any, *, partial_credit: Optional[bool] = None) -> Dict[str, Any]:
    """Grade one question. Never raises for bad question data."""
    if partial_credit is None:
        partial_credit = bool(settings.SHORT_ANSWER_PARTIAL_CREDIT)

    qid = _attr(question, "id")
    qtype = str(_attr(question, "type") or "")
    detail: Dict[str, Any] = {
        "question_id": qid,
        "question_text": _attr(question, "question_text"),
        "question_type": qtype,
        "user_answer": user_answer,
        "correct_answer": _attr(question, "answer"),
        "is_correct": False,
        "score": 0,
        "max_score": 0,
        "feedback": "",
        "requires_manual_grading": False,
        "grading_error": None,
    }

    try:
        points = _question_points(question)
        detail["max_score"] = points

        if qtype in AUTO_GRADABLE_TYPES and _attr(question, "auto_graded") is False:
            evaluator = _manual_only
        else:
            evaluator = _EVALUATORS.get(qtype)
        if evaluator is None:
            raise InvalidQuestionData(f"Question type {qtype!r} is not supported for auto-grading")

        if evaluator is _grade_short_answer:
            outcome = evaluator(question, user_answer, points, partial_credit=partial_credit)
        else:
            outcome = evaluator(question, user_answer, points)
    except Exception as exc:  # one malformed question must not sink the whole pass
        logger.warning("Question %s could not be auto-graded: %s", qid, exc)
        detail["feedback"] = "Question could not be graded automatically."
        detail["grading_error"] = str(exc)
        return detail

    detail.update(outcome)
    return detail


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def summarize_details(details: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    total = sum(float(d.get("score") or 0) for d in details.values())
    maximum = sum(float(d.get("max_score") or 0) for d in details.values())
    percentage = compute_percentage(total, maximum)
    return {
        "total_score": _num(total),
        "max_score": _num(maximum),
        "percentage": percentage,
        "letter_grade": letter_grade(percentage),
        "requires_manual_grading": any(bool(d.get("requires_manual_grading")) for d in details.values()),
        "grading_details": details,
    }


def _order_key(question: Any) -> tuple:
    def _int(v: Any) -> int:
        try:
            return int(v)
        except (TypeError, ValueError):
            return 0

    return (_int(_attr(question, "question_number")), _int(_attr(question, "id")))


def grade_answers(
    questions: Iterable[Any],
    answers: Any,
    *,
    partial_credit: Optional[bool] = None,
) -> Dict[str, Any]:
    """Grade ``answers`` against ``questions`` (in ``question_number`` order).

    Answers for questions not in ``questions`` are ignored. Unanswered
    questions score 0. With no questions the result is 0/0 and 0%.
    """
    details: Dict[str, Dict[str, Any]] = {}
    for question in sorted(list(questions or []), key=_order_key):
        qid = _attr(question, "id")
        details[str(qid)] = grade_question(question, lookup_answer(answers, qid), partial_credit=partial_credit)
    return summarize_details(details)


def apply_manual_grades(result: Dict[str, Any], grades: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Overlay manual scores on questions that need (or already had) manual grading.

    ``grades`` maps question id -> ``{"score": .., "feedback": ..}``. Scores are
    clamped to ``[0, max_score]``. Questions graded automatically are left as
    they are.
    """
    details = {qid: dict(d) for qid, d in (result.get("grading_details") or {}).items()}
    for qid, grade in (grades or {}).items():
        detail = details.get(str(qid))
        if detail is None:
            continue
        if not (detail.get("requires_manual_grading") or detail.get("manually_graded")):
            continue
        max_score = float(detail.get("max_score") or 0)
        try:
            score = float(grade.get("score") or 0)
        except (TypeError, ValueError):
            score = 0.0
        score = min(max(score, 0.0), max_score)
        detail["score"] = _num(score)
        detail["is_correct"] = bool(max_score) and score >= max_score
        if grade.get("feedback") is not None:
            detail["feedback"] = grade.get("feedback")
        detail["requires_manual_grading"] = False
        detail["manually_graded"] = True
        details[str(qid)] = detail
    return summarize_details(details)


def carried_manual_grades(previous_details: Any) -> Dict[str, Dict[str, Any]]:
    """Manual scores from an earlier grading pass, ready for ``apply_manual_grades``."""
    if not isinstance(previous_details, dict):
        return {}
    return {
        str(qid): {"score": d.get("score"), "feedback": d.get("feedback")}
        for qid, d in previous_details.items()
        if isinstance(d, dict) and d.get("manually_graded")
    }


# ---------------------------------------------------------------------------
# Submission level
# ---------------------------------------------------------------------------


def can_auto_grade(questions: Iterable[Any]) -> bool:
    return any(str(_attr(q, "type") or "") in AUTO_GRADABLE_TYPES for q in (questions or []))


def ensure_gradable(submission: Any) -> None:
    if not bool(_attr(submission, "finished")):
        raise SubmissionNotGradable("Submission is not finished")
    if not _attr(submission, "answers"):
        raise SubmissionNotGradable("Submission has no answers")


def apply_result(submission: Any, result: Dict[str, Any], *, now: Optional[datetime] = None) -> None:
    """Write a grading result onto a submission row (no commit)."""
    submission.score = result["total_score"]
    submission.max_score = result["max_score"]
    submission.percentage = result["percentage"]
    submission.grading_details = result["grading_details"]
    submission.auto_grading_status = "PartiallyGraded" if result["requires_manual_grading"] else "Graded"
    submission.graded_at = now or datetime.now(timezone.utc)


def grade_submission(
    submission: Any,
    assessment: Any,
    *,
    now: Optional[datetime] = None,
    partial_credit: Optional[bool] = None,
) -> Dict[str, Any]:
    """Grade a finished submission against its assessment's current questions.

    Writes score, max_score, percentage, grading_details and graded_at onto
    ``submission`` and returns the result. A missing assessment grades as an
    empty question set.
    """
    ensure_gradable(submission)
    questions = list(_attr(assessment, "questions") or []) if assessment is not None else []
    result = grade_answers(questions, _attr(submission, "answers"), partial_credit=partial_credit)
    apply_result(submission, result, now=now)
    return result
