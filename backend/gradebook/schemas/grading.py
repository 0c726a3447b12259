from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class AnswerIn(BaseModel):
    question_id: int
    # Choice index for MCQ / TrueFalse, free text otherwise
    answer: Optional[Any] = None


class SaveAnswersRequest(BaseModel):
    answers: List[AnswerIn] = Field(default_factory=list)

    def as_mapping(self) -> Dict[str, Any]:
        return {str(a.question_id): a.answer for a in self.answers}


class SubmitRequest(SaveAnswersRequest):
    pass


class ManualGradeItem(BaseModel):
    question_id: int
    score: float = Field(ge=0)
    feedback: Optional[str] = None


class ManualGradeRequest(BaseModel):
    grades: List[ManualGradeItem] = Field(default_factory=list)

    def as_mapping(self) -> Dict[str, Dict[str, Any]]:
        return {str(g.question_id): {"score": g.score, "feedback": g.feedback} for g in self.grades}
