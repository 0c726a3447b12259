from __future__ import annotations


class GradingError(Exception):
    """Base exception for grading-related errors"""
    pass


class AssessmentNotFound(GradingError):
    pass


class SubmissionNotFound(GradingError):
    pass


class SubmissionNotGradable(GradingError):
    """The submission is not finished or carries no answers."""
    pass


class SubmissionStateError(GradingError):
    """The requested transition does not fit the submission's current state."""
    pass


class AccessDenied(GradingError):
    pass


class InvalidQuestionData(GradingError):
    """A question's stored answer/choices cannot be interpreted."""
    pass
