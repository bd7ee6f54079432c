"""
Domain exceptions shared by the assessment, intake and analysis engines.

The HTTP layer (src/routers/errors.py) maps these onto response envelopes;
engines only raise them.
"""
from typing import Dict, Optional


class GuidanceError(Exception):
    """Base class for all domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(GuidanceError):
    """A session, artifact or question does not exist (or is not visible to the owner)."""
    pass


class InvalidSubmissionError(GuidanceError, ValueError):
    """Schema, required-field or range violations. Carries every violation at once."""

    def __init__(self, message: str, errors: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.errors = dict(errors or {})


class InvalidQuestionError(InvalidSubmissionError):
    """A response references a question outside the session's catalog snapshot."""

    def __init__(self, question_id: str):
        super().__init__(
            f"Question '{question_id}' is not part of this assessment",
            {question_id: "Unknown question"},
        )
        self.question_id = question_id


class IncompleteAssessmentError(GuidanceError, ValueError):
    """Submit attempted with unanswered required questions."""

    def __init__(self, missing_count: int):
        super().__init__(f"Please answer all questions. {missing_count} questions remaining.")
        self.missing_count = missing_count


class ConflictError(GuidanceError):
    """A duplicate or concurrent operation could not be reconciled."""
    retryable = False


class SessionStateError(ConflictError):
    """The operation is not valid in the session's current state."""
    pass


class BusyError(ConflictError):
    """Another request for the same resource is still in flight."""
    retryable = True


class GenerationFailedError(GuidanceError):
    """The recommendation producer failed or returned a malformed payload."""
    pass


class ProducerError(Exception):
    """Raised by recommendation producers; wrapped into GenerationFailedError by the manager."""
    pass
