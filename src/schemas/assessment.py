from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from src.constants import SessionStatus
from services.assessment_engine.models import AssessmentSession, Question, Response


class AnswerRequest(BaseModel):
    question_id: str
    value: Any
    weight: Optional[float] = Field(default=None, allow_inf_nan=False)  # Omit to use the matching option's weight


class NavigateRequest(BaseModel):
    step: int


class SavedResponse(BaseModel):
    question_id: str
    value: Any
    weight: float = Field(allow_inf_nan=False)
    answered_at: Optional[datetime] = None


class SaveRequest(BaseModel):
    responses: Optional[List[SavedResponse]] = None
    current_step: Optional[int] = None
    time_spent_seconds: Optional[int] = Field(default=None, ge=0)


class SessionView(BaseModel):
    id: str
    status: SessionStatus
    current_step: int
    total_questions: int
    questions_answered: int
    completion_percentage: int
    category_progress: Dict[str, Dict[str, int]]
    responses: List[Response]
    time_spent_seconds: int
    created_at: datetime
    last_saved_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    scores: Optional[Dict[str, int]] = None
    dimension_scores: Optional[Dict[str, Dict[str, int]]] = None

    @classmethod
    def from_session(cls, session: AssessmentSession) -> "SessionView":
        return cls(
            id=session.id,
            status=session.status,
            current_step=session.current_step,
            total_questions=session.total_questions,
            questions_answered=session.questions_answered,
            completion_percentage=session.completion_percentage,
            category_progress=session.category_progress(),
            responses=list(session.responses.values()),
            time_spent_seconds=session.time_spent_seconds,
            created_at=session.created_at,
            last_saved_at=session.last_saved_at,
            submitted_at=session.submitted_at,
            scores=session.scores,
            dimension_scores=session.dimension_scores,
        )


class SessionDetail(SessionView):
    """SessionView plus the questions the session was started with."""
    questions: List[Question]

    @classmethod
    def from_session(cls, session: AssessmentSession) -> "SessionDetail":
        view = SessionView.from_session(session)
        return cls(**view.model_dump(), questions=session.catalog_snapshot)


class SubmitView(BaseModel):
    assessment: SessionView
    already_completed: bool
