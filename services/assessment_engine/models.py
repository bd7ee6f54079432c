from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.constants import Category, QuestionKind, SessionStatus


class QuestionOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    value: str
    weight: float = Field(default=0.0, allow_inf_nan=False)


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str = ""
    category: Category
    kind: QuestionKind = QuestionKind.SINGLE_SELECT
    options: List[QuestionOption]
    required: bool = True
    order: int
    help_text: Optional[str] = None
    # Sub-dimension within the category, e.g. a RIASEC type for interest questions
    scoring_key: Optional[str] = None

    @property
    def max_weight(self) -> float:
        return max((o.weight for o in self.options), default=0.0)

    def option_for(self, value: Any) -> Optional[QuestionOption]:
        """Finds the option whose value matches, comparing as strings so scale answers may arrive as ints."""
        for option in self.options:
            if option.value == str(value):
                return option
        return None


class Response(BaseModel):
    question_id: str
    value: Any
    weight: float # Captured at answer time; scoring never re-reads the catalog weight
    answered_at: datetime


class AssessmentSession(BaseModel):
    """
    One assessment lifecycle. Responses are keyed by question id in answer order;
    presentation order always comes from `catalog_snapshot`.
    """
    id: str
    owner_id: str
    status: SessionStatus = SessionStatus.IN_PROGRESS
    catalog_snapshot: List[Question]
    responses: Dict[str, Response] = Field(default_factory=dict)
    current_step: int = 0
    total_questions: int
    created_at: datetime
    last_saved_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    time_spent_seconds: int = 0
    scores: Optional[Dict[str, int]] = None
    dimension_scores: Optional[Dict[str, Dict[str, int]]] = None

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.catalog_snapshot:
            if q.id == question_id:
                return q
        return None

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def questions_answered(self) -> int:
        return len(self.responses)

    @property
    def completion_percentage(self) -> int:
        if self.is_completed:
            return 100
        if not self.total_questions:
            return 0
        return min(100, round(self.questions_answered * 100 / self.total_questions))

    def category_progress(self) -> Dict[str, Dict[str, int]]:
        progress: Dict[str, Dict[str, int]] = {}
        for q in self.catalog_snapshot:
            entry = progress.setdefault(q.category.value, {"total": 0, "answered": 0})
            entry["total"] += 1
            if q.id in self.responses:
                entry["answered"] += 1
        return progress

    def missing_required(self, responses: Optional[Dict[str, Response]] = None) -> List[str]:
        answered = self.responses if responses is None else responses
        return [q.id for q in self.catalog_snapshot if q.required and q.id not in answered]


class SubmitResult(BaseModel):
    session: AssessmentSession
    already_completed: bool = False
