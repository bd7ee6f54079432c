from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel, Field

from src.constants import SourceKind


class AnalysisArtifact(BaseModel):
    """
    A generated recommendation set. The id is stable across regenerations;
    only recommendations, confidence and the counter change.
    """
    id: str
    owner_id: str
    source_kind: SourceKind
    source_id: str
    source_payload: Dict[str, Any] # Kept so regeneration re-runs the exact same source
    recommendations: Dict[str, List[Any]] = Field(default_factory=dict)
    confidence_score: int = 0
    regeneration_count: int = 0
    is_active: bool = True
    created_at: datetime
    updated_at: datetime
