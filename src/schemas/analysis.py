from datetime import datetime
from typing import Any, Dict, List

from pydantic import BaseModel

from src.constants import SourceKind
from services.analysis.models import AnalysisArtifact


class ArtifactView(BaseModel):
    id: str
    source_kind: SourceKind
    source_id: str
    recommendations: Dict[str, List[Any]]
    confidence_score: int
    regeneration_count: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_artifact(cls, artifact: AnalysisArtifact) -> "ArtifactView":
        return cls.model_validate(artifact.model_dump(exclude={"owner_id", "source_payload", "is_active"}))


class HistoryItem(BaseModel):
    id: str
    source_kind: SourceKind
    source_id: str
    confidence_score: int
    regeneration_count: int
    created_at: datetime
    recommendation_counts: Dict[str, int]

    @classmethod
    def from_artifact(cls, artifact: AnalysisArtifact) -> "HistoryItem":
        return cls(
            id=artifact.id,
            source_kind=artifact.source_kind,
            source_id=artifact.source_id,
            confidence_score=artifact.confidence_score,
            regeneration_count=artifact.regeneration_count,
            created_at=artifact.created_at,
            recommendation_counts={k: len(v) for k, v in artifact.recommendations.items()},
        )
