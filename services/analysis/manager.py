"""
Analysis Lifecycle Manager

Generates, caches, regenerates, lists and soft-deletes recommendation
artifacts. Producers are never retried automatically; a failed generation
leaves no artifact behind and a failed regeneration leaves the old one intact.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from config.settings import settings
from src.cache.artifacts import ArtifactCache
from src.constants import DEFAULT_CONFIDENCE_SCORE, RECOMMENDATION_CATEGORIES, SourceKind
from src.services.storage import ArtifactStore
from services.analysis.models import AnalysisArtifact
from services.analysis.producer import RecommendationProducer
from services.errors import BusyError, GenerationFailedError, NotFoundError

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clamp_confidence(raw: Any) -> int:
    if raw is None or isinstance(raw, bool):
        return DEFAULT_CONFIDENCE_SCORE
    try:
        value = int(round(float(raw)))
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE_SCORE
    return min(100, max(0, value))


class AnalysisLifecycleManager:
    def __init__(
        self,
        store: ArtifactStore,
        producer: RecommendationProducer,
        cache: Optional[ArtifactCache] = None,
        history_limit: int = settings.analysis_history_limit,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.producer = producer
        self.cache = cache or ArtifactCache()
        self.history_limit = history_limit
        self._clock = clock
        self._in_flight: Set[str] = set()

    async def _produce(self, source_kind: SourceKind, payload: Dict[str, Any]) -> Tuple[Dict[str, List[Any]], int]:
        """Runs the producer and checks every declared category is present as a list."""
        try:
            result = await self.producer.produce(source_kind, payload)
        except Exception as e:
            logger.error(f"Recommendation producer failed for {source_kind.value}: {e}", exc_info=True)
            raise GenerationFailedError("Failed to generate analysis. Please try again.") from e

        if not isinstance(result, dict):
            raise GenerationFailedError("Recommendation producer returned a malformed payload")

        missing = [c for c in RECOMMENDATION_CATEGORIES[source_kind] if not isinstance(result.get(c), list)]
        if missing:
            logger.error(f"Producer payload for {source_kind.value} missing categories {missing}")
            raise GenerationFailedError(f"Recommendation payload missing categories: {', '.join(missing)}")

        recommendations = {c: list(result[c]) for c in RECOMMENDATION_CATEGORIES[source_kind]}
        return recommendations, _clamp_confidence(result.get("confidence_score"))

    async def generate(
        self,
        owner_id: str,
        source_kind: SourceKind,
        source_id: str,
        payload: Dict[str, Any],
    ) -> Tuple[AnalysisArtifact, bool]:
        """
        Produces and stores a new artifact for the source.

        Returns:
            (artifact, cached) where cached is True when an active artifact
            already existed for this owner and source.
        """
        existing = await self.store.find_by_source(owner_id, source_kind, source_id)
        if existing is not None:
            logger.info(f"Returning existing analysis {existing.id} for {source_kind.value} {source_id}")
            return existing, True

        guard = f"{source_kind.value}:{source_id}"
        if guard in self._in_flight:
            raise BusyError("Analysis generation already in progress")
        self._in_flight.add(guard)
        try:
            recommendations, confidence = await self._produce(source_kind, payload)
            now = self._clock()
            artifact = AnalysisArtifact(
                id=str(uuid.uuid4()),
                owner_id=owner_id,
                source_kind=source_kind,
                source_id=source_id,
                source_payload=payload,
                recommendations=recommendations,
                confidence_score=confidence,
                created_at=now,
                updated_at=now,
            )
            await self.store.create(artifact)
        finally:
            self._in_flight.discard(guard)

        await self.cache.set(artifact)
        logger.info(f"Generated analysis {artifact.id} for owner {owner_id} from {source_kind.value} {source_id} (confidence {confidence})")
        return artifact, False

    async def regenerate(self, owner_id: str, artifact_id: str) -> AnalysisArtifact:
        """Re-runs the producer over the stored source payload, keeping the artifact id."""
        if artifact_id in self._in_flight:
            raise BusyError("Analysis regeneration already in progress")
        self._in_flight.add(artifact_id)
        try:
            current = await self._load(owner_id, artifact_id)
            recommendations, confidence = await self._produce(current.source_kind, current.source_payload)
            updated = current.model_copy(update={
                "recommendations": recommendations,
                "confidence_score": confidence,
                "regeneration_count": current.regeneration_count + 1,
                "updated_at": self._clock(),
            })
            await self.store.update(updated)
        finally:
            self._in_flight.discard(artifact_id)

        await self.cache.invalidate(artifact_id)
        await self.cache.set(updated)
        logger.info(f"Regenerated analysis {artifact_id} (count {updated.regeneration_count})")
        return updated

    async def get(self, owner_id: str, artifact_id: str) -> AnalysisArtifact:
        cached = await self.cache.get(artifact_id)
        if cached is not None and cached.is_active and cached.owner_id == owner_id:
            return cached
        artifact = await self._load(owner_id, artifact_id)
        await self.cache.set(artifact)
        return artifact

    async def list_history(self, owner_id: str) -> List[AnalysisArtifact]:
        return await self.store.list_for_owner(owner_id, self.history_limit)

    async def delete(self, owner_id: str, artifact_id: str) -> None:
        artifact = await self._load(owner_id, artifact_id)
        await self.store.update(artifact.model_copy(update={"is_active": False, "updated_at": self._clock()}))
        await self.cache.invalidate(artifact_id)
        logger.info(f"Deleted analysis {artifact_id} for owner {owner_id}")

    async def _load(self, owner_id: str, artifact_id: str) -> AnalysisArtifact:
        artifact = await self.store.get(artifact_id)
        if artifact is None or not artifact.is_active or artifact.owner_id != owner_id:
            raise NotFoundError("Analysis not found")
        return artifact
