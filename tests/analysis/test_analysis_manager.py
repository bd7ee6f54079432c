# tests/analysis/test_analysis_manager.py
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.cache.artifacts import ArtifactCache
from src.constants import RECOMMENDATION_CATEGORIES, SourceKind
from services.analysis.manager import AnalysisLifecycleManager
from services.analysis.producer import RuleBasedRecommendationProducer
from services.errors import BusyError, GenerationFailedError, NotFoundError, ProducerError

OWNER = "student-1"
SCORES = {"scores": {"interest": 80, "aptitude": 100, "personality": 40, "academic": 60}}


def payload_for(kind, confidence=None, **overrides):
    result = {category: [f"{category}-item"] for category in RECOMMENDATION_CATEGORIES[kind]}
    if confidence is not None:
        result["confidence_score"] = confidence
    result.update(overrides)
    return result


@pytest.fixture
def producer():
    producer = MagicMock()
    producer.produce = AsyncMock(return_value=payload_for(SourceKind.ASSESSMENT, confidence=88))
    return producer


@pytest.fixture
def cache():
    cache = MagicMock(spec=ArtifactCache)
    cache.get = AsyncMock(return_value=None)
    cache.set = AsyncMock(return_value=True)
    cache.invalidate = AsyncMock(return_value=True)
    return cache


@pytest.fixture
def manager(artifact_store, producer, cache, clock):
    return AnalysisLifecycleManager(artifact_store, producer, cache=cache, clock=clock)


# --- generate ---

@pytest.mark.asyncio
async def test_generate_persists_and_caches(manager, producer, cache, artifact_store):
    artifact, cached = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)

    assert cached is False
    assert artifact.regeneration_count == 0
    assert artifact.confidence_score == 88
    assert artifact.recommendations["strengths"] == ["strengths-item"]
    assert "confidence_score" not in artifact.recommendations
    producer.produce.assert_awaited_once_with(SourceKind.ASSESSMENT, SCORES)
    cache.set.assert_awaited_once_with(artifact)
    assert (await artifact_store.get(artifact.id)) == artifact


@pytest.mark.asyncio
async def test_generate_for_same_source_returns_existing(manager, producer):
    first, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    second, cached = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)

    assert cached is True
    assert second.id == first.id
    producer.produce.assert_awaited_once()


@pytest.mark.asyncio
async def test_confidence_defaults_and_clamps(manager, producer):
    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT)
    default, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    assert default.confidence_score == 75

    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT, confidence=140)
    high, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-2", SCORES)
    assert high.confidence_score == 100

    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT, confidence=-3)
    low, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-3", SCORES)
    assert low.confidence_score == 0


@pytest.mark.asyncio
async def test_producer_failure_is_generation_failed(manager, producer, artifact_store):
    producer.produce.side_effect = ProducerError("timeout")

    with pytest.raises(GenerationFailedError):
        await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)

    assert await artifact_store.list_for_owner(OWNER, 20) == []


@pytest.mark.asyncio
async def test_missing_category_is_generation_failed(manager, producer):
    payload = payload_for(SourceKind.ASSESSMENT)
    del payload["recommended_streams"]
    producer.produce.return_value = payload

    with pytest.raises(GenerationFailedError, match="recommended_streams"):
        await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)


@pytest.mark.asyncio
async def test_non_list_category_is_generation_failed(manager, producer):
    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT, strengths="curious")

    with pytest.raises(GenerationFailedError):
        await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)


@pytest.mark.asyncio
async def test_empty_category_lists_are_allowed(manager, producer):
    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT, strengths=[])
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    assert artifact.recommendations["strengths"] == []


# --- regenerate ---

@pytest.mark.asyncio
async def test_regenerate_keeps_id_and_increments_count(manager, producer, cache):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    producer.produce.return_value = payload_for(SourceKind.ASSESSMENT, confidence=91, strengths=["new"])

    regenerated = await manager.regenerate(OWNER, artifact.id)
    again = await manager.regenerate(OWNER, artifact.id)

    assert regenerated.id == artifact.id
    assert regenerated.regeneration_count == 1
    assert again.regeneration_count == 2
    assert regenerated.recommendations["strengths"] == ["new"]
    assert regenerated.confidence_score == 91
    assert regenerated.created_at == artifact.created_at
    assert regenerated.updated_at > artifact.updated_at
    producer.produce.assert_awaited_with(SourceKind.ASSESSMENT, SCORES)
    cache.invalidate.assert_awaited_with(artifact.id)

    history = await manager.list_history(OWNER)
    assert [a.id for a in history] == [artifact.id]


@pytest.mark.asyncio
async def test_failed_regenerate_keeps_previous_artifact(manager, producer, artifact_store):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    producer.produce.side_effect = ProducerError("bad gateway")

    with pytest.raises(GenerationFailedError):
        await manager.regenerate(OWNER, artifact.id)

    stored = await artifact_store.get(artifact.id)
    assert stored.regeneration_count == 0
    assert stored.recommendations == artifact.recommendations


@pytest.mark.asyncio
async def test_concurrent_regenerate_is_busy(manager, producer):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)

    gate = asyncio.Event()

    async def slow_produce(kind, payload):
        await gate.wait()
        return payload_for(kind)

    producer.produce.side_effect = slow_produce
    first = asyncio.create_task(manager.regenerate(OWNER, artifact.id))
    await asyncio.sleep(0.01)

    with pytest.raises(BusyError):
        await manager.regenerate(OWNER, artifact.id)

    gate.set()
    assert (await first).regeneration_count == 1


@pytest.mark.asyncio
async def test_regenerate_foreign_artifact_is_not_found(manager):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    with pytest.raises(NotFoundError):
        await manager.regenerate("intruder", artifact.id)


# --- get / history / delete ---

@pytest.mark.asyncio
async def test_get_prefers_cache(manager, cache, artifact_store):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    cache.get.return_value = artifact
    get_spy = AsyncMock(wraps=artifact_store.get)
    artifact_store.get = get_spy

    assert await manager.get(OWNER, artifact.id) == artifact
    get_spy.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_falls_back_to_store_and_refills_cache(manager, cache):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    cache.set.reset_mock()

    assert await manager.get(OWNER, artifact.id) == artifact
    cache.set.assert_awaited_once_with(artifact)


@pytest.mark.asyncio
async def test_get_ignores_cached_artifact_of_another_owner(manager, cache):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    cache.get.return_value = artifact
    with pytest.raises(NotFoundError):
        await manager.get("intruder", artifact.id)


@pytest.mark.asyncio
async def test_history_is_newest_first_and_bounded(artifact_store, producer, cache, clock):
    manager = AnalysisLifecycleManager(artifact_store, producer, cache=cache, history_limit=3, clock=clock)
    ids = []
    for n in range(5):
        artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, f"a-{n}", SCORES)
        ids.append(artifact.id)

    history = await manager.list_history(OWNER)
    assert [a.id for a in history] == list(reversed(ids))[:3]


@pytest.mark.asyncio
async def test_delete_hides_artifact(manager, cache):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)

    await manager.delete(OWNER, artifact.id)

    cache.invalidate.assert_awaited_with(artifact.id)
    assert await manager.list_history(OWNER) == []
    with pytest.raises(NotFoundError):
        await manager.get(OWNER, artifact.id)
    with pytest.raises(NotFoundError):
        await manager.delete(OWNER, artifact.id)


@pytest.mark.asyncio
async def test_source_can_be_analyzed_again_after_delete(manager, producer):
    artifact, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    await manager.delete(OWNER, artifact.id)

    fresh, cached = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    assert cached is False
    assert fresh.id != artifact.id


@pytest.mark.asyncio
async def test_rule_based_producer_satisfies_manager_for_both_sources(artifact_store, clock):
    manager = AnalysisLifecycleManager(artifact_store, RuleBasedRecommendationProducer(), cache=ArtifactCache(), clock=clock)
    intake = {
        "educationLevel": "12th Pass",
        "familyIncome": "Below 2 Lakhs",
        "careerInterest": "Research",
        "academicData": {"stream": "Science (PCB)", "percentage": 91},
    }

    from_scores, _ = await manager.generate(OWNER, SourceKind.ASSESSMENT, "a-1", SCORES)
    from_intake, _ = await manager.generate(OWNER, SourceKind.INTAKE, "i-1", intake)

    assert from_scores.recommendations["career_paths"]
    assert {s["type"] for s in from_intake.recommendations["scholarships"]} == {"Need Based", "Merit Based"}
