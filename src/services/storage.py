"""
Document-style persistence for assessment sessions and analysis artifacts.

Only upsert-by-id and simple equality/ordering queries are used, so any
key-value or document store could stand in for SQLAlchemy here.
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.constants import SessionStatus, SourceKind
from src.db.models import AnalysisArtifactRecord, AssessmentSessionRecord
from services.analysis.models import AnalysisArtifact
from services.assessment_engine.models import AssessmentSession, Question, Response
from services.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    async def get(self, session_id: str) -> Optional[AssessmentSession]: ...
    async def find_in_progress(self, owner_id: str) -> Optional[AssessmentSession]: ...
    async def create(self, session: AssessmentSession) -> None: ...
    async def update(self, session: AssessmentSession) -> None: ...
    async def list_for_owner(self, owner_id: str) -> List[AssessmentSession]: ...


class ArtifactStore(Protocol):
    async def get(self, artifact_id: str) -> Optional[AnalysisArtifact]: ...
    async def find_by_source(self, owner_id: str, source_kind: SourceKind, source_id: str) -> Optional[AnalysisArtifact]: ...
    async def create(self, artifact: AnalysisArtifact) -> None: ...
    async def update(self, artifact: AnalysisArtifact) -> None: ...
    async def list_for_owner(self, owner_id: str, limit: int) -> List[AnalysisArtifact]: ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back naive; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Assessment sessions ---

def _session_to_record(session: AssessmentSession, record: AssessmentSessionRecord) -> AssessmentSessionRecord:
    record.id = session.id
    record.owner_id = session.owner_id
    record.status = session.status.value
    record.active_owner_id = session.owner_id if session.status == SessionStatus.IN_PROGRESS else None
    record.catalog_snapshot = [q.model_dump(mode="json") for q in session.catalog_snapshot]
    record.responses = [r.model_dump(mode="json") for r in session.responses.values()]
    record.current_step = session.current_step
    record.total_questions = session.total_questions
    record.time_spent_seconds = session.time_spent_seconds
    record.scores = dict(session.scores) if session.scores is not None else None
    record.dimension_scores = session.dimension_scores
    record.created_at = session.created_at
    record.last_saved_at = session.last_saved_at
    record.submitted_at = session.submitted_at
    return record


def _session_from_record(record: AssessmentSessionRecord) -> AssessmentSession:
    responses = [Response.model_validate(r) for r in record.responses or []]
    return AssessmentSession(
        id=record.id,
        owner_id=record.owner_id,
        status=SessionStatus(record.status),
        catalog_snapshot=[Question.model_validate(q) for q in record.catalog_snapshot],
        responses={r.question_id: r for r in responses},
        current_step=record.current_step,
        total_questions=record.total_questions,
        created_at=_as_utc(record.created_at),
        last_saved_at=_as_utc(record.last_saved_at),
        submitted_at=_as_utc(record.submitted_at),
        time_spent_seconds=record.time_spent_seconds,
        scores=record.scores,
        dimension_scores=record.dimension_scores,
    )


class SqlSessionStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, session_id: str) -> Optional[AssessmentSession]:
        async with self._session_factory() as db:
            record = await db.get(AssessmentSessionRecord, session_id)
            return _session_from_record(record) if record is not None else None

    async def find_in_progress(self, owner_id: str) -> Optional[AssessmentSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AssessmentSessionRecord).where(AssessmentSessionRecord.active_owner_id == owner_id)
            )
            record = result.scalars().first()
            return _session_from_record(record) if record is not None else None

    async def create(self, session: AssessmentSession) -> None:
        async with self._session_factory() as db:
            db.add(_session_to_record(session, AssessmentSessionRecord()))
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                logger.warning(f"Unique violation creating assessment {session.id} for owner {session.owner_id}: {e.orig}")
                raise ConflictError("An assessment is already in progress for this owner") from e

    async def update(self, session: AssessmentSession) -> None:
        async with self._session_factory() as db:
            record = await db.get(AssessmentSessionRecord, session.id)
            if record is None:
                raise NotFoundError("Assessment not found")
            _session_to_record(session, record)
            await db.commit()

    async def list_for_owner(self, owner_id: str) -> List[AssessmentSession]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AssessmentSessionRecord)
                .where(AssessmentSessionRecord.owner_id == owner_id)
                .order_by(AssessmentSessionRecord.created_at.desc())
            )
            return [_session_from_record(r) for r in result.scalars().all()]


# --- Analysis artifacts ---

def _artifact_to_record(artifact: AnalysisArtifact, record: AnalysisArtifactRecord) -> AnalysisArtifactRecord:
    record.id = artifact.id
    record.owner_id = artifact.owner_id
    record.source_kind = artifact.source_kind.value
    record.source_id = artifact.source_id
    record.source_payload = artifact.source_payload
    record.recommendations = artifact.recommendations
    record.confidence_score = artifact.confidence_score
    record.regeneration_count = artifact.regeneration_count
    record.is_active = artifact.is_active
    record.created_at = artifact.created_at
    record.updated_at = artifact.updated_at
    return record


def _artifact_from_record(record: AnalysisArtifactRecord) -> AnalysisArtifact:
    return AnalysisArtifact(
        id=record.id,
        owner_id=record.owner_id,
        source_kind=SourceKind(record.source_kind),
        source_id=record.source_id,
        source_payload=record.source_payload,
        recommendations=record.recommendations,
        confidence_score=record.confidence_score,
        regeneration_count=record.regeneration_count,
        is_active=record.is_active,
        created_at=_as_utc(record.created_at),
        updated_at=_as_utc(record.updated_at),
    )


class SqlArtifactStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get(self, artifact_id: str) -> Optional[AnalysisArtifact]:
        """Returns the artifact even when soft-deleted; callers decide visibility."""
        async with self._session_factory() as db:
            record = await db.get(AnalysisArtifactRecord, artifact_id)
            return _artifact_from_record(record) if record is not None else None

    async def find_by_source(self, owner_id: str, source_kind: SourceKind, source_id: str) -> Optional[AnalysisArtifact]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AnalysisArtifactRecord)
                .where(
                    AnalysisArtifactRecord.owner_id == owner_id,
                    AnalysisArtifactRecord.source_kind == source_kind.value,
                    AnalysisArtifactRecord.source_id == source_id,
                    AnalysisArtifactRecord.is_active.is_(True),
                )
                .order_by(AnalysisArtifactRecord.created_at.desc())
            )
            record = result.scalars().first()
            return _artifact_from_record(record) if record is not None else None

    async def create(self, artifact: AnalysisArtifact) -> None:
        async with self._session_factory() as db:
            db.add(_artifact_to_record(artifact, AnalysisArtifactRecord()))
            try:
                await db.commit()
            except IntegrityError as e:
                await db.rollback()
                raise ConflictError(f"Analysis {artifact.id} already exists") from e

    async def update(self, artifact: AnalysisArtifact) -> None:
        async with self._session_factory() as db:
            record = await db.get(AnalysisArtifactRecord, artifact.id)
            if record is None:
                raise NotFoundError("Analysis not found")
            _artifact_to_record(artifact, record)
            await db.commit()

    async def list_for_owner(self, owner_id: str, limit: int) -> List[AnalysisArtifact]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(AnalysisArtifactRecord)
                .where(
                    AnalysisArtifactRecord.owner_id == owner_id,
                    AnalysisArtifactRecord.is_active.is_(True),
                )
                .order_by(AnalysisArtifactRecord.created_at.desc())
                .limit(limit)
            )
            return [_artifact_from_record(r) for r in result.scalars().all()]
