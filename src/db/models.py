from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
)
from sqlalchemy.orm import declarative_base

# Define naming conventions for constraints and indexes
# https://alembic.sqlalchemy.org/en/latest/naming.html
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)
Base = declarative_base(metadata=metadata)


class AssessmentSessionRecord(Base):
    __tablename__ = "assessment_sessions"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(128), nullable=False)
    status = Column(String(20), nullable=False)
    # Equals owner_id while in progress and NULL once completed. The unique
    # constraint is what collapses concurrent starts to a single winner.
    active_owner_id = Column(String(128), nullable=True, unique=True)
    catalog_snapshot = Column(JSON, nullable=False)
    responses = Column(JSON, nullable=False, default=list)
    current_step = Column(Integer, nullable=False, default=0)
    total_questions = Column(Integer, nullable=False)
    time_spent_seconds = Column(Integer, nullable=False, default=0)
    scores = Column(JSON, nullable=True)
    dimension_scores = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_saved_at = Column(DateTime(timezone=True), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_assessment_sessions_owner_id_created_at", "owner_id", created_at.desc()),
    )


class AnalysisArtifactRecord(Base):
    __tablename__ = "analysis_artifacts"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(128), nullable=False)
    source_kind = Column(String(20), nullable=False)
    source_id = Column(String(64), nullable=False)
    source_payload = Column(JSON, nullable=False)
    recommendations = Column(JSON, nullable=False)
    confidence_score = Column(Integer, nullable=False, default=0)
    regeneration_count = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_analysis_artifacts_owner_id_created_at", "owner_id", created_at.desc()),
        Index("ix_analysis_artifacts_owner_id_source_id", "owner_id", "source_kind", "source_id"),
    )
