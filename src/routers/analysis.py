import logging
import uuid

from fastapi import APIRouter, Depends, Response, status

from src.constants import SourceKind
from src.routers.dependencies import get_analysis_manager, get_current_owner, get_session_machine
from src.schemas.analysis import ArtifactView, HistoryItem
from src.schemas.envelope import envelope
from services.analysis.manager import AnalysisLifecycleManager
from services.assessment_engine.session import AssessmentSessionMachine
from services.errors import InvalidSubmissionError
from services.intake.resolver import EducationIntake, require_valid

router = APIRouter(prefix="/analysis")
logger = logging.getLogger(__name__)


def _generated(response: Response, artifact, cached: bool):
    if cached:
        response.status_code = status.HTTP_200_OK
        return envelope(ArtifactView.from_artifact(artifact), "Analysis already exists")
    return envelope(ArtifactView.from_artifact(artifact), "Analysis completed successfully")


@router.post("/assessments/{assessment_id}", status_code=status.HTTP_201_CREATED)
async def analyze_assessment(
    assessment_id: str,
    response: Response,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    session = await machine.get(assessment_id, owner_id=owner_id)
    if not session.is_completed or session.scores is None:
        raise InvalidSubmissionError("Assessment must be completed before it can be analyzed")
    artifact, cached = await manager.generate(
        owner_id,
        SourceKind.ASSESSMENT,
        assessment_id,
        {"scores": session.scores, "dimensions": session.dimension_scores or {}},
    )
    return _generated(response, artifact, cached)


@router.post("/intake", status_code=status.HTTP_201_CREATED)
async def analyze_intake(
    intake: EducationIntake,
    response: Response,
    owner_id: str = Depends(get_current_owner),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    require_valid(intake)
    # Every intake submission is its own source
    artifact, cached = await manager.generate(
        owner_id, SourceKind.INTAKE, str(uuid.uuid4()), intake.form_payload()
    )
    return _generated(response, artifact, cached)


@router.get("/history")
async def analysis_history(
    owner_id: str = Depends(get_current_owner),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    artifacts = await manager.list_history(owner_id)
    return envelope([HistoryItem.from_artifact(a) for a in artifacts])


@router.get("/{artifact_id}")
async def get_analysis(
    artifact_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    artifact = await manager.get(owner_id, artifact_id)
    return envelope(ArtifactView.from_artifact(artifact))


@router.post("/{artifact_id}/regenerate")
async def regenerate_analysis(
    artifact_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    artifact = await manager.regenerate(owner_id, artifact_id)
    return envelope(ArtifactView.from_artifact(artifact), "Analysis regenerated successfully")


@router.delete("/{artifact_id}")
async def delete_analysis(
    artifact_id: str,
    owner_id: str = Depends(get_current_owner),
    manager: AnalysisLifecycleManager = Depends(get_analysis_manager),
):
    await manager.delete(owner_id, artifact_id)
    return envelope(None, "Analysis deleted successfully")
