import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from services.analysis.manager import AnalysisLifecycleManager
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.session import AssessmentSessionMachine

logger = logging.getLogger(__name__)


def get_current_owner(x_owner_id: Optional[str] = Header(default=None)) -> str:
    # Identity is provisioned upstream; the gateway forwards the authenticated id
    if not x_owner_id or not x_owner_id.strip():
        raise HTTPException(status_code=401, detail="Missing owner identity")
    return x_owner_id.strip()


def get_question_catalog(request: Request) -> QuestionCatalog:
    return request.app.state.question_catalog


def get_session_machine(request: Request) -> AssessmentSessionMachine:
    return request.app.state.session_machine


def get_analysis_manager(request: Request) -> AnalysisLifecycleManager:
    return request.app.state.analysis_manager
