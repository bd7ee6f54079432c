import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from src.constants import Category
from src.routers.dependencies import get_current_owner, get_question_catalog, get_session_machine
from src.schemas.assessment import (
    AnswerRequest,
    NavigateRequest,
    SaveRequest,
    SessionDetail,
    SessionView,
    SubmitView,
)
from src.schemas.envelope import envelope
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.models import Response as AssessmentResponse
from services.assessment_engine.session import AssessmentSessionMachine

router = APIRouter(prefix="/assessments")
logger = logging.getLogger(__name__)


@router.get("/questions")
async def list_questions(
    category: Optional[Category] = Query(default=None),
    catalog: QuestionCatalog = Depends(get_question_catalog),
):
    """The live catalog. Sessions keep answering against their own snapshot."""
    questions = catalog.list_questions(category)
    return envelope({
        "version": catalog.version,
        "categories": catalog.categories(),
        "count": len(questions),
        "questions": questions,
    })


@router.post("/start", status_code=status.HTTP_201_CREATED)
async def start_assessment(
    response: Response,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    session, created = await machine.start(owner_id)
    if not created:
        response.status_code = status.HTTP_200_OK
        return envelope(SessionDetail.from_session(session), "Resuming existing assessment")
    return envelope(SessionDetail.from_session(session), "Assessment started")


@router.get("/resume")
async def resume_assessment(
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    session = await machine.resume(owner_id)
    return envelope(SessionDetail.from_session(session))


@router.get("")
async def list_assessments(
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    sessions = await machine.list_for_owner(owner_id)
    return envelope([SessionView.from_session(s) for s in sessions])


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    session = await machine.get(assessment_id, owner_id=owner_id)
    return envelope(SessionDetail.from_session(session))


@router.post("/{assessment_id}/answers")
async def answer_question(
    assessment_id: str,
    request: AnswerRequest,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    session = await machine.answer(
        assessment_id,
        request.question_id,
        request.value,
        derived_weight=request.weight,
        owner_id=owner_id,
    )
    return envelope(SessionView.from_session(session), "Answer recorded")


@router.post("/{assessment_id}/navigate")
async def navigate_assessment(
    assessment_id: str,
    request: NavigateRequest,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    session = await machine.navigate(assessment_id, request.step, owner_id=owner_id)
    return envelope(SessionView.from_session(session), "Progress saved")


@router.put("/{assessment_id}/save")
async def save_assessment(
    assessment_id: str,
    request: SaveRequest,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    responses = None
    if request.responses is not None:
        responses = [
            AssessmentResponse(
                question_id=r.question_id,
                value=r.value,
                weight=r.weight,
                answered_at=r.answered_at or machine.now(),
            )
            for r in request.responses
        ]
    session = await machine.save(
        assessment_id,
        responses=responses,
        step=request.current_step,
        time_spent_seconds=request.time_spent_seconds,
        owner_id=owner_id,
    )
    return envelope(SessionView.from_session(session), "Progress saved")


@router.post("/{assessment_id}/submit")
async def submit_assessment(
    assessment_id: str,
    owner_id: str = Depends(get_current_owner),
    machine: AssessmentSessionMachine = Depends(get_session_machine),
):
    result = await machine.submit(assessment_id, owner_id=owner_id)
    message = "Assessment already submitted" if result.already_completed else "Assessment submitted successfully"
    view = SubmitView(assessment=SessionView.from_session(result.session), already_completed=result.already_completed)
    return envelope(view, message)
