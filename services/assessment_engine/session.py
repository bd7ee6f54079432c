"""
Assessment Session State Machine

    (none) --start--> InProgress --submit--> Completed (terminal)

A session row only exists once started, so "not started" is the absence of one.

Answers are buffered in memory per session and flushed by a debounced save,
an explicit save, navigation, or submit. resume() only ever reports what has
been persisted.
"""
import asyncio
import logging
import math
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple

from src.constants import SessionStatus
from src.services.storage import SessionStore
from services.assessment_engine.autosave import DebouncedSaveScheduler
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.models import AssessmentSession, Response, SubmitResult
from services.assessment_engine.scorer import calculate_dimension_scores, calculate_scores
from services.errors import (
    BusyError,
    ConflictError,
    IncompleteAssessmentError,
    InvalidQuestionError,
    InvalidSubmissionError,
    NotFoundError,
    SessionStateError,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _check_weight(question_id: str, weight: float) -> None:
    if not math.isfinite(weight):
        raise InvalidSubmissionError(
            f"Weight for question '{question_id}' must be a finite number",
            {question_id: "Invalid weight"},
        )


class _PendingState:
    """Unsaved answers and step pointer layered over the last persisted session."""

    def __init__(self, session: AssessmentSession):
        self.session = session
        self.responses: Dict[str, Response] = dict(session.responses)
        self.step = session.current_step

    def view(self) -> AssessmentSession:
        return self.session.model_copy(update={"responses": dict(self.responses), "current_step": self.step})


class AssessmentSessionMachine:
    def __init__(
        self,
        store: SessionStore,
        catalog: QuestionCatalog,
        scheduler: Optional[DebouncedSaveScheduler] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.catalog = catalog
        self.scheduler = scheduler or DebouncedSaveScheduler()
        self._clock = clock
        self._pending: Dict[str, _PendingState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._submitting: Set[str] = set()

    def now(self) -> datetime:
        return self._clock()

    # --- Lifecycle ---

    async def start(self, owner_id: str) -> Tuple[AssessmentSession, bool]:
        """
        Returns the owner's in-progress session, creating one bound to a fresh
        catalog snapshot if none exists.

        Returns:
            (session, created) where created is False when an existing session was resumed.
        """
        existing = await self.store.find_in_progress(owner_id)
        if existing is not None:
            logger.info(f"Owner {owner_id} already has assessment {existing.id} in progress")
            return existing, False

        snapshot = self.catalog.snapshot()
        session = AssessmentSession(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            status=SessionStatus.IN_PROGRESS,
            catalog_snapshot=snapshot,
            total_questions=len(snapshot),
            created_at=self._clock(),
        )
        try:
            await self.store.create(session)
        except ConflictError:
            # A concurrent start won the unique (owner, in-progress) slot
            winner = await self.store.find_in_progress(owner_id)
            if winner is None:
                raise
            logger.warning(f"Concurrent start for owner {owner_id} collapsed onto assessment {winner.id}")
            return winner, False

        logger.info(f"Started assessment {session.id} for owner {owner_id} with {session.total_questions} questions")
        return session, True

    async def resume(self, owner_id: str) -> AssessmentSession:
        session = await self.store.find_in_progress(owner_id)
        if session is None:
            raise NotFoundError("No assessment in progress found")
        return session

    async def get(self, session_id: str, owner_id: Optional[str] = None) -> AssessmentSession:
        return await self._load(session_id, owner_id)

    async def list_for_owner(self, owner_id: str) -> List[AssessmentSession]:
        return await self.store.list_for_owner(owner_id)

    # --- Answering and saving ---

    async def answer(
        self,
        session_id: str,
        question_id: str,
        value: Any,
        derived_weight: Optional[float] = None,
        owner_id: Optional[str] = None,
    ) -> AssessmentSession:
        """
        Upserts a response into the pending state and re-arms the deferred save.
        Nothing is persisted here.
        """
        pending = await self._pending_for(session_id, owner_id)
        question = pending.session.question(question_id)
        if question is None:
            raise InvalidQuestionError(question_id)

        weight = derived_weight
        if weight is None:
            option = question.option_for(value)
            if option is None:
                raise InvalidSubmissionError(
                    f"'{value}' is not a valid answer for question '{question_id}'",
                    {question_id: "Invalid option"},
                )
            weight = option.weight
        _check_weight(question_id, weight)

        pending.responses[question_id] = Response(
            question_id=question_id,
            value=value,
            weight=weight,
            answered_at=self._clock(),
        )
        self.scheduler.arm(session_id, lambda: self.save(session_id))
        return pending.view()

    async def navigate(self, session_id: str, step: int, owner_id: Optional[str] = None) -> AssessmentSession:
        """Moves the step pointer and saves immediately, regardless of any armed timer."""
        pending = await self._pending_for(session_id, owner_id)
        pending.step = step
        return await self.save(session_id)

    async def save(
        self,
        session_id: str,
        responses: Optional[Iterable[Response]] = None,
        step: Optional[int] = None,
        time_spent_seconds: Optional[int] = None,
        owner_id: Optional[str] = None,
    ) -> AssessmentSession:
        """
        Persists the full response set and step pointer.

        Responses are merged by question id and never removed, so a retried or
        stale save cannot roll back answers. With no explicit arguments the
        pending state is flushed.
        """
        self.scheduler.cancel(session_id)
        async with self._locked(session_id):
            session = await self._load(session_id, owner_id)
            if session.is_completed:
                raise SessionStateError("Assessment already completed")

            explicit: Dict[str, Response] = {}
            for response in responses or ():
                if session.question(response.question_id) is None:
                    raise InvalidQuestionError(response.question_id)
                _check_weight(response.question_id, response.weight)
                explicit[response.question_id] = response

            pending = self._pending.get(session_id)
            if pending is not None:
                pending.responses.update(explicit)
                incoming = dict(pending.responses)
                if step is None:
                    step = pending.step
            else:
                incoming = explicit

            merged = dict(session.responses)
            merged.update(incoming)

            update: Dict[str, Any] = {"responses": merged, "last_saved_at": self._clock()}
            if step is not None:
                update["current_step"] = self._clamp_step(session, step)
            if time_spent_seconds is not None:
                update["time_spent_seconds"] = max(session.time_spent_seconds, time_spent_seconds)

            saved = session.model_copy(update=update)
            await self.store.update(saved)

            pending = self._pending.get(session_id)
            if pending is not None:
                # pending.responses already holds everything merged plus any answers
                # that arrived during the write, so only the baseline moves
                pending.session = saved
                pending.step = saved.current_step
                if not self.scheduler.is_armed(session_id) and pending.responses == saved.responses:
                    del self._pending[session_id]

        logger.info(f"Saved assessment {session_id}: {saved.questions_answered}/{saved.total_questions} answered, step {saved.current_step}")
        return saved

    # --- Submission ---

    async def submit(self, session_id: str, owner_id: Optional[str] = None) -> SubmitResult:
        """
        Scores and completes the session. Already-completed sessions return their
        stored scores untouched.

        Raises:
            BusyError: A submit for this session is already in flight.
            IncompleteAssessmentError: Required questions are unanswered; nothing changes.
        """
        if session_id in self._submitting:
            raise BusyError("Assessment submission already in progress")
        self._submitting.add(session_id)
        try:
            async with self._locked(session_id):
                session = await self._load(session_id, owner_id)
                if session.is_completed:
                    logger.info(f"Assessment {session_id} already completed; returning stored scores")
                    return SubmitResult(session=session, already_completed=True)

                responses = dict(session.responses)
                pending = self._pending.get(session_id)
                if pending is not None:
                    responses.update(pending.responses)

                missing = session.missing_required(responses)
                if missing:
                    logger.info(f"Rejected submit for assessment {session_id}: {len(missing)} required questions unanswered")
                    raise IncompleteAssessmentError(len(missing))

                now = self._clock()
                scores = calculate_scores(session.catalog_snapshot, responses)
                completed = session.model_copy(update={
                    "responses": responses,
                    "scores": scores,
                    "dimension_scores": calculate_dimension_scores(session.catalog_snapshot, responses),
                    "status": SessionStatus.COMPLETED,
                    "submitted_at": now,
                    "last_saved_at": now,
                    "current_step": pending.step if pending is not None else session.current_step,
                })
                await self.store.update(completed)
                self.close(session_id)
        finally:
            self._submitting.discard(session_id)

        logger.info(f"Assessment {session_id} submitted with scores {scores}")
        return SubmitResult(session=completed, already_completed=False)

    # --- Teardown ---

    def close(self, session_id: str) -> None:
        """Cancels the deferred save and drops unsaved state. No save is guaranteed afterwards."""
        self.scheduler.cancel(session_id)
        self._pending.pop(session_id, None)

    def shutdown(self) -> None:
        cancelled = self.scheduler.cancel_all()
        self._pending.clear()
        if cancelled:
            logger.info(f"Cancelled {cancelled} pending deferred saves on shutdown")

    # --- Helpers ---

    @asynccontextmanager
    async def _locked(self, session_id: str) -> AsyncIterator[None]:
        """Per-session lock, dropped once no caller holds or waits on it."""
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._locks[session_id]

    async def _load(self, session_id: str, owner_id: Optional[str]) -> AssessmentSession:
        session = await self.store.get(session_id)
        if session is None or (owner_id is not None and session.owner_id != owner_id):
            raise NotFoundError("Assessment not found")
        return session

    async def _pending_for(self, session_id: str, owner_id: Optional[str]) -> _PendingState:
        pending = self._pending.get(session_id)
        if pending is not None:
            if owner_id is not None and pending.session.owner_id != owner_id:
                raise NotFoundError("Assessment not found")
            if pending.session.is_completed:
                raise SessionStateError("Assessment already completed")
            return pending

        session = await self._load(session_id, owner_id)
        if session.is_completed:
            raise SessionStateError("Assessment already completed")
        pending = self._pending.setdefault(session_id, _PendingState(session))
        return pending

    @staticmethod
    def _clamp_step(session: AssessmentSession, step: int) -> int:
        last = max(0, session.total_questions - 1)
        return min(max(0, step), last)
