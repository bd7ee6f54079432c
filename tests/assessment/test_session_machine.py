# tests/assessment/test_session_machine.py
import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from src.constants import Category, SessionStatus
from services.assessment_engine.autosave import DebouncedSaveScheduler
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.models import AssessmentSession, Response
from services.assessment_engine.session import AssessmentSessionMachine
from services.errors import (
    BusyError,
    ConflictError,
    IncompleteAssessmentError,
    InvalidQuestionError,
    InvalidSubmissionError,
    NotFoundError,
    SessionStateError,
)

OWNER = "student-1"


async def answer_all(machine, session_id):
    await machine.answer(session_id, "q1", "a")
    await machine.answer(session_id, "q2", "b")
    await machine.answer(session_id, "q3", "yes")


# --- start / resume ---

@pytest.mark.asyncio
async def test_start_creates_in_progress_session_with_snapshot(machine, small_catalog):
    session, created = await machine.start(OWNER)

    assert created is True
    assert session.status == SessionStatus.IN_PROGRESS
    assert session.current_step == 0
    assert session.responses == {}
    assert session.total_questions == len(small_catalog)
    assert [q.id for q in session.catalog_snapshot] == ["q1", "q2", "q3", "q4"]


@pytest.mark.asyncio
async def test_start_twice_returns_the_same_session(machine):
    first, created_first = await machine.start(OWNER)
    second, created_second = await machine.start(OWNER)

    assert created_first is True
    assert created_second is False
    assert second.id == first.id


@pytest.mark.asyncio
async def test_start_collapses_onto_concurrent_winner(small_catalog):
    winner = AssessmentSession(
        id="winner",
        owner_id=OWNER,
        catalog_snapshot=small_catalog.snapshot(),
        total_questions=len(small_catalog),
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )
    store = AsyncMock()
    store.find_in_progress.side_effect = [None, winner]
    store.create.side_effect = ConflictError("unique violation")
    machine = AssessmentSessionMachine(store, small_catalog)

    session, created = await machine.start(OWNER)

    assert created is False
    assert session.id == "winner"


@pytest.mark.asyncio
async def test_start_raises_conflict_when_no_winner_found(small_catalog):
    store = AsyncMock()
    store.find_in_progress.return_value = None
    store.create.side_effect = ConflictError("unique violation")
    machine = AssessmentSessionMachine(store, small_catalog)

    with pytest.raises(ConflictError):
        await machine.start(OWNER)


@pytest.mark.asyncio
async def test_resume_without_session_is_not_found(machine):
    with pytest.raises(NotFoundError):
        await machine.resume(OWNER)


@pytest.mark.asyncio
async def test_resume_only_shows_answers_after_explicit_save(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")

    before = await machine.resume(OWNER)
    assert "q1" not in before.responses

    await machine.save(session.id)
    after = await machine.resume(OWNER)
    assert after.responses["q1"].weight == 10


@pytest.mark.asyncio
async def test_resume_shows_answers_after_debounced_save(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "b")
    assert machine.scheduler.is_armed(session.id)

    await asyncio.sleep(0.3)

    resumed = await machine.resume(OWNER)
    assert resumed.responses["q1"].value == "b"
    assert resumed.last_saved_at is not None
    assert not machine.scheduler.is_armed(session.id)


# --- answer ---

@pytest.mark.asyncio
async def test_answer_uses_option_weight_and_returns_pending_view(machine):
    session, _ = await machine.start(OWNER)
    view = await machine.answer(session.id, "q2", "b")

    assert view.responses["q2"].weight == 6
    assert view.questions_answered == 1


@pytest.mark.asyncio
async def test_answer_accepts_derived_weight(machine):
    session, _ = await machine.start(OWNER)
    view = await machine.answer(session.id, "q4", "custom", derived_weight=2.5)
    assert view.responses["q4"].weight == 2.5


@pytest.mark.asyncio
async def test_answer_upserts_by_question_id(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "c")
    view = await machine.answer(session.id, "q1", "a")

    assert view.questions_answered == 1
    assert view.responses["q1"].weight == 10


@pytest.mark.asyncio
async def test_answer_unknown_question(machine):
    session, _ = await machine.start(OWNER)
    with pytest.raises(InvalidQuestionError) as exc_info:
        await machine.answer(session.id, "nope", "a")
    assert exc_info.value.errors == {"nope": "Unknown question"}


@pytest.mark.asyncio
async def test_answer_unknown_option_without_weight(machine):
    session, _ = await machine.start(OWNER)
    with pytest.raises(InvalidSubmissionError):
        await machine.answer(session.id, "q1", "z")


@pytest.mark.asyncio
@pytest.mark.parametrize("weight", [float("nan"), float("inf"), float("-inf")])
async def test_answer_rejects_non_finite_derived_weight(machine, weight):
    session, _ = await machine.start(OWNER)
    with pytest.raises(InvalidSubmissionError) as exc_info:
        await machine.answer(session.id, "q4", "custom", derived_weight=weight)
    assert exc_info.value.errors == {"q4": "Invalid weight"}
    assert not machine.scheduler.is_armed(session.id)


@pytest.mark.asyncio
async def test_answer_for_another_owner_is_not_found(machine):
    session, _ = await machine.start(OWNER)
    with pytest.raises(NotFoundError):
        await machine.answer(session.id, "q1", "a", owner_id="someone-else")


# --- save / navigate ---

@pytest.mark.asyncio
async def test_save_merges_and_never_removes_responses(machine, clock):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    await machine.save(session.id)

    explicit = [Response(question_id="q2", value="c", weight=0, answered_at=clock())]
    saved = await machine.save(session.id, responses=explicit)

    assert set(saved.responses) == {"q1", "q2"}


@pytest.mark.asyncio
async def test_save_is_idempotent(machine, clock):
    session, _ = await machine.start(OWNER)
    explicit = [Response(question_id="q1", value="a", weight=10, answered_at=clock())]

    first = await machine.save(session.id, responses=explicit, step=1, time_spent_seconds=30)
    second = await machine.save(session.id, responses=explicit, step=1, time_spent_seconds=30)

    assert first.responses == second.responses
    assert second.current_step == 1
    assert second.time_spent_seconds == 30


@pytest.mark.asyncio
async def test_save_never_decreases_time_spent(machine):
    session, _ = await machine.start(OWNER)
    await machine.save(session.id, time_spent_seconds=120)
    saved = await machine.save(session.id, time_spent_seconds=45)
    assert saved.time_spent_seconds == 120


@pytest.mark.asyncio
async def test_save_clamps_step_to_snapshot(machine):
    session, _ = await machine.start(OWNER)
    assert (await machine.save(session.id, step=99)).current_step == 3
    assert (await machine.save(session.id, step=-4)).current_step == 0


@pytest.mark.asyncio
async def test_save_rejects_unknown_question(machine, clock):
    session, _ = await machine.start(OWNER)
    bad = [Response(question_id="ghost", value="a", weight=1, answered_at=clock())]
    with pytest.raises(InvalidQuestionError):
        await machine.save(session.id, responses=bad)


@pytest.mark.asyncio
async def test_save_rejects_non_finite_weight(machine, clock):
    session, _ = await machine.start(OWNER)
    bad = [Response(question_id="q1", value="a", weight=float("inf"), answered_at=clock())]
    with pytest.raises(InvalidSubmissionError):
        await machine.save(session.id, responses=bad)

    resumed = await machine.resume(OWNER)
    assert resumed.responses == {}


@pytest.mark.asyncio
async def test_explicit_save_cancels_pending_timer(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    assert machine.scheduler.is_armed(session.id)

    await machine.save(session.id)
    assert not machine.scheduler.is_armed(session.id)


@pytest.mark.asyncio
async def test_navigate_saves_immediately(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    await machine.navigate(session.id, 1)

    resumed = await machine.resume(OWNER)
    assert resumed.current_step == 1
    assert "q1" in resumed.responses
    assert not machine.scheduler.is_armed(session.id)


# --- submit ---

@pytest.mark.asyncio
async def test_submit_with_three_missing_required_questions(machine):
    session, _ = await machine.start(OWNER)

    with pytest.raises(IncompleteAssessmentError) as exc_info:
        await machine.submit(session.id)

    assert exc_info.value.missing_count == 3
    stored = await machine.get(session.id)
    assert stored.status == SessionStatus.IN_PROGRESS
    assert stored.scores is None


@pytest.mark.asyncio
async def test_submit_does_not_require_optional_questions(machine):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)

    result = await machine.submit(session.id)

    assert result.already_completed is False
    assert result.session.status == SessionStatus.COMPLETED
    assert result.session.scores == {"interest": 80, "aptitude": 100, "personality": 0}
    assert result.session.submitted_at is not None


@pytest.mark.asyncio
async def test_submit_includes_unsaved_answers_and_tears_down_pending_state(machine):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)

    result = await machine.submit(session.id)

    assert result.session.questions_answered == 3
    assert not machine.scheduler.is_armed(session.id)
    with pytest.raises(NotFoundError):
        await machine.resume(OWNER)


@pytest.mark.asyncio
async def test_submit_scores_each_dimension(session_store, make_question, clock):
    catalog = QuestionCatalog([
        make_question("i1", Category.INTEREST, {"a": 10, "b": 0}, order=1, scoring_key="investigative"),
        make_question("i2", Category.INTEREST, {"a": 10, "b": 0}, order=2, scoring_key="social"),
        make_question("t1", Category.APTITUDE, {"a": 5, "b": 0}, order=3),
    ])
    machine = AssessmentSessionMachine(session_store, catalog, scheduler=DebouncedSaveScheduler(0.05), clock=clock)
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "i1", "a")
    await machine.answer(session.id, "i2", "b")
    await machine.answer(session.id, "t1", "a")

    result = await machine.submit(session.id)

    assert result.session.scores == {"interest": 50, "aptitude": 100}
    assert result.session.dimension_scores == {"interest": {"investigative": 100, "social": 0}}
    stored = await session_store.get(session.id)
    assert stored.dimension_scores == result.session.dimension_scores
    machine.shutdown()


@pytest.mark.asyncio
async def test_second_submit_returns_stored_scores(machine, mocker):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)
    first = await machine.submit(session.id)

    scorer = mocker.patch("services.assessment_engine.session.calculate_scores")
    second = await machine.submit(session.id)

    assert second.already_completed is True
    assert second.session.scores == first.session.scores
    assert second.session.submitted_at == first.session.submitted_at
    scorer.assert_not_called()


@pytest.mark.asyncio
async def test_concurrent_submit_is_busy(machine, session_store, mocker):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)

    gate = asyncio.Event()
    original_update = session_store.update

    async def slow_update(updated):
        await gate.wait()
        await original_update(updated)

    mocker.patch.object(session_store, "update", side_effect=slow_update)

    first = asyncio.create_task(machine.submit(session.id))
    await asyncio.sleep(0.01)
    with pytest.raises(BusyError) as exc_info:
        await machine.submit(session.id)
    assert exc_info.value.retryable is True

    gate.set()
    result = await first
    assert result.session.is_completed


@pytest.mark.asyncio
async def test_completed_session_rejects_answers_and_saves(machine):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)
    await machine.submit(session.id)

    with pytest.raises(SessionStateError):
        await machine.answer(session.id, "q4", "3")
    with pytest.raises(SessionStateError):
        await machine.save(session.id, step=2)


@pytest.mark.asyncio
async def test_start_after_completion_creates_a_new_session(machine):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)
    await machine.submit(session.id)

    fresh, created = await machine.start(OWNER)
    assert created is True
    assert fresh.id != session.id

    history = await machine.list_for_owner(OWNER)
    assert [s.id for s in history] == [fresh.id, session.id]


@pytest.mark.asyncio
async def test_catalog_change_does_not_affect_existing_session_or_scores(session_store, small_catalog, make_question, clock):
    machine = AssessmentSessionMachine(session_store, small_catalog, scheduler=DebouncedSaveScheduler(0.05), clock=clock)
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)
    submitted = await machine.submit(session.id)

    reweighted = QuestionCatalog([make_question("q1", Category.INTEREST, {"a": 1}, order=1)])
    restarted = AssessmentSessionMachine(session_store, reweighted, clock=clock)
    again = await restarted.submit(session.id)

    assert again.already_completed is True
    assert again.session.scores == submitted.session.scores
    assert len(again.session.catalog_snapshot) == 4
    restarted.shutdown()
    machine.shutdown()


# --- teardown ---

@pytest.mark.asyncio
async def test_close_drops_pending_answers(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    machine.close(session.id)
    await asyncio.sleep(0.2)

    resumed = await machine.resume(OWNER)
    assert resumed.responses == {}


@pytest.mark.asyncio
async def test_shutdown_cancels_all_deferred_saves(machine):
    session, _ = await machine.start(OWNER)
    other, _ = await machine.start("student-2")
    await machine.answer(session.id, "q1", "a")
    await machine.answer(other.id, "q1", "a")

    machine.shutdown()

    assert not machine.scheduler.is_armed(session.id)
    assert not machine.scheduler.is_armed(other.id)


@pytest.mark.asyncio
async def test_save_without_new_answers_drops_pending_state(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    await machine.save(session.id)

    assert machine._pending == {}
    assert machine._locks == {}


@pytest.mark.asyncio
async def test_save_then_close_leaves_no_per_session_state(machine):
    session, _ = await machine.start(OWNER)
    await machine.answer(session.id, "q1", "a")
    await machine.save(session.id)
    await machine.answer(session.id, "q2", "b")
    machine.close(session.id)

    assert machine._pending == {}
    assert machine._locks == {}
    assert machine._lock_users == {}


@pytest.mark.asyncio
async def test_submit_leaves_no_per_session_state(machine):
    session, _ = await machine.start(OWNER)
    await answer_all(machine, session.id)
    await machine.submit(session.id)

    assert machine._pending == {}
    assert machine._locks == {}
    assert machine._lock_users == {}
