from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from src.constants import Category, QuestionKind
from src.db.session import create_schema, get_async_engine, get_session_factory
from src.services.storage import SqlArtifactStore, SqlSessionStore
from services.assessment_engine.autosave import DebouncedSaveScheduler
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.models import Question, QuestionOption
from services.assessment_engine.session import AssessmentSessionMachine

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


class FakeClock:
    """Deterministic clock; every call advances one second so orderings are stable."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 9, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def build_question(qid, category, weights, required=True, order=0, kind=QuestionKind.SINGLE_SELECT, scoring_key=None):
    options = [QuestionOption(label=str(value), value=str(value), weight=weight) for value, weight in weights.items()]
    return Question(
        id=qid, text=f"Question {qid}", category=category, kind=kind, options=options,
        required=required, order=order, scoring_key=scoring_key,
    )


@pytest.fixture
def make_question():
    return build_question


@pytest.fixture
def small_catalog():
    """Two interest questions (max 10 each), one aptitude yes/no, one optional personality scale."""
    return QuestionCatalog(
        [
            build_question("q1", Category.INTEREST, {"a": 10, "b": 6, "c": 0}, order=1),
            build_question("q2", Category.INTEREST, {"a": 10, "b": 6, "c": 0}, order=2),
            build_question("q3", Category.APTITUDE, {"yes": 5, "no": 0}, order=3, kind=QuestionKind.YES_NO),
            build_question("q4", Category.PERSONALITY, {str(i): i for i in range(1, 6)}, required=False, order=4, kind=QuestionKind.SCALE),
        ],
        version="test",
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def session_factory():
    engine = get_async_engine(TEST_DB_URL)
    await create_schema(engine)
    yield get_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def session_store(session_factory):
    return SqlSessionStore(session_factory)


@pytest.fixture
def artifact_store(session_factory):
    return SqlArtifactStore(session_factory)


@pytest_asyncio.fixture
async def machine(session_store, small_catalog, clock):
    machine = AssessmentSessionMachine(
        session_store,
        small_catalog,
        scheduler=DebouncedSaveScheduler(delay_seconds=0.05),
        clock=clock,
    )
    yield machine
    machine.shutdown()
