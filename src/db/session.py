from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from config.settings import settings
from src.db.models import Base


def get_async_engine(db_url: str = settings.database_url) -> AsyncEngine:
    """Creates an asynchronous SQLAlchemy engine instance."""
    if db_url.startswith("sqlite"):
        # In-memory SQLite must share one connection or every session sees an empty DB
        if ":memory:" in db_url:
            return create_async_engine(db_url, poolclass=StaticPool)
        return create_async_engine(db_url)
    return create_async_engine(
        db_url,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=1800, # 30 minutes
        echo=False, # Set to True for debugging SQL
    )


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Creates an asynchronous session factory."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False, # Important for async usage, especially with FastAPI
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Creates all tables. Idempotent; used at startup and by tests."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
