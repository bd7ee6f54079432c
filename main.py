import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from redis.exceptions import RedisError
from sqlalchemy.sql import text

from config.settings import settings
from src.cache.artifacts import ArtifactCache
from src.cache.connection import close_redis, get_redis
from src.db.session import create_schema, get_async_engine, get_session_factory
from src.routers import analysis as analysis_router
from src.routers import assessment as assessment_router
from src.routers import intake as intake_router
from src.routers.errors import register_exception_handlers
from src.services.storage import SqlArtifactStore, SqlSessionStore
from services.analysis.manager import AnalysisLifecycleManager
from services.analysis.producer import build_producer
from services.assessment_engine.loader import QuestionCatalog
from services.assessment_engine.session import AssessmentSessionMachine

# Configure logging VERY early
logging.basicConfig(level=settings.log_level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_async_engine(settings.database_url)
    await create_schema(engine)
    session_factory = get_session_factory(engine)

    catalog = QuestionCatalog.from_yaml(settings.question_catalog_path)
    machine = AssessmentSessionMachine(SqlSessionStore(session_factory), catalog)
    manager = AnalysisLifecycleManager(
        SqlArtifactStore(session_factory),
        build_producer(),
        cache=ArtifactCache(get_redis),
    )

    app.state.db_engine = engine
    app.state.question_catalog = catalog
    app.state.session_machine = machine
    app.state.analysis_manager = manager
    logger.info(f"Guidance engine ready ({len(catalog)} questions, database {engine.url.render_as_string(hide_password=True)})")
    try:
        yield
    finally:
        machine.shutdown()
        await close_redis()
        await engine.dispose()
        logger.info("Guidance engine stopped")


app = FastAPI(title="Student Guidance Engine - Main API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

# --- Include Routers ---
app.include_router(assessment_router.router, prefix="/api/v1", tags=["assessments"])
app.include_router(intake_router.router, prefix="/api/v1", tags=["intake"])
app.include_router(analysis_router.router, prefix="/api/v1", tags=["analysis"])


@app.get("/", tags=["Health Check"])
async def read_root():
    """
    Root endpoint for basic health check.
    """
    return {"status": "ok", "message": "Student Guidance Engine is running."}


@app.get("/health/db", tags=["Health Check"])
async def health_check_db(request: Request):
    """
    Performs a database connection health check.
    """
    try:
        async with request.app.state.db_engine.connect() as conn:
            result = (await conn.execute(text("SELECT 1"))).scalar_one()
        return {"status": "ok", "db_check": result}
    except Exception as e:
        logger.error(f"DB health check failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail=f"Database connection error: {e}")


@app.get("/health/cache", tags=["Health Check"])
async def health_check_cache():
    """
    Performs a cache connection health check with a PING.
    """
    redis = await get_redis()
    if redis is None:
        raise HTTPException(status_code=503, detail="Cache unavailable")
    try:
        await redis.ping()
    except (RedisError, OSError) as e:
        logger.error(f"Cache health check failed: {e}")
        raise HTTPException(status_code=503, detail=f"Cache connection error: {e}")
    return {"status": "ok", "cache_check": "ping_successful"}


if __name__ == "__main__":
    import uvicorn
    # Better to run with `uvicorn main:app --reload` from the project root directory
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
