"""Maps domain errors onto the JSON error envelope."""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.schemas.envelope import error_body
from services.errors import (
    ConflictError,
    GenerationFailedError,
    GuidanceError,
    IncompleteAssessmentError,
    InvalidSubmissionError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=404, content=error_body(exc.message))


async def invalid_submission_handler(request: Request, exc: InvalidSubmissionError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path}: {exc.message} {exc.errors}")
    return JSONResponse(status_code=400, content=error_body(exc.message, errors=exc.errors))


async def incomplete_assessment_handler(request: Request, exc: IncompleteAssessmentError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path}: {exc.missing_count} questions unanswered")
    return JSONResponse(status_code=400, content=error_body(exc.message, missingCount=exc.missing_count))


async def conflict_handler(request: Request, exc: ConflictError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=409, content=error_body(exc.message, retryable=exc.retryable))


async def generation_failed_handler(request: Request, exc: GenerationFailedError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path}: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=502, content=error_body(exc.message))


async def guidance_error_handler(request: Request, exc: GuidanceError) -> JSONResponse:
    logger.error(f"Unhandled domain error on {request.method} {request.url.path}: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=500, content=error_body(exc.message))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = {}
    for error in exc.errors():
        # Drop the leading "body"/"query" segment so paths match field names
        path = ".".join(str(part) for part in error["loc"][1:]) or str(error["loc"][0])
        errors[path] = error["msg"]
    return JSONResponse(status_code=400, content=error_body("Invalid request", errors=errors))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail)), headers=exc.headers)


def register_exception_handlers(app: FastAPI) -> None:
    # Handlers resolve by exception MRO, so GuidanceError only catches the rest
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(InvalidSubmissionError, invalid_submission_handler)
    app.add_exception_handler(IncompleteAssessmentError, incomplete_assessment_handler)
    app.add_exception_handler(ConflictError, conflict_handler)
    app.add_exception_handler(GenerationFailedError, generation_failed_handler)
    app.add_exception_handler(GuidanceError, guidance_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
