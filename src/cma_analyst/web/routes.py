"""HTTP API routes."""

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cma_analyst.errors import (
    AnalysisCancelledError,
    AnalysisFailedError,
    InputValidationError,
    SessionNotFoundError,
    SessionStateError,
)
from cma_analyst.logging import get_logger
from cma_analyst.models import PropertyDescriptor
from cma_analyst.service import AnalysisService

logger = get_logger(__name__)

router = APIRouter()


def _get_service(request: Request) -> AnalysisService:
    return request.app.state.service  # type: ignore[no-any-return]


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok", **_get_service(request).describe()})


@router.post("/api/sessions")
async def create_session(request: Request, descriptor: PropertyDescriptor) -> JSONResponse:
    """Queue an analysis and return its session id for polling."""
    service = _get_service(request)
    try:
        session = await service.submit(descriptor)
    except InputValidationError as e:
        return _error(400, str(e), missing=e.missing)
    return JSONResponse(
        {"session_id": session.id, "status": session.status, **session.progress()},
        status_code=202,
    )


@router.post("/api/analyze")
async def analyze(
    request: Request,
    descriptor: PropertyDescriptor,
    session_id: str | None = None,
) -> JSONResponse:
    """Run an analysis to completion and return the report."""
    service = _get_service(request)
    try:
        result = await service.analyze(descriptor, session_id=session_id)
    except InputValidationError as e:
        return _error(400, str(e), missing=e.missing)
    except SessionNotFoundError as e:
        return _error(404, str(e))
    except SessionStateError as e:
        return _error(409, str(e), status=e.status)
    except AnalysisCancelledError as e:
        return _error(409, str(e), session_id=e.session_id)
    except AnalysisFailedError as e:
        return _error(500, str(e), session_id=e.session_id, suggestion=e.suggestion)
    return JSONResponse(result.model_dump(mode="json"))


@router.get("/api/sessions/{session_id}")
async def session_status(request: Request, session_id: str) -> JSONResponse:
    """Current state of a session, including the report once finished."""
    service = _get_service(request)
    try:
        session = await service.get_session_status(session_id)
    except SessionNotFoundError as e:
        return _error(404, str(e))
    return JSONResponse(session.model_dump(mode="json"))


@router.get("/api/deepening/stats")
async def deepening_stats(request: Request) -> JSONResponse:
    service = _get_service(request)
    try:
        stats = await service.deepening_stats()
    except Exception:
        logger.error("deepening_stats_failed", exc_info=True)
        return _error(500, "Failed to load deepening statistics")
    return JSONResponse(stats.model_dump(mode="json"))


class FeedbackRequest(BaseModel):
    property: PropertyDescriptor
    rating: float = Field(ge=1, le=5, allow_inf_nan=False)
    session_id: str | None = None
    comments: str = ""


@router.post("/api/deepening/feedback")
async def deepening_feedback(request: Request, body: FeedbackRequest) -> JSONResponse:
    """Record a user's rating; low ratings hold a property at its current depth."""
    service = _get_service(request)
    feedback = await service.record_feedback(
        body.property, body.rating, session_id=body.session_id, comments=body.comments
    )
    if feedback is None:
        return _error(404, "No analysis recorded for this property")
    return JSONResponse(feedback.model_dump(mode="json"), status_code=201)
