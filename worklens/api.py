"""
HTTP boundary for the work-session pipeline.

Routes:
- POST /sessions/start             - start a session for the caller
- POST /sessions/{id}/pause        - pause an active session
- POST /sessions/{id}/resume       - resume a paused session
- POST /sessions/{id}/stop         - stop, running the closing analysis
- POST /sessions/{id}/captures     - push one capture into the session
- POST /sessions/{id}/analyze      - analyse caller-supplied images now
- GET  /sessions/{id}              - session state, score and capture counts
- GET  /health                     - liveness

The caller is identified by the X-User-Id header; sessions owned by someone
else look exactly like unknown sessions.
"""

from __future__ import annotations

import base64
import binascii
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import AwareDatetime, BaseModel, ConfigDict, Field

from .errors import (
    AnalysisCancelled,
    InvalidState,
    MalformedResponse,
    OutOfOrder,
    PersistenceError,
    SessionNotFound,
    UpstreamRejected,
    UpstreamUnavailable,
    WrongSession,
)
from .models import CaptureOrigin
from .report import analysis_to_dict, score_to_dict, session_to_dict
from .service import WorkSessionService

router = APIRouter(tags=["sessions"])


# ==========================================================================
# Schemas
# ==========================================================================

class StartSessionRequest(BaseModel):
    goal: Optional[str] = Field(None, description="What the caller intends to work on")


class CaptureRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: AwareDatetime = Field(..., description="When the capture was taken, with a UTC offset")
    origin: CaptureOrigin = Field(CaptureOrigin.TIMER, description="What caused the capture")
    image: Optional[str] = Field(None, description="Base64 encoded image")
    window_title: str = Field("", alias="windowTitle")
    application: str = Field("", description="Foreground application name")


class AnalyzeContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    time_range: Optional[str] = Field(None, alias="timeRange")


class AnalyzeRequest(BaseModel):
    captures: Optional[List[str]] = Field(None, description="Base64 encoded images, oldest first")
    context: Optional[AnalyzeContext] = None


# ==========================================================================
# Dependencies
# ==========================================================================

def get_service(request: Request) -> WorkSessionService:
    return request.app.state.service


def get_caller(x_user_id: Optional[str] = Header(None)) -> str:
    caller = (x_user_id or "").strip()
    if not caller:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-User-Id header is required")
    return caller


def decode_image(value: str) -> bytes:
    data = value.strip()
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    if not data:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Capture image is empty")
    try:
        return base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Capture image is not valid base64") from None


# ==========================================================================
# Routes
# ==========================================================================

@router.get("/health")
def health(service: WorkSessionService = Depends(get_service)) -> dict:
    return {"status": "healthy", "service": "worklens", "backend": service.backend}


@router.post("/sessions/start")
def start_session(
    body: Optional[StartSessionRequest] = None,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    if body is None or not body.goal or not body.goal.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A session goal is required")
    session = service.start_session(caller, body.goal)
    return {"sessionId": session.id, "startedAt": session.started_at.isoformat(), "status": session.status.value}


@router.post("/sessions/{session_id}/pause")
def pause_session(
    session_id: str,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    session = service.pause_session(session_id, caller)
    return {"status": session.status.value}


@router.post("/sessions/{session_id}/resume")
def resume_session(
    session_id: str,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    session = service.resume_session(session_id, caller)
    return {"status": session.status.value}


@router.post("/sessions/{session_id}/stop")
def stop_session(
    session_id: str,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    session = service.stop_session(session_id, caller)
    return {
        "status": session.status.value,
        "activeSeconds": round(session.active_seconds, 3),
        "score": score_to_dict(session.latest_score),
        "latestAnalysisId": session.latest_analysis_id,
    }


@router.post("/sessions/{session_id}/captures", status_code=status.HTTP_201_CREATED)
def add_capture(
    session_id: str,
    body: CaptureRequest,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    service.get_session(session_id, caller)
    image = decode_image(body.image) if body.image else b""
    capture = service.on_capture(
        session_id,
        body.timestamp,
        body.origin,
        image,
        window_title=body.window_title,
        application=body.application,
    )
    return {"captureId": capture.id, "sequence": capture.sequence}


@router.post("/sessions/{session_id}/analyze")
def analyze(
    session_id: str,
    body: Optional[AnalyzeRequest] = None,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    if body is None or not body.captures:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No captures provided")
    images = [decode_image(value) for value in body.captures]
    time_range = body.context.time_range if body.context and body.context.time_range else "current session"
    outcome = service.analyze_captures(session_id, images, time_range=time_range, owner_id=caller)
    return {
        "analysisId": outcome.result.analysis_id,
        "result": analysis_to_dict(outcome.result),
        "score": score_to_dict(outcome.score),
    }


@router.get("/sessions/{session_id}")
def get_session(
    session_id: str,
    caller: str = Depends(get_caller),
    service: WorkSessionService = Depends(get_service),
) -> dict:
    session = service.get_session(session_id, caller)
    payload = session_to_dict(session)
    payload["captures"] = service.capture_stats(session_id)
    return payload


# ==========================================================================
# Application
# ==========================================================================

_STATUS_BY_ERROR = (
    (SessionNotFound, status.HTTP_404_NOT_FOUND),
    (InvalidState, status.HTTP_409_CONFLICT),
    (OutOfOrder, status.HTTP_400_BAD_REQUEST),
    (WrongSession, status.HTTP_400_BAD_REQUEST),
    (UpstreamRejected, status.HTTP_502_BAD_GATEWAY),
    (MalformedResponse, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (UpstreamUnavailable, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (AnalysisCancelled, status.HTTP_500_INTERNAL_SERVER_ERROR),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def create_app(service: WorkSessionService) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        service.shutdown(wait=False)

    app = FastAPI(title="Worklens", lifespan=lifespan)
    app.state.service = service
    app.include_router(router)

    for error_type, status_code in _STATUS_BY_ERROR:
        app.add_exception_handler(error_type, _error_handler(status_code))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})

    return app


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc), "error": type(exc).__name__})

    return handler
