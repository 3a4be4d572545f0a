from __future__ import annotations

from fastapi import APIRouter, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from ..services.analysis import analyze as service_analyze
from ..services.analysis import create_session as service_create_session
from ..services.analysis import get_session as service_get_session


router = APIRouter(tags=["violations"])


@router.post("/violations/sessions")
def create_session() -> JSONResponse:
    return service_create_session()


@router.get("/violations/sessions/{session_id}")
def get_session(session_id: str) -> JSONResponse:
    return service_get_session(session_id)


@router.post("/violations/analyze")
async def analyze(file: UploadFile, session_id: str | None = None) -> StreamingResponse:
    content = await file.read()
    return service_analyze(content, session_id=session_id)
