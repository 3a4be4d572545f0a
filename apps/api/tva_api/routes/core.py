from __future__ import annotations

from fastapi import APIRouter

from ..services.core import healthz as service_healthz
from ..services.core import readyz as service_readyz


router = APIRouter(tags=["health"])


@router.get("/healthz", summary="Liveness probe")
def healthz() -> dict[str, str]:
    return service_healthz()


@router.get("/readyz", summary="Readiness: database, rule corpus and run counters")
def readyz() -> dict[str, object]:
    return service_readyz()
