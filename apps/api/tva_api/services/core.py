from __future__ import annotations

import logging

from fastapi import HTTPException

from ..db import db_ping, db_pool_stats
from .analysis import get_runtime

logger = logging.getLogger(__name__)


def healthz() -> dict[str, str]:
    return {"status": "ok", "service": "tva-api"}


def readyz() -> dict[str, object]:
    """
    Database reachability plus run-time counters.

    An unseeded rule corpus does not fail readiness (runs fall back to the default fine),
    but it is reported as `degraded`.
    """
    if not db_ping():
        raise HTTPException(status_code=503, detail={"status": "not_ready", "db": "down"})
    runtime = get_runtime()
    try:
        indexed_rules = runtime.store.count_indexed_rules()
    except Exception:  # noqa: BLE001
        logger.warning("Could not count indexed rules", exc_info=True)
        indexed_rules = None
    return {
        "status": "ready" if indexed_rules else "degraded",
        "db": "ok",
        "db_pool": db_pool_stats(),
        "indexed_rules": indexed_rules,
        "active_runs": runtime.active_runs(),
        "live_subscribers": len(runtime.registry),
        "max_live_subscribers": runtime.registry.max_subscribers,
    }
