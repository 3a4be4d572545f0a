from __future__ import annotations

import logging
import os
import time

import httpx

logger = logging.getLogger(__name__)


def _vlm_model_id() -> str:
    return os.environ.get("TVA_VLM_MODEL_ID") or "gemini-2.5-flash"


def _embeddings_model_id() -> str:
    return os.environ.get("TVA_EMBEDDINGS_MODEL_ID") or "text-embedding-004"


def _timeout_seconds(env_key: str, default: float) -> float:
    raw = os.environ.get(env_key)
    if not raw:
        return default
    try:
        return max(1.0, float(raw))
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", env_key, raw)
        return default


def _model_supervisor_headers() -> dict[str, str]:
    token = os.environ.get("TVA_MODEL_SUPERVISOR_TOKEN")
    if not token:
        return {}
    return {"x-tva-model-supervisor-token": token}


def _ensure_model_role_sync(*, role: str, timeout_seconds: float = 180.0) -> str | None:
    supervisor = os.environ.get("TVA_MODEL_SUPERVISOR_URL")
    if not supervisor:
        return None

    url = supervisor.rstrip("/") + "/ensure"
    try:
        with httpx.Client(timeout=timeout_seconds) as client:
            resp = client.post(url, json={"role": role}, headers=_model_supervisor_headers())
            resp.raise_for_status()
            data = resp.json()
    except Exception:  # noqa: BLE001
        logger.warning("Model supervisor did not provide a %s endpoint.", role, exc_info=True)
        return None

    base_url = data.get("base_url") if isinstance(data, dict) else None
    if isinstance(base_url, str) and base_url.startswith("http"):
        return base_url
    return None


def _resolve_model_base_url_sync(
    *,
    role: str,
    env_key: str,
    timeout_seconds: float = 180.0,
) -> str | None:
    """
    Base URL for a model role.

    With `TVA_MODEL_SUPERVISOR_URL` set the supervisor is asked (with exponential backoff)
    to start the role and hand back its endpoint; otherwise `env_key` is used directly.
    """
    supervisor = os.environ.get("TVA_MODEL_SUPERVISOR_URL")
    if supervisor:
        attempts = int(os.environ.get("TVA_MODEL_SUPERVISOR_RETRIES", "3"))
        base_delay = float(os.environ.get("TVA_MODEL_SUPERVISOR_RETRY_BASE_SECONDS", "2"))
        for attempt in range(max(1, attempts)):
            base_url = _ensure_model_role_sync(role=role, timeout_seconds=timeout_seconds)
            if base_url:
                return base_url
            if attempt < attempts - 1:
                time.sleep(base_delay * (2**attempt))
        return None
    return os.environ.get(env_key)
