from __future__ import annotations

import logging
from typing import Any

import httpx

from tva_api.observability.phoenix import trace_span
from tva_api.model_clients import _embeddings_model_id, _resolve_model_base_url_sync, _timeout_seconds
from tva_api.providers.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


def _parse_embeddings(data: Any, expected: int) -> list[list[float]] | None:
    # Accepted shapes:
    # - { data: [{ embedding: [...] }] }   (OpenAI)
    # - { embeddings: [[...], ...] }
    # - [[...], ...]
    vectors: list[list[float]] | None = None
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        vectors = []
        for item in data["data"]:
            emb = item.get("embedding") if isinstance(item, dict) else None
            if isinstance(emb, list):
                vectors.append([float(x) for x in emb if isinstance(x, (int, float))])
    elif isinstance(data, dict) and isinstance(data.get("embeddings"), list):
        embs = data["embeddings"]
        if all(isinstance(e, list) for e in embs):
            vectors = [[float(x) for x in e if isinstance(x, (int, float))] for e in embs]
    elif isinstance(data, list) and all(isinstance(e, list) for e in data):
        vectors = [[float(x) for x in e if isinstance(x, (int, float))] for e in data]

    if vectors is None or len(vectors) != expected:
        return None
    if any(not v for v in vectors):
        return None
    return vectors


class HttpEmbeddingProvider(EmbeddingProvider):
    """
    Text embeddings over HTTP (TEI, vLLM or any OpenAI-compatible `/embeddings` endpoint).
    """

    @property
    def provider_family(self) -> str:
        return "http"

    def embed_texts(self, texts: list[str], options: dict | None = None) -> list[list[float]]:
        options = options or {}
        if not texts:
            return []
        timeout = _timeout_seconds("TVA_EMBEDDINGS_TIMEOUT_SECONDS", 60.0)
        base_url = _resolve_model_base_url_sync(role="embeddings", env_key="TVA_EMBEDDINGS_BASE_URL", timeout_seconds=timeout)
        if not base_url:
            raise RuntimeError("TVA_EMBEDDINGS_BASE_URL not configured")

        model_id = options.get("model_id") or _embeddings_model_id()
        url_base = base_url.rstrip("/")
        candidates: list[tuple[str, dict[str, Any]]] = [
            (url_base + "/v1/embeddings", {"model": model_id, "input": texts}),
            (url_base + "/embeddings", {"model": model_id, "input": texts}),
            (url_base + "/embed", {"inputs": texts}),
        ]

        span_attrs = {"tva.tool": "embed_texts", "tva.model_id": model_id, "tva.texts": len(texts)}
        with trace_span("embeddings.embed_texts", span_attrs) as span:
            vectors, last_err = self._post_first_usable(candidates, expected=len(texts), timeout=timeout)
            if span is not None:
                span.set_attribute("tva.ok", vectors is not None)
        if vectors is not None:
            return vectors
        logger.warning("Embedding request failed: %s", last_err)
        raise RuntimeError(f"Embedding request failed: {last_err}")

    @staticmethod
    def _post_first_usable(
        candidates: list[tuple[str, dict[str, Any]]],
        *,
        expected: int,
        timeout: float,
    ) -> tuple[list[list[float]] | None, str | None]:
        last_err: str | None = None
        for url, payload in candidates:
            try:
                with httpx.Client(timeout=timeout) as client:
                    resp = client.post(url, json=payload)
                    if resp.status_code >= 400:
                        last_err = f"HTTP {resp.status_code}: {resp.text[:200]}"
                        continue
                    data = resp.json()
            except Exception as exc:  # noqa: BLE001
                last_err = f"Request failed: {exc}"
                continue

            vectors = _parse_embeddings(data, expected)
            if vectors is not None:
                return vectors, None
            last_err = f"Unrecognized embedding response shape from {url}: {str(data)[:200]}"
        return None, last_err
