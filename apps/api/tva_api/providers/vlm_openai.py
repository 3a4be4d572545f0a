from __future__ import annotations

import base64
import logging
import os
import time
from typing import Any

import httpx

from tva_api.observability.phoenix import trace_span
from tva_api.model_clients import _resolve_model_base_url_sync, _timeout_seconds, _vlm_model_id
from tva_api.providers.vlm import VLMProvider
from tva_api.text_utils import _extract_json_object

logger = logging.getLogger(__name__)


def _sniff_image_mime(img_bytes: bytes) -> str:
    if img_bytes.startswith(b"\x89PNG"):
        return "image/png"
    if img_bytes.startswith(b"GIF8"):
        return "image/gif"
    if img_bytes.startswith(b"RIFF"):
        return "image/webp"
    return "image/jpeg"


class OpenAIVLMProvider(VLMProvider):
    """
    OpenAI-compatible implementation of VLMProvider (vLLM, Gemini OpenAI endpoint, GPT-4o, ...).
    """

    @property
    def provider_family(self) -> str:
        return "openai_compatible"

    def generate_structured(
        self,
        messages: list[dict[str, str]],
        images: list[bytes],
        json_schema: dict[str, Any] | None = None,
        options: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        options = options or {}
        run_id = options.get("run_id")
        timeout = _timeout_seconds("TVA_VLM_TIMEOUT_SECONDS", 300.0)

        base_url = _resolve_model_base_url_sync(role="vlm", env_key="TVA_VLM_BASE_URL", timeout_seconds=timeout)
        if not base_url:
            err = "model_supervisor_unavailable:vlm" if os.environ.get("TVA_MODEL_SUPERVISOR_URL") else "TVA_VLM_BASE_URL not configured"
            logger.warning("VLM unavailable for run %s: %s", run_id, err)
            raise RuntimeError(err)

        model_id = options.get("model_id") or _vlm_model_id()
        url = base_url.rstrip("/") + "/chat/completions"

        # System text stays in its own message; everything else rides along with the images.
        final_messages: list[dict[str, Any]] = []
        user_text_parts: list[str] = []
        for msg in messages:
            if msg["role"] == "system":
                final_messages.append({"role": "system", "content": msg["content"]})
            else:
                user_text_parts.append(msg["content"])

        user_content: list[dict[str, Any]] = []
        if user_text_parts:
            user_content.append({"type": "text", "text": "\n\n".join(user_text_parts)})
        for img_bytes in images:
            b64_str = base64.b64encode(img_bytes).decode("ascii")
            user_content.append({
                "type": "image_url",
                "image_url": {"url": f"data:{_sniff_image_mime(img_bytes)};base64,{b64_str}"},
            })
        final_messages.append({"role": "user", "content": user_content})

        payload: dict[str, Any] = {
            "model": model_id,
            "messages": final_messages,
            "temperature": options.get("temperature", 0.3),
            "max_tokens": options.get("max_tokens", 2000),
        }
        if json_schema:
            payload["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "assessment", "schema": json_schema},
            }

        span_attrs = {
            "tva.tool": "vlm_assess_violation",
            "tva.run_id": run_id,
            "tva.model_id": model_id,
            "tva.images": len(images),
        }
        started = time.monotonic()
        with trace_span("vlm.generate_structured", span_attrs) as span:
            try:
                with httpx.Client(timeout=timeout) as client:
                    resp = client.post(url, json=payload)
                    resp.raise_for_status()
                    data = resp.json()
                raw_text = data["choices"][0]["message"]["content"]
            except Exception as exc:
                logger.warning("VLM call failed for run %s", run_id, exc_info=True)
                if span is not None:
                    span.set_attribute("tva.error", str(exc)[:500])
                raise RuntimeError(f"VLM call failed: {exc}") from exc

            json_obj = _extract_json_object(raw_text or "")
            if span is not None:
                span.set_attribute("tva.parsed", json_obj is not None)
        logger.info(
            "VLM call for run %s finished in %.2fs (model=%s, images=%d, bytes=%s, parsed=%s)",
            run_id,
            time.monotonic() - started,
            model_id,
            len(images),
            [len(b) for b in images],
            json_obj is not None,
        )
        return {
            "json": json_obj,
            "usage": data.get("usage", {}) if isinstance(data, dict) else {},
            "model_id": model_id,
            "raw_text": raw_text,
        }
