from __future__ import annotations

import json
import re
from typing import Any


def _strip_json_fence(text: str) -> str:
    if "```" not in text:
        return text
    cleaned = text.replace("```json", "```")
    parts = cleaned.split("```")
    if len(parts) >= 2:
        return parts[1].strip()
    return cleaned


def _extract_json_object(text: str) -> dict[str, Any] | None:
    """
    Best-effort extraction of a single JSON object from a model response.

    Handles fenced blocks (```json ... ```) and prose around the object.
    """
    if not text:
        return None
    raw = _strip_json_fence(text)
    match = re.search(r"\{.*\}", raw, flags=re.DOTALL)
    if not match:
        return None
    try:
        obj = json.loads(match.group(0))
    except Exception:  # noqa: BLE001
        return None
    return obj if isinstance(obj, dict) else None
