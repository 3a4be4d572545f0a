from __future__ import annotations

import logging
import os

from pydantic import ValidationError

from tva_api.pipeline.classifier import ViolationType
from tva_api.pipeline.state import Assessment
from tva_api.providers.vlm import VLMProvider

logger = logging.getLogger(__name__)


def _region_name() -> str:
    return os.environ.get("TVA_REGION_NAME") or "India"


def build_analysis_prompt(region: str | None = None) -> str:
    region = region or _region_name()
    labels = ", ".join(member.value for member in ViolationType)
    return f"""Analyze this traffic violation image and provide structured output.

Return a single JSON object with these keys:
1. title: A brief, clear title of the violation
2. description: Detailed description of what's happening
3. violationTypes: Comma-separated list of violation types from this list: {labels}
4. isIndia: Whether this is in {region} (check for road signs, license plates, etc.)
5. vehicleDetected: Whether a vehicle is clearly visible
6. violationDetected: Whether a traffic violation is actually occurring
7. licensePlateDetected: Whether a vehicle license plate is visible
8. confidenceLevel: Your confidence in the detection (0-1 scale)
9. vehicleNumber: The license plate number if readable

Be accurate and conservative with your assessment. Return 0 confidence for low-quality images."""


ASSESSMENT_JSON_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "description": {"type": "string"},
        "violationTypes": {"type": "string"},
        "isIndia": {"type": "boolean"},
        "vehicleDetected": {"type": "boolean"},
        "violationDetected": {"type": "boolean"},
        "licensePlateDetected": {"type": "boolean"},
        "confidenceLevel": {"type": "number", "minimum": 0, "maximum": 1},
        "vehicleNumber": {"type": "string"},
    },
    "required": [
        "title",
        "description",
        "violationTypes",
        "isIndia",
        "vehicleDetected",
        "violationDetected",
        "licensePlateDetected",
        "confidenceLevel",
    ],
}


def analyze_image(image_bytes: bytes, *, vlm: VLMProvider, run_id: str | None = None) -> Assessment:
    """
    Ask the vision model for a structured assessment of the photograph.

    Raises:
        RuntimeError: the model call failed, or its answer was empty or did not fit `Assessment`.
    """
    result = vlm.generate_structured(
        messages=[{"role": "user", "content": build_analysis_prompt()}],
        images=[image_bytes],
        json_schema=ASSESSMENT_JSON_SCHEMA,
        options={"run_id": run_id},
    )
    obj = result.get("json") if isinstance(result, dict) else None
    if not obj:
        raise RuntimeError("vision model returned no structured assessment")
    try:
        return Assessment.model_validate(obj)
    except ValidationError as exc:
        logger.warning("Vision output for run %s did not validate: %s", run_id, exc.errors()[:3])
        raise RuntimeError(f"vision model returned an invalid assessment: {exc.error_count()} error(s)") from exc
