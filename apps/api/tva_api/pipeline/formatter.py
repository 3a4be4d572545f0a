from __future__ import annotations

import os
from typing import Any

from tva_api.pipeline.state import RunState

VALIDITY_CONFIDENCE_THRESHOLD = 0.7


def format_result(state: RunState, region: str | None = None) -> dict[str, Any]:
    """
    Client-facing summary built from whatever part of the run state is populated.
    """
    region = region or os.environ.get("TVA_REGION_NAME") or "India"
    assessment = state.assessment
    complete = assessment is not None and not state.skip and not state.failure

    messages: list[str] = []
    is_valid = False
    if state.failure:
        messages.append("Failed to analyze image")
    if assessment is not None:
        if not assessment.region_match:
            messages.append(f"Violation not in {region}")
        if not assessment.vehicle_present:
            messages.append("No vehicle detected")
        if not assessment.violation_present:
            messages.append("No violation detected")
        if not assessment.plate_present:
            messages.append("No license plate detected")
        is_valid = assessment.passes_detection and assessment.confidence > VALIDITY_CONFIDENCE_THRESHOLD

    return {
        "status": "complete" if complete else "incomplete",
        "violation": {
            "title": assessment.title if assessment else "Unknown",
            "description": assessment.description if assessment else "",
            "types": assessment.violation_type_list if assessment else [],
            "confidence": assessment.confidence if assessment else 0,
            "vehicleNumber": assessment.vehicle_number if assessment else None,
        },
        "validation": {
            "isValid": is_valid,
            "messages": messages,
        },
        "applicableRules": [m.to_payload() for m in state.rule_matches],
        "reportId": state.record_id,
    }
