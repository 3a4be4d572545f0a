from __future__ import annotations

ESCALATION_CONFIDENCE_THRESHOLD = 0.7
HIGH_SEVERITY_CONFIDENCE = 0.8

ESCALATION_LEVEL = 1
ESCALATION_PRIORITY = "high"


def should_escalate(confidence: float) -> bool:
    return confidence < ESCALATION_CONFIDENCE_THRESHOLD


def severity_for_confidence(confidence: float) -> str:
    return "high" if confidence > HIGH_SEVERITY_CONFIDENCE else "medium"


def escalation_reason(confidence: float) -> str:
    return f"Low confidence AI assessment ({confidence * 100:.1f}%). Flagged for admin review."
