from __future__ import annotations

import logging
from typing import Sequence

from tva_api.pipeline.classifier import normalize_violation_type
from tva_api.pipeline.errors import PersistenceError
from tva_api.pipeline.escalation import (
    ESCALATION_LEVEL,
    ESCALATION_PRIORITY,
    escalation_reason,
    severity_for_confidence,
    should_escalate,
)
from tva_api.pipeline.fines import compute_recommended_fine, matched_rules
from tva_api.pipeline.state import Assessment, RuleMatch
from tva_api.providers.store import ViolationStoreProvider
from tva_api.time_utils import _utc_now_iso

logger = logging.getLogger(__name__)

STATUS_PENDING_REVIEW = "pending_review"
STATUS_ESCALATED = "escalated"


def build_record_notes(matches: Sequence[RuleMatch], *, escalated: bool) -> dict:
    matched = matched_rules(matches)
    return {
        "analyzedAt": _utc_now_iso(),
        "rulesApplied": [
            {"ruleId": m.rule_id, "similarity": m.similarity, "fineAmount": m.fine_amount}
            for m in matches
        ],
        "matchedRules": len(matched),
        "totalMatchedFine": sum(m.fine_amount for m in matched),
        "escalatedDueToLowConfidence": escalated,
    }


def persist_violation(
    assessment: Assessment,
    matches: Sequence[RuleMatch],
    confidence: float,
    *,
    store: ViolationStoreProvider,
) -> str:
    """
    Insert the violation record and, for low-confidence assessments, its escalation in one transaction.

    Returns the new record id. Any failure rolls both inserts back and raises `PersistenceError`.
    """
    escalate = should_escalate(confidence)
    violation_type = normalize_violation_type(assessment.violation_types)
    fine = compute_recommended_fine(matches)

    try:
        with store.unit_of_work() as uow:
            record_id = uow.insert_violation_record(
                violation_type=violation_type.value,
                description=assessment.description,
                vehicle_number=assessment.vehicle_number,
                severity=severity_for_confidence(confidence),
                status=STATUS_ESCALATED if escalate else STATUS_PENDING_REVIEW,
                confidence=confidence,
                recommended_fine=fine,
                notes=build_record_notes(matches, escalated=escalate),
            )
            if not record_id:
                raise RuntimeError("violation record insert returned no id")
            if escalate:
                uow.insert_escalation_record(
                    violation_id=record_id,
                    reason=escalation_reason(confidence),
                    level=ESCALATION_LEVEL,
                    priority=ESCALATION_PRIORITY,
                )
    except Exception as exc:
        logger.exception("Violation unit of work rolled back")
        raise PersistenceError(f"Failed to persist violation record: {exc}") from exc

    logger.info(
        "Persisted violation %s (type=%s, fine=%d, escalated=%s)",
        record_id,
        violation_type.value,
        fine,
        escalate,
    )
    return record_id
