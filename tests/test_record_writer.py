import pytest

from conftest import InMemoryViolationStore, make_assessment_json, make_rule

from tva_api.pipeline.errors import PersistenceError
from tva_api.pipeline.record_writer import persist_violation
from tva_api.pipeline.state import Assessment


def _assessment(**overrides) -> Assessment:
    return Assessment.model_validate(make_assessment_json(**overrides))


def test_low_confidence_record_is_escalated_with_matched_fine():
    store = InMemoryViolationStore()
    matches = [make_rule("mva-section-5", fine=1000, similarity=0.8), make_rule("mva-section-3", fine=500, similarity=0.4)]

    record_id = persist_violation(_assessment(confidenceLevel=0.65), matches, 0.65, store=store)

    assert len(store.violations) == 1
    record = store.violations[0]
    assert record["id"] == record_id
    assert record["status"] == "escalated"
    assert record["recommended_fine"] == 1000
    assert record["severity"] == "medium"
    assert record["violation_type"] == "helmet_violation"
    assert record["vehicle_number"] == "KA01AB1234"

    assert len(store.escalations) == 1
    escalation = store.escalations[0]
    assert escalation["violation_id"] == record_id
    assert escalation["level"] == 1
    assert escalation["priority"] == "high"
    assert "65.0%" in escalation["reason"]


def test_confident_record_without_matches_uses_fallback_and_no_escalation():
    store = InMemoryViolationStore()

    persist_violation(_assessment(confidenceLevel=0.9), [], 0.9, store=store)

    record = store.violations[0]
    assert record["status"] == "pending_review"
    assert record["recommended_fine"] == 2000
    assert record["severity"] == "high"
    assert store.escalations == []


def test_notes_describe_contributing_rules():
    store = InMemoryViolationStore()
    matches = [make_rule("a", fine=1000, similarity=0.8), make_rule("b", fine=500, similarity=0.5)]

    persist_violation(_assessment(), matches, 0.9, store=store)

    notes = store.violations[0]["notes"]
    assert [r["ruleId"] for r in notes["rulesApplied"]] == ["a", "b"]
    assert notes["rulesApplied"][0] == {"ruleId": "a", "similarity": 0.8, "fineAmount": 1000}
    assert notes["matchedRules"] == 1
    assert notes["totalMatchedFine"] == 1000
    assert notes["escalatedDueToLowConfidence"] is False


def test_failed_escalation_insert_rolls_back_the_violation():
    store = InMemoryViolationStore()
    store.fail_escalation_insert = True

    with pytest.raises(PersistenceError):
        persist_violation(_assessment(confidenceLevel=0.5), [], 0.5, store=store)

    assert store.violations == []
    assert store.escalations == []


def test_failed_violation_insert_never_creates_an_escalation():
    store = InMemoryViolationStore()
    store.fail_violation_insert = True

    with pytest.raises(PersistenceError):
        persist_violation(_assessment(confidenceLevel=0.5), [], 0.5, store=store)

    assert store.violations == []
    assert store.escalations == []


def test_unknown_label_is_stored_as_other():
    store = InMemoryViolationStore()
    persist_violation(_assessment(violationTypes="jaywalking"), [], 0.9, store=store)
    assert store.violations[0]["violation_type"] == "other"
