import pytest

from conftest import make_rule

from tva_api.pipeline.escalation import escalation_reason, severity_for_confidence, should_escalate
from tva_api.pipeline.fines import FALLBACK_FINE_AMOUNT, compute_recommended_fine, matched_rules


class TestRecommendedFine:
    def test_sums_only_rules_at_or_above_threshold(self):
        matches = [make_rule("a", fine=1000, similarity=0.8), make_rule("b", fine=500, similarity=0.4)]
        assert compute_recommended_fine(matches) == 1000

    def test_threshold_is_inclusive(self):
        matches = [make_rule("a", fine=300, similarity=0.75), make_rule("b", fine=200, similarity=0.9)]
        assert compute_recommended_fine(matches) == 500

    def test_no_matches_uses_fallback(self):
        assert compute_recommended_fine([]) == FALLBACK_FINE_AMOUNT == 2000

    def test_only_weak_matches_uses_fallback(self):
        matches = [make_rule("a", fine=5000, similarity=0.74), make_rule("b", fine=100, similarity=0.31)]
        assert compute_recommended_fine(matches) == 2000

    def test_zero_fine_matched_rules_use_fallback(self):
        assert compute_recommended_fine([make_rule("a", fine=0, similarity=0.95)]) == 2000

    def test_recomputing_gives_the_same_amount(self):
        matches = [make_rule("a", fine=1000, similarity=0.8), make_rule("b", fine=5000, similarity=0.76)]
        assert compute_recommended_fine(matches) == compute_recommended_fine(list(matches)) == 6000

    def test_matched_rules_keeps_order(self):
        matches = [make_rule("a", similarity=0.9), make_rule("b", similarity=0.2), make_rule("c", similarity=0.8)]
        assert [m.rule_id for m in matched_rules(matches)] == ["a", "c"]


class TestEscalationPolicy:
    @pytest.mark.parametrize("confidence", [0.0, 0.1, 0.5, 0.65, 0.6999])
    def test_low_confidence_escalates(self, confidence):
        assert should_escalate(confidence) is True

    @pytest.mark.parametrize("confidence", [0.7, 0.71, 0.9, 1.0])
    def test_threshold_and_above_do_not_escalate(self, confidence):
        assert should_escalate(confidence) is False

    @pytest.mark.parametrize("confidence, severity", [(0.81, "high"), (1.0, "high"), (0.8, "medium"), (0.2, "medium")])
    def test_severity(self, confidence, severity):
        assert severity_for_confidence(confidence) == severity

    def test_reason_embeds_percentage(self):
        assert "65.0%" in escalation_reason(0.65)
