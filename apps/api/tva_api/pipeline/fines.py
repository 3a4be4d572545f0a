from __future__ import annotations

from typing import Iterable

from tva_api.pipeline.state import RuleMatch

FINE_ELIGIBILITY_THRESHOLD = 0.75
FALLBACK_FINE_AMOUNT = 2000


def matched_rules(matches: Iterable[RuleMatch]) -> list[RuleMatch]:
    return [m for m in matches if m.similarity >= FINE_ELIGIBILITY_THRESHOLD]


def compute_recommended_fine(matches: Iterable[RuleMatch]) -> int:
    """
    Sum of the fines of every rule at or above the eligibility threshold.

    A zero sum (nothing matched, or only zero-fine rules matched) yields the fallback amount.
    Only the summed policy is applied; top-match scaling is not supported.
    """
    total = sum(m.fine_amount for m in matched_rules(matches))
    return total if total > 0 else FALLBACK_FINE_AMOUNT
