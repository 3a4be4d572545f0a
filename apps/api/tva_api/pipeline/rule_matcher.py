from __future__ import annotations

import logging

from tva_api.pipeline.state import Assessment, RuleMatch
from tva_api.providers.embeddings import EmbeddingProvider
from tva_api.providers.store import ViolationStoreProvider

logger = logging.getLogger(__name__)

RETRIEVAL_MIN_SIMILARITY = 0.3
RETRIEVAL_LIMIT = 5


def rule_query_text(assessment: Assessment) -> str:
    return f"{assessment.title} {assessment.description} {assessment.violation_types}".lower()


def match_rules(
    violation_text: str,
    *,
    embedder: EmbeddingProvider,
    store: ViolationStoreProvider,
    min_similarity: float = RETRIEVAL_MIN_SIMILARITY,
    limit: int = RETRIEVAL_LIMIT,
) -> list[RuleMatch]:
    """
    Legal rules semantically closest to `violation_text`.

    Only matches scoring strictly above `min_similarity` are kept, best first, at most `limit`.
    Embedding and search failures propagate to the caller as `RuntimeError`.
    """
    vector = embedder.embed_text(violation_text)
    if not vector:
        raise RuntimeError("embedding provider returned an empty vector")

    candidates = store.search_rules(vector, min_similarity, limit)
    kept = [m for m in candidates if m.similarity > min_similarity]
    kept.sort(key=lambda m: m.similarity, reverse=True)
    logger.debug("Rule search returned %d candidates, kept %d", len(candidates), min(len(kept), limit))
    return kept[:limit]
