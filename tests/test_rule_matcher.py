import pytest

from conftest import FakeEmbedder, InMemoryViolationStore, make_assessment_json, make_rule

from tva_api.pipeline.rule_matcher import match_rules, rule_query_text
from tva_api.pipeline.state import Assessment


class _UnfilteredStore(InMemoryViolationStore):
    """Returns everything it holds, ignoring score and limit."""

    def search_rules(self, vector, min_score, limit):
        return list(self.rules)


def test_query_text_is_lowercased_concatenation():
    assessment = Assessment.model_validate(make_assessment_json(title="Red Light", description="Car Ran It", violationTypes="red_light"))
    assert rule_query_text(assessment) == "red light car ran it red_light"


def test_filters_sorts_and_truncates():
    rules = [make_rule(f"r{i}", similarity=s) for i, s in enumerate([0.31, 0.95, 0.3, 0.5, 0.8, 0.6, 0.7, 0.1])]
    store = _UnfilteredStore(rules=rules)
    embedder = FakeEmbedder()

    matches = match_rules("car ran red light", embedder=embedder, store=store)

    assert [m.similarity for m in matches] == [0.95, 0.8, 0.7, 0.6, 0.5]
    assert all(m.similarity > 0.3 for m in matches)
    assert embedder.texts == ["car ran red light"]


def test_floor_is_exclusive():
    store = _UnfilteredStore(rules=[make_rule("edge", similarity=0.3)])
    assert match_rules("x", embedder=FakeEmbedder(), store=store) == []


def test_embedding_failure_propagates():
    with pytest.raises(RuntimeError):
        match_rules("x", embedder=FakeEmbedder(error=RuntimeError("down")), store=InMemoryViolationStore())


def test_search_failure_propagates():
    store = InMemoryViolationStore()
    store.search_error = RuntimeError("pgvector unavailable")
    with pytest.raises(RuntimeError):
        match_rules("x", embedder=FakeEmbedder(), store=store)
