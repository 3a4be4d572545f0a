from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import uuid4

import pytest

from tva_api.pipeline.executor import PipelineDeps
from tva_api.pipeline.state import RuleMatch
from tva_api.providers.embeddings import EmbeddingProvider
from tva_api.providers.store import UnitOfWork, ViolationStoreProvider
from tva_api.providers.vlm import VLMProvider


def make_assessment_json(**overrides: Any) -> dict[str, Any]:
    data = {
        "title": "Rider without helmet",
        "description": "A motorcycle rider is riding without a helmet on a city road.",
        "violationTypes": "helmet_violation, rash_driving",
        "isIndia": True,
        "vehicleDetected": True,
        "violationDetected": True,
        "licensePlateDetected": True,
        "confidenceLevel": 0.9,
        "vehicleNumber": "KA01AB1234",
    }
    data.update(overrides)
    return data


def make_rule(rule_id: str = "mva-section-177", *, fine: int = 500, similarity: float = 0.8) -> RuleMatch:
    return RuleMatch(
        rule_id=rule_id,
        title=f"Rule {rule_id}",
        text=f"Text of {rule_id}",
        section=rule_id.rsplit("-", 1)[-1],
        category="helmet_violation",
        fine_amount=fine,
        similarity=similarity,
    )


class FakeVLM(VLMProvider):
    def __init__(self, answer: dict[str, Any] | None = None, error: Exception | None = None) -> None:
        self.answer = answer if answer is not None else make_assessment_json()
        self.error = error
        self.calls = 0

    @property
    def provider_family(self) -> str:
        return "fake"

    def generate_structured(self, messages, images, json_schema=None, options=None):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return {"json": self.answer, "usage": {}, "model_id": "fake-vlm", "raw_text": None}


class FakeEmbedder(EmbeddingProvider):
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.texts: list[str] = []

    @property
    def provider_family(self) -> str:
        return "fake"

    def embed_texts(self, texts, options=None):
        self.texts.extend(texts)
        if self.error is not None:
            raise self.error
        return [[0.1, 0.2, 0.3] for _ in texts]


class _MemoryUnitOfWork(UnitOfWork):
    def __init__(self, store: InMemoryViolationStore) -> None:
        self.store = store
        self.violations: list[dict[str, Any]] = []
        self.escalations: list[dict[str, Any]] = []

    def insert_violation_record(self, **fields: Any) -> str:
        if self.store.fail_violation_insert:
            raise RuntimeError("violation insert failed")
        record = dict(fields, id=str(uuid4()))
        self.violations.append(record)
        return record["id"]

    def insert_escalation_record(self, *, violation_id: str, reason: str, level: int, priority: str) -> str:
        if self.store.fail_escalation_insert:
            raise RuntimeError("escalation insert failed")
        record = {"id": str(uuid4()), "violation_id": violation_id, "reason": reason, "level": level, "priority": priority}
        self.escalations.append(record)
        return record["id"]


class InMemoryViolationStore(ViolationStoreProvider):
    def __init__(self, rules: list[RuleMatch] | None = None) -> None:
        self.rules = list(rules or [])
        self.search_error: Exception | None = None
        self.search_calls = 0
        self.violations: list[dict[str, Any]] = []
        self.escalations: list[dict[str, Any]] = []
        self.sessions: dict[str, dict[str, Any]] = {}
        self.fail_violation_insert = False
        self.fail_escalation_insert = False
        self.append_failures_remaining = 0
        self.upserted: list[tuple[dict[str, Any], list[float]]] = []
        self._lock = threading.Lock()

    def search_rules(self, vector, min_score, limit):
        self.search_calls += 1
        if self.search_error is not None:
            raise self.search_error
        kept = sorted((r for r in self.rules if r.similarity > min_score), key=lambda r: r.similarity, reverse=True)
        return kept[:limit]

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        uow = _MemoryUnitOfWork(self)
        yield uow
        with self._lock:
            self.violations.extend(uow.violations)
            self.escalations.extend(uow.escalations)

    def create_session(self, run_id):
        with self._lock:
            snapshot = {
                "id": run_id,
                "status": "processing",
                "events": [],
                "result": None,
                "error": None,
                "created_at": "2026-01-01T00:00:00+00:00",
                "updated_at": "2026-01-01T00:00:00+00:00",
            }
            self.sessions[run_id] = snapshot
            return copy.deepcopy(snapshot)

    def append_session_event(self, run_id, event):
        with self._lock:
            if self.append_failures_remaining > 0:
                self.append_failures_remaining -= 1
                raise RuntimeError("transient storage failure")
            session = self.sessions.get(run_id)
            if session is None or session["status"] != "processing":
                return
            session["events"].append(copy.deepcopy(event))

    def finish_session(self, run_id, *, status, result, error):
        with self._lock:
            session = self.sessions.get(run_id)
            if session is None or session["status"] != "processing":
                return
            session.update(status=status, result=copy.deepcopy(result), error=error)

    def get_session(self, run_id):
        with self._lock:
            session = self.sessions.get(run_id)
            return copy.deepcopy(session) if session else None

    def upsert_rule(self, rule, embedding):
        self.upserted.append((rule, embedding))

    def count_indexed_rules(self):
        return len(self.rules)


@pytest.fixture
def store() -> InMemoryViolationStore:
    return InMemoryViolationStore(rules=[make_rule(similarity=0.8)])


@pytest.fixture
def vlm() -> FakeVLM:
    return FakeVLM()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def deps(vlm: FakeVLM, embedder: FakeEmbedder, store: InMemoryViolationStore) -> PipelineDeps:
    return PipelineDeps(vlm=vlm, embedder=embedder, store=store)
