from __future__ import annotations

import abc
from contextlib import AbstractContextManager
from typing import Any

from tva_api.pipeline.state import RuleMatch


class UnitOfWork(abc.ABC):
    """
    Writes that commit together or not at all.
    Obtained from `ViolationStoreProvider.unit_of_work()`; leaving the block with an exception rolls back.
    """

    @abc.abstractmethod
    def insert_violation_record(
        self,
        *,
        violation_type: str,
        description: str,
        vehicle_number: str | None,
        severity: str,
        status: str,
        confidence: float,
        recommended_fine: int,
        notes: dict[str, Any],
    ) -> str:
        """Inserts a violation report and returns its id."""
        pass

    @abc.abstractmethod
    def insert_escalation_record(
        self,
        *,
        violation_id: str,
        reason: str,
        level: int,
        priority: str,
    ) -> str:
        """Inserts an escalation referencing `violation_id` and returns its id."""
        pass


class ViolationStoreProvider(abc.ABC):
    """
    Persistence for the rule corpus, violation records and analysis sessions.
    Implementations must be safe to share between concurrently executing runs.
    """

    @abc.abstractmethod
    def search_rules(self, vector: list[float], min_score: float, limit: int) -> list[RuleMatch]:
        """
        Rules whose cosine similarity to `vector` is strictly above `min_score`,
        best first, at most `limit` of them.
        """
        pass

    @abc.abstractmethod
    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:
        pass

    @abc.abstractmethod
    def create_session(self, run_id: str) -> dict[str, Any]:
        """
        Registers a run. Returns the initial snapshot with status `processing`.
        """
        pass

    @abc.abstractmethod
    def append_session_event(self, run_id: str, event: dict[str, Any]) -> None:
        """Appends one progress event to the end of the session's event log."""
        pass

    @abc.abstractmethod
    def finish_session(
        self,
        run_id: str,
        *,
        status: str,
        result: dict[str, Any] | None,
        error: str | None,
    ) -> None:
        """Moves a `processing` session to its terminal status. Finished sessions are left untouched."""
        pass

    @abc.abstractmethod
    def get_session(self, run_id: str) -> dict[str, Any] | None:
        pass

    @abc.abstractmethod
    def upsert_rule(self, rule: dict[str, Any], embedding: list[float]) -> None:
        pass

    @abc.abstractmethod
    def count_indexed_rules(self) -> int:
        """Number of rules that carry an embedding and can be matched."""
        pass
