from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID, uuid4

from psycopg import Connection
from psycopg.rows import dict_row

from tva_api.db import _db_execute, _db_execute_returning, _db_fetch_all, _db_fetch_one, _db_transaction
from tva_api.pipeline.state import RuleMatch
from tva_api.providers.store import UnitOfWork, ViolationStoreProvider
from tva_api.time_utils import _utc_now

logger = logging.getLogger(__name__)


def _vector_literal(vec: list[float]) -> str:
    return "[" + ",".join(f"{float(x):.8f}" for x in vec if isinstance(x, (int, float))) + "]"


def _session_row_to_snapshot(row: dict[str, Any]) -> dict[str, Any]:
    events = row.get("progress_data")
    if isinstance(events, str):
        events = json.loads(events)
    return {
        "id": str(row["id"]) if isinstance(row.get("id"), UUID) else row.get("id"),
        "status": row["status"],
        "events": events if isinstance(events, list) else [],
        "result": row.get("result"),
        "error": row.get("error"),
        "created_at": row.get("created_at"),
        "updated_at": row.get("updated_at"),
    }


class _PostgresUnitOfWork(UnitOfWork):
    def __init__(self, conn: Connection) -> None:
        self._conn = conn

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
        with self._conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                INSERT INTO violation_reports (
                  id, violation_type, description, vehicle_number, severity, status,
                  ai_assessment_score, recommended_fine_amount, notes, created_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s)
                RETURNING id
                """,
                (
                    str(uuid4()),
                    violation_type,
                    description,
                    vehicle_number,
                    severity,
                    status,
                    confidence,
                    recommended_fine,
                    json.dumps(notes, ensure_ascii=False, default=str),
                    _utc_now(),
                ),
            )
            row = cur.fetchone()
        if not row:
            raise RuntimeError("violation_reports insert returned no id")
        return str(row["id"])

    def insert_escalation_record(self, *, violation_id: str, reason: str, level: int, priority: str) -> str:
        escalation_id = str(uuid4())
        with self._conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO escalations (id, violation_id, escalation_reason, escalation_level, priority, created_at)
                VALUES (%s, %s::uuid, %s, %s, %s, %s)
                """,
                (escalation_id, violation_id, reason, level, priority, _utc_now()),
            )
        return escalation_id


class PostgresViolationStore(ViolationStoreProvider):
    """
    Postgres + pgvector store backed by the shared `psycopg_pool` pool in `tva_api.db`.
    """

    def search_rules(self, vector: list[float], min_score: float, limit: int) -> list[RuleMatch]:
        literal = _vector_literal(vector)
        rows = _db_fetch_all(
            """
            SELECT
              rule_id, rule_title, rule_text, section, category, fine_amount_rupees,
              1 - (embedding <=> %s::vector) AS similarity_score
            FROM motor_vehicle_act_rules
            WHERE embedding IS NOT NULL
              AND 1 - (embedding <=> %s::vector) > %s
            ORDER BY similarity_score DESC
            LIMIT %s
            """,
            (literal, literal, min_score, limit),
        )
        return [
            RuleMatch(
                rule_id=r["rule_id"],
                title=r["rule_title"],
                text=r["rule_text"],
                section=r["section"],
                category=r["category"],
                fine_amount=int(r["fine_amount_rupees"] or 0),
                similarity=max(0.0, min(1.0, float(r["similarity_score"]))),
            )
            for r in rows
        ]

    @contextmanager
    def unit_of_work(self) -> Iterator[UnitOfWork]:
        with _db_transaction() as conn:
            yield _PostgresUnitOfWork(conn)

    def create_session(self, run_id: str) -> dict[str, Any]:
        now = _utc_now()
        row = _db_execute_returning(
            """
            INSERT INTO violation_analysis_sessions (id, status, progress_data, result, error, created_at, updated_at)
            VALUES (%s::uuid, 'processing', '[]'::jsonb, NULL, NULL, %s, %s)
            RETURNING id, status, progress_data, result, error, created_at, updated_at
            """,
            (run_id, now, now),
        )
        return _session_row_to_snapshot(row)

    def append_session_event(self, run_id: str, event: dict[str, Any]) -> None:
        touched = _db_execute(
            """
            UPDATE violation_analysis_sessions
            SET progress_data = progress_data || %s::jsonb,
                updated_at = %s
            WHERE id = %s::uuid AND status = 'processing'
            """,
            (json.dumps([event], ensure_ascii=False, default=str), _utc_now(), run_id),
        )
        if not touched:
            logger.debug("Session %s is not processing; dropped %s event", run_id, event.get("type"))

    def finish_session(
        self,
        run_id: str,
        *,
        status: str,
        result: dict[str, Any] | None,
        error: str | None,
    ) -> None:
        _db_execute(
            """
            UPDATE violation_analysis_sessions
            SET status = %s,
                result = %s::jsonb,
                error = %s,
                updated_at = %s
            WHERE id = %s::uuid AND status = 'processing'
            """,
            (
                status,
                json.dumps(result, ensure_ascii=False, default=str) if result is not None else None,
                error,
                _utc_now(),
                run_id,
            ),
        )

    def count_indexed_rules(self) -> int:
        row = _db_fetch_one("SELECT count(*) AS n FROM motor_vehicle_act_rules WHERE embedding IS NOT NULL")
        return int(row["n"]) if row else 0

    def get_session(self, run_id: str) -> dict[str, Any] | None:
        row = _db_fetch_one(
            """
            SELECT id, status, progress_data, result, error, created_at, updated_at
            FROM violation_analysis_sessions
            WHERE id = %s::uuid
            """,
            (run_id,),
        )
        return _session_row_to_snapshot(row) if row else None

    def upsert_rule(self, rule: dict[str, Any], embedding: list[float]) -> None:
        _db_execute(
            """
            INSERT INTO motor_vehicle_act_rules (
              rule_id, rule_title, rule_text, section, category, fine_amount_rupees, embedding, updated_at
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s::vector, %s)
            ON CONFLICT (rule_id) DO UPDATE SET
              rule_title = EXCLUDED.rule_title,
              rule_text = EXCLUDED.rule_text,
              section = EXCLUDED.section,
              category = EXCLUDED.category,
              fine_amount_rupees = EXCLUDED.fine_amount_rupees,
              embedding = EXCLUDED.embedding,
              updated_at = EXCLUDED.updated_at
            """,
            (
                rule["rule_id"],
                rule["rule_title"],
                rule["rule_text"],
                rule["section"],
                rule["category"],
                int(rule["fine_amount_rupees"]),
                _vector_literal(embedding),
                _utc_now(),
            ),
        )
        logger.info("Upserted rule %s", rule["rule_id"])
