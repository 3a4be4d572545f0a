from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterator

from tva_api.observability.phoenix import trace_span
from tva_api.pipeline.analyzer import analyze_image
from tva_api.pipeline.errors import PipelineError
from tva_api.pipeline.formatter import format_result
from tva_api.pipeline.progress import ProgressSink
from tva_api.pipeline.record_writer import persist_violation
from tva_api.pipeline.rule_matcher import match_rules, rule_query_text
from tva_api.pipeline.state import STAGE_LABELS, EventType, ProgressEvent, RunState, Stage, next_stage
from tva_api.providers.embeddings import EmbeddingProvider
from tva_api.providers.store import ViolationStoreProvider
from tva_api.providers.vlm import VLMProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineDeps:
    vlm: VLMProvider
    embedder: EmbeddingProvider
    store: ViolationStoreProvider


class PipelineExecutor:
    """
    Drives one run through Analyze -> Validate -> [Match Rules -> Write Record] -> Format.

    `run` is a generator of progress events. Every event is handed to the sink (if any) before it
    is yielded, and the sequence always ends with exactly one `final_result` or `error` event.
    Capability failures (vision, embeddings, rule search) degrade the run; persistence failures and
    broken transitions end it.
    """

    def __init__(self, deps: PipelineDeps, sink: ProgressSink | None = None) -> None:
        self.deps = deps
        self.sink = sink

    def run(self, run_id: str, image_bytes: bytes) -> Iterator[ProgressEvent]:
        return self.run_state(run_id, RunState(image_bytes=image_bytes))

    def run_state(self, run_id: str, state: RunState) -> Iterator[ProgressEvent]:
        emitted: set[tuple[EventType, str | None]] = set()
        stage = Stage.ANALYZE
        logger.info("Run %s started (%d image bytes)", run_id, len(state.image_bytes or b""))

        try:
            while stage is not Stage.END:
                yield from self._emit(run_id, emitted, EventType.STAGE_START, stage, STAGE_LABELS[stage])
                with trace_span("pipeline.stage", {"tva.run_id": run_id, "tva.stage": stage.value}) as span:
                    summary = self._execute(run_id, stage, state)
                    if span is not None and state.failure:
                        span.set_attribute("tva.failure", state.failure)
                yield from self._emit(run_id, emitted, EventType.STAGE_END, stage, summary)
                stage = next_stage(stage, state)
        except Exception as exc:
            logger.exception("Run %s aborted in stage %s", run_id, stage.value)
            yield from self._emit_terminal(run_id, emitted, EventType.ERROR, {"error": str(exc)})
            return

        if state.failure:
            yield from self._emit_terminal(
                run_id, emitted, EventType.ERROR, {"error": state.failure, "result": state.formatted}
            )
        else:
            yield from self._emit_terminal(run_id, emitted, EventType.FINAL_RESULT, state.formatted)
        logger.info("Run %s finished (skip=%s, failure=%s, record=%s)", run_id, state.skip, bool(state.failure), state.record_id)

    def _execute(self, run_id: str, stage: Stage, state: RunState) -> dict[str, Any]:
        if stage is Stage.ANALYZE:
            return self._analyze(run_id, state)
        if stage is Stage.VALIDATE:
            return self._validate(state)
        if stage is Stage.MATCH_RULES:
            return self._match_rules(run_id, state)
        if stage is Stage.WRITE_RECORD:
            return self._write_record(state)
        if stage is Stage.FORMAT:
            state.formatted = format_result(state)
            return {"status": state.formatted["status"]}
        raise PipelineError(f"stage {stage.value!r} is not executable")

    def _analyze(self, run_id: str, state: RunState) -> dict[str, Any]:
        if not state.image_bytes:
            raise PipelineError("image payload is empty")
        try:
            state.assessment = analyze_image(state.image_bytes, vlm=self.deps.vlm, run_id=run_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Analysis failed for run %s: %s", run_id, exc)
            state.failure = f"Failed to analyze image: {exc}"
            return {"analyzed": False, "error": state.failure}
        return {"analyzed": True, "confidence": state.assessment.confidence}

    def _validate(self, state: RunState) -> dict[str, Any]:
        if state.assessment is None:
            raise PipelineError("validation reached without an assessment")
        state.skip = not state.assessment.passes_detection
        return {"skip": state.skip}

    def _match_rules(self, run_id: str, state: RunState) -> dict[str, Any]:
        if state.skip or state.assessment is None:
            raise PipelineError("rule matching reached for a skipped run")
        try:
            state.rule_matches = match_rules(
                rule_query_text(state.assessment),
                embedder=self.deps.embedder,
                store=self.deps.store,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Rule matching failed for run %s; continuing with no matches: %s", run_id, exc)
            state.rule_matches = []
            return {"matches": 0, "degraded": True}
        return {"matches": len(state.rule_matches)}

    def _write_record(self, state: RunState) -> dict[str, Any]:
        if state.skip or state.assessment is None:
            raise PipelineError("record write reached for a skipped run")
        if state.record_id is not None:
            raise PipelineError("violation record already written for this run")
        state.record_id = persist_violation(
            state.assessment,
            state.rule_matches,
            state.assessment.confidence,
            store=self.deps.store,
        )
        return {"recordId": state.record_id}

    def _emit(
        self,
        run_id: str,
        emitted: set[tuple[EventType, str | None]],
        event_type: EventType,
        stage: Stage,
        payload: Any,
    ) -> Iterator[ProgressEvent]:
        key = (event_type, stage.value)
        if key in emitted:
            logger.debug("Suppressed duplicate %s for %s in run %s", event_type.value, stage.value, run_id)
            return
        emitted.add(key)
        event = ProgressEvent(type=event_type, stage=stage.value, payload=payload)
        if self.sink is not None:
            self.sink.publish(run_id, event)
        yield event

    def _emit_terminal(
        self,
        run_id: str,
        emitted: set[tuple[EventType, str | None]],
        event_type: EventType,
        payload: Any,
    ) -> Iterator[ProgressEvent]:
        if any(kind in (EventType.ERROR, EventType.FINAL_RESULT) for kind, _ in emitted):
            return
        emitted.add((event_type, None))
        event = ProgressEvent(type=event_type, payload=payload)
        if self.sink is not None:
            try:
                self.sink.publish(run_id, event)
            except Exception:
                logger.exception("Could not record terminal %s event for run %s", event_type.value, run_id)
        yield event
