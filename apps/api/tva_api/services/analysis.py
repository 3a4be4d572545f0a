from __future__ import annotations

import json
import logging
import os
import threading
from typing import Iterator
from uuid import UUID, uuid4

from fastapi import HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse

from ..pipeline.executor import PipelineDeps, PipelineExecutor
from ..pipeline.progress import SESSION_PROCESSING, LiveSubscription, ProgressSink, SubscriberLimitError, SubscriberRegistry
from ..providers.factory import get_embedding_provider, get_violation_store, get_vlm_provider

logger = logging.getLogger(__name__)


class AnalysisRuntime:
    """
    Process-wide wiring for analysis runs: providers, the live subscriber table and the active-run set.
    """

    def __init__(self, deps: PipelineDeps, registry: SubscriberRegistry | None = None) -> None:
        self.deps = deps
        self.registry = registry if registry is not None else SubscriberRegistry()
        self.sink = ProgressSink(deps.store, self.registry)
        self._active: set[str] = set()
        self._lock = threading.Lock()

    @property
    def store(self):
        return self.deps.store

    def executor(self) -> PipelineExecutor:
        return PipelineExecutor(self.deps, sink=self.sink)

    def claim(self, run_id: str) -> bool:
        with self._lock:
            if run_id in self._active:
                return False
            self._active.add(run_id)
            return True

    def release(self, run_id: str) -> None:
        with self._lock:
            self._active.discard(run_id)

    def active_runs(self) -> int:
        with self._lock:
            return len(self._active)


_runtime: AnalysisRuntime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> AnalysisRuntime:
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = AnalysisRuntime(
                PipelineDeps(
                    vlm=get_vlm_provider(),
                    embedder=get_embedding_provider(),
                    store=get_violation_store(),
                )
            )
        return _runtime


def set_runtime(runtime: AnalysisRuntime | None) -> None:
    global _runtime
    with _runtime_lock:
        _runtime = runtime


def _live_idle_timeout() -> float:
    return float(os.environ.get("TVA_LIVE_IDLE_TIMEOUT_SECONDS", "600"))


def _validate_uuid_or_400(value: str, *, field_name: str) -> str:
    try:
        return str(UUID(value))
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=400, detail=f"{field_name} must be a UUID") from exc


def _drive_run(runtime: AnalysisRuntime, run_id: str, image_bytes: bytes, subscription: LiveSubscription) -> None:
    try:
        for _event in runtime.executor().run(run_id, image_bytes):
            pass
    except Exception:
        logger.exception("Run %s driver crashed", run_id)
    finally:
        runtime.registry.unsubscribe(run_id, subscription.channel)
        runtime.release(run_id)


def start_run_in_background(
    runtime: AnalysisRuntime,
    run_id: str,
    image_bytes: bytes,
    subscription: LiveSubscription,
) -> threading.Thread:
    thread = threading.Thread(
        target=_drive_run,
        args=(runtime, run_id, image_bytes, subscription),
        name=f"tva-run-{run_id[:8]}",
        daemon=True,
    )
    thread.start()
    return thread


def _sse_stream(subscription: LiveSubscription) -> Iterator[str]:
    for event in subscription.events(idle_timeout=_live_idle_timeout()):
        yield f"data: {json.dumps(event.to_payload(), ensure_ascii=False)}\n\n"


def create_session(runtime: AnalysisRuntime | None = None) -> JSONResponse:
    runtime = runtime or get_runtime()
    snapshot = runtime.store.create_session(str(uuid4()))
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder(
            {"id": snapshot["id"], "status": snapshot["status"], "created_at": snapshot.get("created_at")}
        ),
    )


def get_session(session_id: str, runtime: AnalysisRuntime | None = None) -> JSONResponse:
    runtime = runtime or get_runtime()
    session_id = _validate_uuid_or_400(session_id, field_name="session_id")
    snapshot = runtime.store.get_session(session_id)
    if not snapshot:
        raise HTTPException(status_code=404, detail="Session not found")
    return JSONResponse(content=jsonable_encoder(snapshot))


def analyze(
    image_bytes: bytes,
    session_id: str | None = None,
    runtime: AnalysisRuntime | None = None,
) -> StreamingResponse:
    """
    Start a run for `image_bytes` and stream its progress events as server-sent events.

    The run executes on its own thread, so a client that disconnects only loses the live stream;
    the session snapshot still receives every event.
    """
    runtime = runtime or get_runtime()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="No file provided")

    if session_id:
        run_id = _validate_uuid_or_400(session_id, field_name="session_id")
    else:
        run_id = runtime.store.create_session(str(uuid4()))["id"]

    # The claim is held while the snapshot is checked.
    if not runtime.claim(run_id):
        raise HTTPException(status_code=409, detail="Session is already being analyzed")

    try:
        if session_id:
            snapshot = runtime.store.get_session(run_id)
            if not snapshot:
                raise HTTPException(status_code=404, detail="Session not found")
            if snapshot["status"] != SESSION_PROCESSING or snapshot.get("events"):
                raise HTTPException(status_code=409, detail="Session has already been analyzed")
        try:
            subscription = runtime.registry.subscribe(run_id)
        except SubscriberLimitError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
    except Exception:
        runtime.release(run_id)
        raise

    start_run_in_background(runtime, run_id, image_bytes, subscription)
    logger.info("Run %s accepted (%d bytes)", run_id, len(image_bytes))

    return StreamingResponse(
        _sse_stream(subscription),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Session-Id": run_id,
        },
    )
