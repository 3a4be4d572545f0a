from __future__ import annotations

import logging
import os
import queue
import threading
import time
from typing import Iterator

from tva_api.pipeline.state import EventType, ProgressEvent
from tva_api.providers.store import ViolationStoreProvider

logger = logging.getLogger(__name__)

SESSION_PROCESSING = "processing"
SESSION_COMPLETE = "complete"
SESSION_FAILED = "failed"


class SubscriberLimitError(RuntimeError):
    """The live subscriber table is full."""


class SessionWriteError(RuntimeError):
    """A durable session write still failed after retrying."""


class LiveSubscription:
    """
    Consumer end of one run's live channel.

    Iterating yields events until a terminal event arrives or `idle_timeout` passes without one.
    """

    def __init__(self, run_id: str, channel: queue.Queue, registry: SubscriberRegistry) -> None:
        self.run_id = run_id
        self._channel = channel
        self._registry = registry
        self._closed = False

    @property
    def channel(self) -> queue.Queue:
        return self._channel

    def events(self, idle_timeout: float | None = None) -> Iterator[ProgressEvent]:
        try:
            while not self._closed:
                try:
                    event = self._channel.get(timeout=idle_timeout)
                except queue.Empty:
                    logger.info("Live stream for run %s idle for %ss; detaching", self.run_id, idle_timeout)
                    return
                yield event
                if event.is_terminal:
                    return
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._registry.unsubscribe(self.run_id, self._channel)

    def __enter__(self) -> LiveSubscription:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class SubscriberRegistry:
    """
    Bounded table of live channels keyed by run id, at most one consumer per run.

    Channels are small bounded queues; a full channel drops the event instead of blocking the publisher.
    """

    def __init__(self, max_subscribers: int | None = None, queue_size: int | None = None) -> None:
        if max_subscribers is None:
            max_subscribers = int(os.environ.get("TVA_MAX_LIVE_SUBSCRIBERS", "256"))
        if queue_size is None:
            queue_size = int(os.environ.get("TVA_LIVE_QUEUE_SIZE", "64"))
        self.max_subscribers = max_subscribers
        self.queue_size = queue_size
        self._channels: dict[str, queue.Queue] = {}
        self._lock = threading.Lock()

    def subscribe(self, run_id: str) -> LiveSubscription:
        channel: queue.Queue = queue.Queue(maxsize=self.queue_size)
        with self._lock:
            if run_id in self._channels:
                # A reconnecting consumer takes over; nothing queued for the old one is replayed.
                logger.info("Replacing live subscriber for run %s", run_id)
            elif len(self._channels) >= self.max_subscribers:
                raise SubscriberLimitError(f"live subscriber limit reached ({self.max_subscribers})")
            self._channels[run_id] = channel
        return LiveSubscription(run_id, channel, self)

    def unsubscribe(self, run_id: str, channel: queue.Queue | None = None) -> None:
        with self._lock:
            current = self._channels.get(run_id)
            if current is None:
                return
            if channel is not None and current is not channel:
                return
            del self._channels[run_id]

    def offer(self, run_id: str, event: ProgressEvent) -> bool:
        with self._lock:
            channel = self._channels.get(run_id)
        if channel is None:
            return False
        try:
            channel.put_nowait(event)
        except queue.Full:
            logger.warning("Live channel for run %s is full; dropped %s event", run_id, event.type.value)
            return False
        return True

    def is_subscribed(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._channels

    def __len__(self) -> int:
        with self._lock:
            return len(self._channels)


class ProgressSink:
    """
    Fans progress events out to the live channel (best-effort) and the durable session (retried).

    One run publishes from one thread, so durable writes for a run land in event order.
    """

    def __init__(
        self,
        store: ViolationStoreProvider,
        registry: SubscriberRegistry | None = None,
        *,
        write_attempts: int | None = None,
        retry_seconds: float | None = None,
    ) -> None:
        self.store = store
        # An empty registry is falsy (it defines __len__).
        self.registry = registry if registry is not None else SubscriberRegistry()
        if write_attempts is None:
            write_attempts = int(os.environ.get("TVA_SESSION_WRITE_RETRIES", "2"))
        self.write_attempts = max(2, write_attempts)
        if retry_seconds is None:
            retry_seconds = float(os.environ.get("TVA_SESSION_WRITE_RETRY_SECONDS", "0.2"))
        self.retry_seconds = retry_seconds

    def publish(self, run_id: str, event: ProgressEvent) -> None:
        """
        Offer `event` live, then append it to the session log.

        A terminal event also finishes the session, and the finish is attempted even when
        appending the event itself failed, so the snapshot never stays `processing`.

        Raises:
            SessionWriteError: a durable write still failed after retrying.
        """
        self.registry.offer(run_id, event)

        payload = event.to_payload()
        if not event.is_terminal:
            self._durable(run_id, "append", lambda: self.store.append_session_event(run_id, payload))
            return

        append_error: SessionWriteError | None = None
        try:
            self._durable(run_id, "append", lambda: self.store.append_session_event(run_id, payload))
        except SessionWriteError as exc:
            append_error = exc

        if event.type is EventType.FINAL_RESULT:
            result = event.payload if isinstance(event.payload, dict) else None
            self._durable(
                run_id,
                "finish",
                lambda: self.store.finish_session(run_id, status=SESSION_COMPLETE, result=result, error=None),
            )
        else:
            data = event.payload if isinstance(event.payload, dict) else {"error": str(event.payload)}
            result = data.get("result") if isinstance(data.get("result"), dict) else None
            self._durable(
                run_id,
                "finish",
                lambda: self.store.finish_session(
                    run_id, status=SESSION_FAILED, result=result, error=str(data.get("error") or "Unknown error")
                ),
            )

        if append_error is not None:
            raise append_error

    def _durable(self, run_id: str, op: str, write) -> None:
        last_exc: Exception | None = None
        for attempt in range(self.write_attempts):
            try:
                write()
                return
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                logger.warning(
                    "Session %s write for run %s failed (attempt %d/%d)",
                    op,
                    run_id,
                    attempt + 1,
                    self.write_attempts,
                    exc_info=True,
                )
                if attempt < self.write_attempts - 1 and self.retry_seconds > 0:
                    time.sleep(self.retry_seconds * (2**attempt))
        raise SessionWriteError(f"session {op} failed for run {run_id}: {last_exc}") from last_exc
