from __future__ import annotations

import logging
import os
import threading
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

_initialized = False
_tracer: trace.Tracer | None = None
_setup_lock = threading.Lock()


def _otlp_endpoint() -> str | None:
    endpoint = os.environ.get("PHOENIX_OTLP_ENDPOINT")
    host = os.environ.get("PHOENIX_HOST")
    port = os.environ.get("PHOENIX_PORT") or "6006"
    if not endpoint and host:
        endpoint = f"http://{host}:{port}/v1/traces"
    return endpoint or None


def _setup_tracer() -> None:
    """
    Install an OTLP exporter (Arize Phoenix or any OTLP/HTTP collector) once per process.

    Tracing stays off unless `PHOENIX_OTLP_ENDPOINT` or `PHOENIX_HOST` is set.
    """
    global _initialized, _tracer
    with _setup_lock:
        if _initialized:
            return
        _initialized = True

        endpoint = _otlp_endpoint()
        if not endpoint:
            return

        service_name = os.environ.get("PHOENIX_SERVICE_NAME", "tva-api")
        provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
        trace.set_tracer_provider(provider)
        _tracer = trace.get_tracer(service_name)
        logger.info("Exporting traces to %s as %s", endpoint, service_name)


def _get_tracer() -> trace.Tracer | None:
    _setup_tracer()
    return _tracer


@contextmanager
def trace_span(name: str, attributes: dict[str, Any] | None = None) -> Iterator[Any]:
    """
    Span around a block when tracing is configured; yields `None` otherwise.

    `None` attribute values are skipped.
    """
    tracer = _get_tracer()
    if tracer is None:
        yield None
        return
    with tracer.start_as_current_span(name) as span:
        if attributes:
            for key, value in attributes.items():
                if value is None:
                    continue
                span.set_attribute(key, value)
        yield span
