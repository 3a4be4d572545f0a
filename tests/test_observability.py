"""
Tests for run tracing.

These tests verify that:
1. Tracing is a no-op unless an OTLP endpoint is configured
2. Every executed stage gets its own span carrying run id and stage
3. Model calls are traced with their tool name
"""

import os
from unittest.mock import MagicMock, patch

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from conftest import FakeVLM

from tva_api.observability import phoenix
from tva_api.observability.phoenix import trace_span
from tva_api.pipeline.executor import PipelineDeps, PipelineExecutor
from tva_api.providers.vlm_openai import OpenAIVLMProvider


@pytest.fixture
def exporter():
    span_exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    with patch("tva_api.observability.phoenix._get_tracer", return_value=provider.get_tracer("test")):
        yield span_exporter


class TestTraceSpan:
    def test_no_endpoint_means_no_tracer(self, monkeypatch):
        monkeypatch.setattr(phoenix, "_initialized", False)
        monkeypatch.setattr(phoenix, "_tracer", None)
        with patch.dict(os.environ, {}, clear=True):
            with trace_span("noop", {"tva.run_id": "run-1"}) as span:
                assert span is None

    def test_host_builds_default_endpoint(self):
        with patch.dict(os.environ, {"PHOENIX_HOST": "phoenix"}, clear=True):
            assert phoenix._otlp_endpoint() == "http://phoenix:6006/v1/traces"

    def test_none_attributes_are_skipped(self, exporter):
        with trace_span("unit", {"tva.run_id": "run-1", "tva.stage": None}):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.name == "unit"
        assert dict(span.attributes) == {"tva.run_id": "run-1"}


class TestPipelineSpans:
    def test_each_stage_is_traced(self, exporter, deps):
        list(PipelineExecutor(deps).run("run-t", b"img"))

        stage_spans = [s for s in exporter.get_finished_spans() if s.name == "pipeline.stage"]
        assert [s.attributes["tva.stage"] for s in stage_spans] == [
            "analyze",
            "validate",
            "match_rules",
            "write_record",
            "format",
        ]
        assert {s.attributes["tva.run_id"] for s in stage_spans} == {"run-t"}

    def test_failed_analysis_is_recorded_on_span(self, exporter, embedder, store):
        deps = PipelineDeps(vlm=FakeVLM(error=RuntimeError("VLM call failed: 500")), embedder=embedder, store=store)

        list(PipelineExecutor(deps).run("run-f", b"img"))

        analyze_span = next(s for s in exporter.get_finished_spans() if s.attributes.get("tva.stage") == "analyze")
        assert "Failed to analyze image" in analyze_span.attributes["tva.failure"]

    def test_vlm_call_is_traced(self, exporter):
        completion = {"choices": [{"message": {"content": '{"title": "x"}'}}]}
        with patch.dict(os.environ, {"TVA_VLM_BASE_URL": "http://vlm:8000/v1"}, clear=True):
            with patch("tva_api.providers.vlm_openai.httpx.Client") as mock_client:
                resp = MagicMock()
                resp.json.return_value = completion
                mock_client.return_value.__enter__.return_value.post.return_value = resp
                OpenAIVLMProvider().generate_structured(messages=[], images=[b"img"], options={"run_id": "run-v"})

        (span,) = [s for s in exporter.get_finished_spans() if s.name == "vlm.generate_structured"]
        assert span.attributes["tva.run_id"] == "run-v"
        assert span.attributes["tva.parsed"] is True
