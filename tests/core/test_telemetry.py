"""Tests for tracing setup and the per-user reconcile span."""

from __future__ import annotations

import pytest
from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import calpresence.core.telemetry as telemetry_mod
from calpresence.core.logging import get_user_context
from calpresence.core.telemetry import RECONCILE_SPAN_NAME, init_telemetry, reconcile_span
from calpresence.models import UserSettings
from calpresence.reconciler import Reconciler, ReconcileError
from calpresence.testing import (
    InMemorySettingsStore,
    RecordingChatProvider,
    StaticCalendarProvider,
)

pytestmark = pytest.mark.unit


def _reset_otel_global_state():
    """Fully reset the OpenTelemetry global tracer provider state."""
    trace._TRACER_PROVIDER_SET_ONCE = trace.Once()
    trace._TRACER_PROVIDER = None


@pytest.fixture(autouse=True)
def otel_provider():
    """Install an in-memory TracerProvider for every test, then tear down."""
    _reset_otel_global_state()
    exporter = InMemorySpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": "calpresence-test"}))
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    yield exporter
    provider.shutdown()
    _reset_otel_global_state()


class TestInitTelemetry:
    def test_no_endpoint_keeps_existing_provider(self, monkeypatch):
        monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
        monkeypatch.setattr(telemetry_mod, "_tracer_provider_installed", False)
        before = trace.get_tracer_provider()

        tracer = init_telemetry("calpresence")

        assert tracer is not None
        assert trace.get_tracer_provider() is before
        assert telemetry_mod._tracer_provider_installed is False

    def test_second_call_reuses_installed_provider(self, monkeypatch):
        monkeypatch.setenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
        monkeypatch.setattr(telemetry_mod, "_tracer_provider_installed", True)
        before = trace.get_tracer_provider()

        init_telemetry("calpresence")

        assert trace.get_tracer_provider() is before


class TestReconcileSpan:
    def test_creates_named_span_with_user(self, otel_provider):
        with reconcile_span("jane@example.com"):
            pass
        spans = otel_provider.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].name == RECONCILE_SPAN_NAME
        assert spans[0].attributes["calpresence.user"] == "jane@example.com"

    def test_span_is_current_inside_block(self):
        with reconcile_span("jane@example.com") as span:
            assert trace.get_current_span() is span
        assert trace.get_current_span() is not span

    def test_user_log_context_is_scoped(self):
        assert get_user_context() is None
        with reconcile_span("jane@example.com"):
            assert get_user_context() == "jane@example.com"
        assert get_user_context() is None

    def test_records_exception_on_error(self, otel_provider):
        with pytest.raises(ValueError, match="boom"):
            with reconcile_span("jane@example.com"):
                raise ValueError("boom")

        span = otel_provider.get_finished_spans()[0]
        assert span.status.status_code == trace.StatusCode.ERROR
        exception_events = [e for e in span.events if e.name == "exception"]
        assert len(exception_events) == 1
        assert "ValueError" in exception_events[0].attributes["exception.type"]
        assert get_user_context() is None


class TestReconcilerSpans:
    async def test_one_span_per_user(self, otel_provider):
        users = [UserSettings(email=f"user{i}@example.com") for i in range(3)]
        reconciler = Reconciler(
            calendar=StaticCalendarProvider([]),
            settings_store=InMemorySettingsStore(users),
            chat=RecordingChatProvider(),
            bot_token="xoxb-test",
        )

        await reconciler.reconcile_many(users)

        spans = otel_provider.get_finished_spans()
        assert sorted(s.attributes["calpresence.user"] for s in spans) == [
            u.email for u in users
        ]

    async def test_failed_user_span_has_error_status(self, otel_provider):
        class BrokenCalendar(StaticCalendarProvider):
            async def get_events(self, user_id, token, window_minutes=1):
                raise RuntimeError("calendar down")

        user = UserSettings(email="jane@example.com")
        reconciler = Reconciler(
            calendar=BrokenCalendar(),
            settings_store=InMemorySettingsStore([user]),
            chat=RecordingChatProvider(),
            bot_token="xoxb-test",
        )

        with pytest.raises(ReconcileError):
            await reconciler.reconcile_user(user)

        span = otel_provider.get_finished_spans()[0]
        assert span.status.status_code == trace.StatusCode.ERROR
