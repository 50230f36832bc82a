"""OpenTelemetry initialization and per-user reconciliation spans."""

from __future__ import annotations

import logging
import os

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from calpresence.core.logging import reset_user_context, set_user_context

logger = logging.getLogger(__name__)

_TRACER_NAME = "calpresence"
RECONCILE_SPAN_NAME = "calpresence.reconcile"

# Set once this process has installed the global TracerProvider.
_tracer_provider_installed: bool = False


def init_telemetry(service_name: str) -> trace.Tracer:
    """Initialize OpenTelemetry tracing.

    With OTEL_EXPORTER_OTLP_ENDPOINT set, the first call installs a
    TracerProvider exporting over OTLP gRPC. Without it spans stay no-ops.
    """
    global _tracer_provider_installed

    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op tracer")
        return trace.get_tracer(service_name)

    if _tracer_provider_installed:
        logger.debug("TracerProvider already initialized; reusing it for service=%s", service_name)
        return trace.get_tracer(service_name)

    # The gRPC exporter is only imported when an endpoint is configured.
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))

    trace.set_tracer_provider(provider)
    _tracer_provider_installed = True
    logger.info("Telemetry initialized: endpoint=%s", endpoint)

    return trace.get_tracer(service_name)


class reconcile_span:
    """Span plus logging context around one user's reconciliation.

    Usage::

        with reconcile_span(settings.email) as span:
            ...

    Exceptions are recorded on the span and the span status is set to ERROR
    before the exception is re-raised. A fresh instance is required per use.
    """

    def __init__(self, user_id: str) -> None:
        self._user_id = user_id
        self._span: trace.Span | None = None
        self._token: object | None = None
        self._user_token: object | None = None

    def __enter__(self) -> trace.Span:
        tracer = trace.get_tracer(_TRACER_NAME)
        self._span = tracer.start_span(RECONCILE_SPAN_NAME)
        self._span.set_attribute("calpresence.user", self._user_id)
        self._token = trace.context_api.attach(trace.set_span_in_context(self._span))
        self._user_token = set_user_context(self._user_id)
        return self._span

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._user_token is not None:
            reset_user_context(self._user_token)
        if self._span is None:
            return
        if exc_val is not None:
            self._span.set_status(trace.StatusCode.ERROR, str(exc_val))
            self._span.record_exception(exc_val)
        self._span.end()
        if self._token is not None:
            trace.context_api.detach(self._token)
