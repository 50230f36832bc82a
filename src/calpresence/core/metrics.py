"""OpenTelemetry metrics instruments for reconciliation runs.

Instruments
-----------
  calpresence.status_updates_total     Counter
      Status/presence updates pushed to the chat platform.

  calpresence.reminders_sent_total     Counter
      Meeting reminders delivered.

  calpresence.users_skipped_total      Counter  (label: reason=auth|no_chat_user)
      Users whose reconciliation was skipped without side effects.

  calpresence.reconcile_failures_total Counter
      Users whose reconciliation failed with a transport error.

Instruments are created lazily from the global MeterProvider; when
OTEL_EXPORTER_OTLP_ENDPOINT is not set every recording is a silent no-op.
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "calpresence"


def init_metrics(service_name: str) -> metrics.Meter:
    """Initialize OpenTelemetry metrics with a periodic OTLP exporter when configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
    from opentelemetry.sdk.metrics import MeterProvider
    from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
    from opentelemetry.sdk.resources import Resource

    resource = Resource.create({"service.name": service_name})
    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(endpoint=endpoint), export_interval_millis=15_000
    )
    metrics.set_meter_provider(MeterProvider(resource=resource, metric_readers=[reader]))
    logger.info("Metrics initialized: service=%s, endpoint=%s", service_name, endpoint)

    return metrics.get_meter(_METER_NAME)


def get_meter() -> metrics.Meter:
    return metrics.get_meter(_METER_NAME)


class ReconcilerMetrics:
    """Caches reconciliation counters; safe to construct before ``init_metrics``."""

    def __init__(self) -> None:
        self._status_updates: metrics.Counter | None = None
        self._reminders_sent: metrics.Counter | None = None
        self._users_skipped: metrics.Counter | None = None
        self._failures: metrics.Counter | None = None

    def _counter(self, name: str, description: str, unit: str) -> metrics.Counter:
        return get_meter().create_counter(name=name, description=description, unit=unit)

    def status_updated(self) -> None:
        if self._status_updates is None:
            self._status_updates = self._counter(
                "calpresence.status_updates_total",
                "Status and presence updates pushed to the chat platform",
                "updates",
            )
        self._status_updates.add(1)

    def reminder_sent(self) -> None:
        if self._reminders_sent is None:
            self._reminders_sent = self._counter(
                "calpresence.reminders_sent_total",
                "Meeting reminders delivered",
                "messages",
            )
        self._reminders_sent.add(1)

    def user_skipped(self, reason: str) -> None:
        if self._users_skipped is None:
            self._users_skipped = self._counter(
                "calpresence.users_skipped_total",
                "Users skipped without side effects",
                "users",
            )
        self._users_skipped.add(1, {"reason": reason})

    def reconcile_failed(self, count: int = 1) -> None:
        if self._failures is None:
            self._failures = self._counter(
                "calpresence.reconcile_failures_total",
                "Users whose reconciliation failed",
                "users",
            )
        self._failures.add(count)
