"""OpenTelemetry metrics instruments for calendar tools.

Instruments are created lazily from the global MeterProvider, so callers do
not need to pass a Meter instance around and may construct
:class:`ToolsMetrics` before ``init_metrics`` runs.

Instruments
-----------
  calendar_tools.enhancement.total        Counter   (label: outcome=success|failure|timeout)
  calendar_tools.enhancement.duration_ms  Histogram
  calendar_tools.health.checks_total      Counter   (label: healthy=true|false)
  calendar_tools.health.recoveries_total  Counter
  calendar_tools.registry.evictions_total Counter   (label: reason=stale|detached|removed)
  calendar_tools.duplication.total        Counter   (label: state=<final workflow state>)
  calendar_tools.mutations.batches_total  Counter
  calendar_tools.mutations.dropped_total  Counter
"""

from __future__ import annotations

import logging
import os

from opentelemetry import metrics

logger = logging.getLogger(__name__)

_METER_NAME = "calendar_tools"


def init_metrics(service_name: str = "calendar-tools") -> metrics.Meter:
    """Initialize OpenTelemetry metrics.

    When OTEL_EXPORTER_OTLP_ENDPOINT is set, configures a MeterProvider with a
    periodic OTLP gRPC exporter.  Otherwise the global no-op provider is used
    and every recording is silent.
    """
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT")

    if not endpoint:
        logger.info("OTEL_EXPORTER_OTLP_ENDPOINT not set, using no-op meter")
        return metrics.get_meter(_METER_NAME)

    # Import SDK/exporter only when needed to avoid hard dependency at import time
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
    """Return a Meter from the current global provider."""
    return metrics.get_meter(_METER_NAME)


class ToolsMetrics:
    """Convenience wrapper that caches calendar tools instruments.

    Instruments are created on first use so the object is safe to build at
    import time; recordings are no-ops until a real provider is installed.
    """

    def __init__(self) -> None:
        self._instruments: dict[str, metrics.Counter | metrics.Histogram] = {}

    def _counter(self, name: str, description: str, unit: str) -> metrics.Counter:
        instrument = self._instruments.get(name)
        if instrument is None:
            instrument = get_meter().create_counter(name=name, description=description, unit=unit)
            self._instruments[name] = instrument
        return instrument  # type: ignore[return-value]

    def _histogram(self, name: str, description: str, unit: str) -> metrics.Histogram:
        instrument = self._instruments.get(name)
        if instrument is None:
            instrument = get_meter().create_histogram(
                name=name, description=description, unit=unit
            )
            self._instruments[name] = instrument
        return instrument  # type: ignore[return-value]

    # -- enhancement --------------------------------------------------------

    def enhancement(self, outcome: str, duration_ms: float) -> None:
        """Record one enhancement attempt and how long it took."""
        self._counter(
            "calendar_tools.enhancement.total",
            "Enhancement attempts on host event cards",
            "attempts",
        ).add(1, {"outcome": outcome})
        self._histogram(
            "calendar_tools.enhancement.duration_ms",
            "Time spent enhancing one host event card",
            "ms",
        ).record(duration_ms, {"outcome": outcome})

    # -- health -------------------------------------------------------------

    def health_check(self, *, healthy: bool) -> None:
        self._counter(
            "calendar_tools.health.checks_total",
            "Periodic health checks run by the resilience supervisor",
            "checks",
        ).add(1, {"healthy": str(healthy).lower()})

    def recovery(self) -> None:
        self._counter(
            "calendar_tools.health.recoveries_total",
            "Full-state recoveries performed by the resilience supervisor",
            "recoveries",
        ).add(1)

    def eviction(self, reason: str, count: int = 1) -> None:
        if count <= 0:
            return
        self._counter(
            "calendar_tools.registry.evictions_total",
            "Registry records evicted",
            "records",
        ).add(count, {"reason": reason})

    # -- duplication --------------------------------------------------------

    def duplication(self, state: str) -> None:
        self._counter(
            "calendar_tools.duplication.total",
            "Duplication workflows by final state",
            "workflows",
        ).add(1, {"state": state})

    def day_copy(self, outcome: str, count: int = 1) -> None:
        if count <= 0:
            return
        self._counter(
            "calendar_tools.day_copy.events_total",
            "Events handled by Copy Day, by outcome",
            "events",
        ).add(count, {"outcome": outcome})

    # -- mutation watcher ---------------------------------------------------

    def mutation_batch(self) -> None:
        self._counter(
            "calendar_tools.mutations.batches_total",
            "Debounced mutation batches processed",
            "batches",
        ).add(1)

    def mutation_batch_dropped(self) -> None:
        self._counter(
            "calendar_tools.mutations.dropped_total",
            "Mutation batches dropped because the work queue was full",
            "batches",
        ).add(1)
