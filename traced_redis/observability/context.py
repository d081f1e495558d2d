"""Observability hub shared by connections.

An ObservabilityContext owns one metric registry and one tracing facility,
wires them to OpenTelemetry SDK providers according to its configuration and
is injected into every Connection. A lazily created process default is used
by connections constructed without one.

Example:
    observability = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG).initialize()
    connection = Connection("localhost", 6379, observability=observability)
    ...
    observability.memory_metric_reader.get_metrics_data()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Self

from opentelemetry.sdk.metrics.export import (
    ConsoleMetricExporter,
    InMemoryMetricReader,
    MetricReader,
    PeriodicExportingMetricReader,
)
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import NoOpTracer

from traced_redis.observability.config import ObservabilityConfig
from traced_redis.observability.measures import (
    ALL_MEASUREMENTS,
    ALL_VIEWS,
    ROUNDTRIP_LATENCY,
)
from traced_redis.observability.registry import MetricRegistry
from traced_redis.observability.tracing import (
    RoundtripTrackingSpan,
    ScopedSpan,
    TracingFacility,
)
from traced_redis.observability.types import (
    ExporterType,
    Measurement,
    SpanAttributes,
    TagKeys,
    TagSet,
    View,
)

__all__ = [
    "ObservabilityContext",
    "get_default_context",
    "set_default_context",
    "reset_default_context",
]

logger = logging.getLogger(__name__)


class ObservabilityContext:
    """Metric registry and tracing facility behind one handle.

    Nothing is recorded before ``initialize()``; the first recording or span
    initializes the context implicitly. Extra measurements and views must be
    registered before that.
    """

    def __init__(
        self,
        config: ObservabilityConfig | None = None,
        *,
        metric_readers: Sequence[MetricReader] = (),
        span_processors: Sequence[SpanProcessor] = (),
        register_defaults: bool = True,
    ) -> None:
        """Initialize ObservabilityContext.

        Args:
            config: Observability configuration.
            metric_readers: Caller-supplied metric readers, e.g. an exporter
                to a collector.
            span_processors: Caller-supplied span processors.
            register_defaults: Whether the connection measurements and views
                are registered.
        """
        self._config = config or ObservabilityConfig()
        self._extra_readers = list(metric_readers)
        self._extra_processors = list(span_processors)
        self._registry = MetricRegistry(self._config)
        self._tracing = TracingFacility(NoOpTracer())
        self._tracer_provider: TracerProvider | None = None
        self._memory_reader: InMemoryMetricReader | None = None
        self._memory_exporter: InMemorySpanExporter | None = None
        self._lock = threading.Lock()
        self._initialized = False
        self._is_shutdown = False

        if register_defaults:
            self._registry.register_all(ALL_MEASUREMENTS, ALL_VIEWS)

    @property
    def config(self) -> ObservabilityConfig:
        """Get the configuration."""
        return self._config

    @property
    def registry(self) -> MetricRegistry:
        """Get the metric registry."""
        return self._registry

    @property
    def tracing(self) -> TracingFacility:
        """Get the tracing facility."""
        return self._tracing

    @property
    def tracer_provider(self) -> TracerProvider | None:
        """Get the SDK TracerProvider, None when tracing is disabled."""
        return self._tracer_provider

    @property
    def is_initialized(self) -> bool:
        """Check if providers have been created."""
        return self._initialized

    @property
    def memory_metric_reader(self) -> InMemoryMetricReader | None:
        """Get the in-memory metric reader of the MEMORY exporter."""
        return self._memory_reader

    @property
    def memory_span_exporter(self) -> InMemorySpanExporter | None:
        """Get the in-memory span exporter of the MEMORY exporter."""
        return self._memory_exporter

    def register_measurement(self, measurement: Measurement) -> bool:
        """Register an extra measurement before initialization."""
        return self._registry.register_measurement(measurement)

    def register_view(self, view: View) -> bool:
        """Register an extra view before initialization."""
        return self._registry.register_view(view)

    def initialize(self) -> Self:
        """Create the meter and tracer providers. Later calls do nothing.

        Returns:
            This context.
        """
        with self._lock:
            if self._initialized:
                return self
            resource = Resource.create(self._config.resource_attributes())
            self._registry.initialize(
                metric_readers=self._build_metric_readers(),
                resource=resource,
            )
            if self._config.tracing_active:
                self._tracer_provider = TracerProvider(resource=resource)
                for processor in self._build_span_processors():
                    self._tracer_provider.add_span_processor(processor)
                tracer = self._tracer_provider.get_tracer(
                    self._config.instrumentation_name,
                    self._config.service_version,
                )
            else:
                tracer = NoOpTracer()
            self._tracing = TracingFacility(
                tracer,
                default_attributes={SpanAttributes.DB_SYSTEM: "redis"},
            )
            self._initialized = True
            logger.debug(
                f"Observability initialized (metrics={self._config.metrics_exporter.value}, "
                f"traces={self._config.traces_exporter.value})"
            )
            return self

    def _build_metric_readers(self) -> list[MetricReader]:
        readers: list[MetricReader] = []
        exporter = self._config.metrics_exporter
        if exporter is ExporterType.MEMORY:
            self._memory_reader = InMemoryMetricReader()
            readers.append(self._memory_reader)
        elif exporter is ExporterType.CONSOLE:
            readers.append(
                PeriodicExportingMetricReader(
                    ConsoleMetricExporter(),
                    export_interval_millis=self._config.export_interval_seconds * 1000,
                )
            )
        readers.extend(self._extra_readers)
        return readers

    def _build_span_processors(self) -> Iterable[SpanProcessor]:
        processors: list[SpanProcessor] = []
        exporter = self._config.traces_exporter
        if exporter is ExporterType.MEMORY:
            self._memory_exporter = InMemorySpanExporter()
            processors.append(SimpleSpanProcessor(self._memory_exporter))
        elif exporter is ExporterType.CONSOLE:
            processors.append(BatchSpanProcessor(ConsoleSpanExporter()))
        processors.extend(self._extra_processors)
        return processors

    def record(
        self,
        measurement: Measurement,
        value: float = 1,
        tags: TagSet | None = None,
    ) -> None:
        """Record one event of a measurement.

        Args:
            measurement: Registered measurement.
            value: Event value; 1 for plain counts.
            tags: Tags for this event only.
        """
        if not self._initialized:
            self.initialize()
        self._registry.record(measurement, value, tags)

    def scoped_span(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> ScopedSpan:
        """Start a span that is current until it ends."""
        if not self._initialized:
            self.initialize()
        return self._tracing.scoped_span(name, attributes)

    def roundtrip_span(
        self,
        name: str,
        command_name: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> RoundtripTrackingSpan:
        """Start a span that records ``roundtrip_latency`` tagged with the command when it ends."""
        if not self._initialized:
            self.initialize()
        return self._tracing.roundtrip_span(
            name,
            command_name,
            self._record_roundtrip,
            attributes,
        )

    def _record_roundtrip(self, elapsed_ms: float, command_name: str) -> None:
        self._registry.record(ROUNDTRIP_LATENCY, elapsed_ms, {TagKeys.COMMAND: command_name})

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Force flush metrics and spans.

        Returns:
            True if both flushes succeeded.
        """
        metrics_ok = self._registry.force_flush(timeout_millis)
        traces_ok = True
        if self._tracer_provider is not None:
            try:
                traces_ok = self._tracer_provider.force_flush(timeout_millis)
            except Exception as e:
                logger.warning(f"Failed to force flush spans: {e}")
                traces_ok = False
        return metrics_ok and traces_ok

    def shutdown(self) -> bool:
        """Shutdown both providers.

        Returns:
            True if successful.
        """
        if self._is_shutdown:
            return True
        self._is_shutdown = True
        success = self._registry.shutdown()
        if self._tracer_provider is not None:
            try:
                self._tracer_provider.shutdown()
            except Exception as e:
                logger.warning(f"Failed to shutdown TracerProvider: {e}")
                success = False
        return success

    def __enter__(self) -> Self:
        return self.initialize()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.shutdown()


_default_context: ObservabilityContext | None = None
_default_lock = threading.Lock()


def get_default_context() -> ObservabilityContext:
    """Get the process-wide context, creating it on first use.

    Returns:
        Initialized default ObservabilityContext.
    """
    global _default_context
    with _default_lock:
        if _default_context is None:
            _default_context = ObservabilityContext()
        context = _default_context
    return context.initialize()


def set_default_context(context: ObservabilityContext) -> None:
    """Replace the process-wide context.

    Args:
        context: Context used by connections constructed without one.
    """
    global _default_context
    with _default_lock:
        _default_context = context


def reset_default_context() -> None:
    """Drop the process-wide context so the next lookup creates a fresh one."""
    global _default_context
    with _default_lock:
        _default_context = None
