"""Tests for traced_redis.observability.context module."""

from __future__ import annotations

from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from traced_redis.observability.config import (
    DISABLED_OBSERVABILITY_CONFIG,
    TESTING_OBSERVABILITY_CONFIG,
)
from traced_redis.observability.context import (
    ObservabilityContext,
    get_default_context,
    reset_default_context,
    set_default_context,
)
from traced_redis.observability.measures import ALL_VIEWS, DIALS, ERRORS
from traced_redis.observability.testing import metric_count
from traced_redis.observability.types import AggregationType, MeasureKind, Measurement, View


class TestObservabilityContext:
    """Tests for ObservabilityContext."""

    def test_default_views_registered(self):
        """Test connection views are registered on construction."""
        context = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG)
        assert len(context.registry.views) == len(ALL_VIEWS)
        assert context.is_initialized is False

    def test_initialize_is_idempotent(self):
        """Test a second initialize keeps the same providers."""
        context = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG).initialize()
        reader = context.memory_metric_reader
        provider = context.tracer_provider

        context.initialize()

        assert context.memory_metric_reader is reader
        assert context.tracer_provider is provider
        context.shutdown()

    def test_first_record_initializes(self):
        """Test recording initializes the context implicitly."""
        context = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG)

        context.record(DIALS, 1, {"outcome": "success"})

        assert context.is_initialized is True
        assert metric_count(context, "redis.client.dials", outcome="success") == 1
        context.shutdown()

    def test_extra_view_registered_before_use(self):
        """Test callers can add their own measurements and views."""
        retries = Measurement("redis.retries", MeasureKind.COUNTER)
        context = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG)
        assert context.register_measurement(retries) is True
        assert context.register_view(View("app.redis.retries", retries, AggregationType.COUNT))

        context.record(retries)

        assert metric_count(context, "app.redis.retries") == 1
        context.shutdown()

    def test_errors_view_keeps_all_tags(self, observability):
        """Test the errors view is broken down by command, phase and kind."""
        observability.record(ERRORS, 1, {"command": "GET", "phase": "read", "enum": "timeout"})

        assert metric_count(observability, "redis.client.errors", command="GET", phase="read") == 1

    def test_caller_supplied_reader_and_processor(self):
        """Test caller readers and processors are attached alongside the defaults."""
        reader = InMemoryMetricReader()
        exporter = InMemorySpanExporter()
        context = ObservabilityContext(
            TESTING_OBSERVABILITY_CONFIG,
            metric_readers=[reader],
            span_processors=[SimpleSpanProcessor(exporter)],
        ).initialize()

        context.record(DIALS, 1, {"outcome": "failure"})
        with context.scoped_span("redis.connection.connect"):
            pass

        assert reader.get_metrics_data() is not None
        assert [s.name for s in exporter.get_finished_spans()] == ["redis.connection.connect"]
        context.shutdown()

    def test_disabled_context(self):
        """Test a disabled context still hands out spans and accepts records."""
        with ObservabilityContext(DISABLED_OBSERVABILITY_CONFIG) as context:
            context.record(DIALS)
            with context.scoped_span("redis.connection.connect") as span:
                span.annotate("Connecting")

            assert context.tracer_provider is None
            assert context.memory_metric_reader is None
            assert context.tracing.open_span_count == 0


class TestDefaultContext:
    """Tests for the process-wide default context."""

    def test_created_lazily_and_cached(self):
        """Test the default is created once and initialized."""
        reset_default_context()
        context = get_default_context()

        assert context.is_initialized is True
        assert get_default_context() is context

    def test_set_default_context(self, observability):
        """Test the default can be replaced."""
        set_default_context(observability)
        assert get_default_context() is observability
