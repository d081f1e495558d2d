"""Tests for traced_redis.observability.tracing module."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from opentelemetry.trace import NoOpTracer, SpanKind, StatusCode

from traced_redis.observability.testing import finished_spans, metric_count, spans_named
from traced_redis.observability.tracing import TracingFacility


class TestScopedSpan:
    """Tests for ScopedSpan."""

    def test_span_exported_with_default_attributes(self, observability):
        """Test a span carries the facility defaults and its own attributes."""
        with observability.scoped_span("redis.connection.connect", {"net.peer.port": 6379}):
            pass

        (span,) = spans_named(observability, "redis.connection.connect")
        assert span.kind is SpanKind.CLIENT
        assert span.attributes["db.system"] == "redis"
        assert span.attributes["net.peer.port"] == 6379

    def test_none_attributes_dropped(self, observability):
        """Test attributes without a value are not set."""
        with observability.scoped_span("redis.connection.flush", {"redis.ssl": None}):
            pass

        (span,) = finished_spans(observability)
        assert "redis.ssl" not in span.attributes

    def test_nested_span_is_child(self, observability):
        """Test a span started inside another is its child."""
        with observability.scoped_span("outer") as outer:
            with observability.scoped_span("inner"):
                pass

        (inner,) = spans_named(observability, "inner")
        assert inner.parent.span_id == outer.span.get_span_context().span_id

    def test_annotate_adds_event(self, observability):
        """Test annotations are recorded as span events."""
        with observability.scoped_span("redis.connection.connect") as span:
            span.annotate("Connecting", host="localhost")
            span.annotate("Connected")

        (exported,) = finished_spans(observability)
        assert [e.name for e in exported.events] == ["Connecting", "Connected"]
        assert exported.events[0].attributes["host"] == "localhost"

    def test_exception_sets_error_and_propagates(self, observability):
        """Test an exception inside the block fails the span and is re-raised."""
        with pytest.raises(ValueError, match="boom"):
            with observability.scoped_span("redis.connection.read"):
                raise ValueError("boom")

        (span,) = finished_spans(observability)
        assert span.status.status_code is StatusCode.ERROR
        assert any(e.name == "exception" for e in span.events)

    def test_set_error_with_text(self, observability):
        """Test a failure description sets the error status."""
        with observability.scoped_span("redis.connection.get_many") as span:
            span.set_error("2 data errors")

        (exported,) = finished_spans(observability)
        assert exported.status.status_code is StatusCode.ERROR
        assert exported.status.description == "2 data errors"

    def test_end_is_idempotent(self, observability):
        """Test ending twice exports one span and freezes the duration."""
        span = observability.scoped_span("redis.connection.disconnect")
        span.end()
        elapsed = span.elapsed_ms
        span.end()
        span.close()

        assert span.is_active is False
        assert span.elapsed_ms == elapsed
        assert len(finished_spans(observability)) == 1

    def test_calls_after_end_ignored(self, observability):
        """Test annotating an ended span does nothing."""
        span = observability.scoped_span("redis.connection.flush")
        span.end()
        span.annotate("late")
        span.set_attribute("late", True)

        (exported,) = finished_spans(observability)
        assert exported.events == ()
        assert "late" not in exported.attributes


class TestTracingFacility:
    """Tests for TracingFacility."""

    def test_open_span_count(self):
        """Test open spans are counted until they end."""
        facility = TracingFacility(NoOpTracer())

        first = facility.scoped_span("a")
        second = facility.scoped_span("b")
        assert facility.open_span_count == 2

        second.end()
        first.end()
        first.end()
        assert facility.open_span_count == 0

    def test_tracer_failure_does_not_raise(self):
        """Test a failing tracer still yields a usable span."""
        tracer = MagicMock()
        tracer.start_span.side_effect = RuntimeError("exporter down")
        facility = TracingFacility(tracer)

        with facility.scoped_span("redis.connection.connect") as span:
            span.annotate("Connecting")

        assert facility.open_span_count == 0


class TestRoundtripTrackingSpan:
    """Tests for RoundtripTrackingSpan."""

    def test_recorder_called_once(self):
        """Test the latency is reported once with the command name."""
        recorder = MagicMock()
        facility = TracingFacility(NoOpTracer())

        span = facility.roundtrip_span("redis.connection.roundtrip", "GET", recorder)
        span.end()
        span.end()

        recorder.assert_called_once()
        elapsed_ms, command = recorder.call_args.args
        assert command == "GET"
        assert elapsed_ms >= 0

    def test_recorder_failure_swallowed(self):
        """Test a failing recorder does not affect the caller."""
        facility = TracingFacility(NoOpTracer())
        recorder = MagicMock(side_effect=RuntimeError("registry closed"))

        with facility.roundtrip_span("redis.connection.roundtrip", "SET", recorder):
            pass

        recorder.assert_called_once()

    def test_context_records_roundtrip_latency(self, observability):
        """Test the context reports roundtrip spans as latency per command."""
        with observability.roundtrip_span("redis.connection.roundtrip", "PING"):
            pass

        assert metric_count(observability, "redis.client.roundtrip_latency", command="PING") == 1
        assert len(spans_named(observability, "redis.connection.roundtrip")) == 1
