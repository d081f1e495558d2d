"""Scoped spans over the OpenTelemetry tracing API.

A ScopedSpan is started when it is created and becomes the current span until
it ends. Ending is idempotent, so a span closed explicitly inside a ``with``
block is not closed again on exit. Span bookkeeping never raises into the
traced operation; SDK failures are logged.

Example:
    facility = TracingFacility(tracer)
    with facility.scoped_span("redis.connection.connect") as span:
        span.annotate("dialling", host="localhost")
        sock.connect(address)
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any, Self

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import NoOpTracer, SpanKind, Status, StatusCode, Tracer

__all__ = [
    "ScopedSpan",
    "RoundtripTrackingSpan",
    "TracingFacility",
    "LatencyRecorder",
]

logger = logging.getLogger(__name__)

LatencyRecorder = Callable[[float, str], None]
"""Callback receiving elapsed milliseconds and the command name."""


class ScopedSpan:
    """A span that is current from creation until ``end()``.

    Attributes:
        name: Span name.
        start_time: ``time.perf_counter()`` value when the span started.
    """

    def __init__(
        self,
        facility: TracingFacility,
        name: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        self.name = name
        self._facility = facility
        self._span: trace.Span = trace.INVALID_SPAN
        self._token: object | None = None
        self._active = True
        self._elapsed_ms: float | None = None
        self.start_time = time.perf_counter()
        try:
            self._span = facility.tracer.start_span(
                name,
                kind=SpanKind.CLIENT,
                attributes=facility.merge_attributes(attributes),
            )
            self._token = otel_context.attach(trace.set_span_in_context(self._span))
        except Exception as e:
            logger.warning(f"Failed to start span {name!r}: {e}")
        facility._span_opened()

    @property
    def is_active(self) -> bool:
        """Check whether the span has not ended yet."""
        return self._active

    @property
    def span(self) -> trace.Span:
        """Get the underlying OpenTelemetry span."""
        return self._span

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since start, frozen once the span has ended."""
        if self._elapsed_ms is not None:
            return self._elapsed_ms
        return (time.perf_counter() - self.start_time) * 1000.0

    def set_attribute(self, key: str, value: Any) -> None:
        """Set one attribute on the span."""
        if not self._active:
            return
        try:
            self._span.set_attribute(key, value)
        except Exception as e:
            logger.warning(f"Failed to set attribute {key!r} on span {self.name!r}: {e}")

    def annotate(self, text: str, **attributes: Any) -> None:
        """Add a timestamped event to the span.

        Args:
            text: Event name.
            **attributes: Event attributes.
        """
        if not self._active:
            return
        try:
            self._span.add_event(text, attributes=attributes or None)
        except Exception as e:
            logger.warning(f"Failed to annotate span {self.name!r}: {e}")

    def set_error(self, error: BaseException | str) -> None:
        """Mark the span as failed.

        Args:
            error: The exception raised by the traced operation, or a
                description of the failure.
        """
        if not self._active:
            return
        try:
            if isinstance(error, BaseException):
                self._span.record_exception(error)
                description = f"{type(error).__name__}: {error}"
            else:
                description = error
            self._span.set_status(Status(StatusCode.ERROR, description))
        except Exception as e:
            logger.warning(f"Failed to set error on span {self.name!r}: {e}")

    def end(self) -> None:
        """End the span. Calling it again has no effect."""
        if not self._active:
            return
        self._active = False
        self._elapsed_ms = (time.perf_counter() - self.start_time) * 1000.0
        try:
            self._span.end()
        except Exception as e:
            logger.warning(f"Failed to end span {self.name!r}: {e}")
        finally:
            if self._token is not None:
                try:
                    otel_context.detach(self._token)
                except Exception as e:
                    logger.debug(f"Failed to detach context of span {self.name!r}: {e}")
                self._token = None
            self._facility._span_closed()
        self._on_end(self._elapsed_ms)

    close = end

    def _on_end(self, elapsed_ms: float) -> None:
        """Hook run once after the span ended."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if exc_val is not None:
            self.set_error(exc_val)
        self.end()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, active={self._active})"


class RoundtripTrackingSpan(ScopedSpan):
    """A scoped span that reports its duration as a command roundtrip latency.

    Attributes:
        command_name: Name of the command whose roundtrip is tracked.
    """

    def __init__(
        self,
        facility: TracingFacility,
        name: str,
        command_name: str,
        recorder: LatencyRecorder,
        attributes: Mapping[str, Any] | None = None,
    ) -> None:
        self.command_name = command_name
        self._recorder = recorder
        super().__init__(facility, name, attributes)

    def _on_end(self, elapsed_ms: float) -> None:
        try:
            self._recorder(elapsed_ms, self.command_name)
        except Exception as e:
            logger.warning(f"Failed to record roundtrip latency of {self.command_name!r}: {e}")


class TracingFacility:
    """Factory of scoped spans that keeps count of open spans.

    The counter is shared by every thread using the facility.
    """

    def __init__(
        self,
        tracer: Tracer | None = None,
        default_attributes: Mapping[str, Any] | None = None,
    ) -> None:
        """Initialize TracingFacility.

        Args:
            tracer: OpenTelemetry tracer. Defaults to a no-op tracer.
            default_attributes: Attributes added to every span.
        """
        self._tracer = tracer or NoOpTracer()
        self._default_attributes = dict(default_attributes or {})
        self._lock = threading.Lock()
        self._open_spans = 0

    @property
    def tracer(self) -> Tracer:
        """Get the OpenTelemetry tracer."""
        return self._tracer

    @property
    def open_span_count(self) -> int:
        """Number of spans started and not yet ended."""
        with self._lock:
            return self._open_spans

    def merge_attributes(self, attributes: Mapping[str, Any] | None) -> dict[str, Any]:
        """Merge default attributes with span attributes."""
        merged = dict(self._default_attributes)
        if attributes:
            merged.update({k: v for k, v in attributes.items() if v is not None})
        return merged

    def scoped_span(
        self,
        name: str,
        attributes: Mapping[str, Any] | None = None,
    ) -> ScopedSpan:
        """Start a span that is current until it ends.

        Args:
            name: Span name.
            attributes: Span attributes.

        Returns:
            The started span, usable as a context manager.
        """
        return ScopedSpan(self, name, attributes)

    def roundtrip_span(
        self,
        name: str,
        command_name: str,
        recorder: LatencyRecorder,
        attributes: Mapping[str, Any] | None = None,
    ) -> RoundtripTrackingSpan:
        """Start a span whose duration is reported to ``recorder`` when it ends.

        Args:
            name: Span name.
            command_name: Command whose roundtrip is tracked.
            recorder: Receives elapsed milliseconds and the command name.
            attributes: Span attributes.

        Returns:
            The started span, usable as a context manager.
        """
        return RoundtripTrackingSpan(self, name, command_name, recorder, attributes)

    def _span_opened(self) -> None:
        with self._lock:
            self._open_spans += 1

    def _span_closed(self) -> None:
        with self._lock:
            self._open_spans -= 1
