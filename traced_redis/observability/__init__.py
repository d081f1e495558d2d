"""Metrics and tracing for traced-redis connections.

Built on the OpenTelemetry SDK. Connections record measurements through a
MetricRegistry and trace every I/O operation with scoped spans; both live in
an ObservabilityContext that callers construct once and inject.

Example:
    from traced_redis.observability import (
        ObservabilityContext,
        TESTING_OBSERVABILITY_CONFIG,
    )

    observability = ObservabilityContext(TESTING_OBSERVABILITY_CONFIG).initialize()
"""

from traced_redis.observability.config import (
    DEFAULT_OBSERVABILITY_CONFIG,
    DISABLED_OBSERVABILITY_CONFIG,
    TESTING_OBSERVABILITY_CONFIG,
    ObservabilityConfig,
)
from traced_redis.observability.context import (
    ObservabilityContext,
    get_default_context,
    reset_default_context,
    set_default_context,
)
from traced_redis.observability.exceptions import (
    ObservabilityConfigurationError,
    ObservabilityError,
    RegistrationError,
)
from traced_redis.observability.registry import MetricRegistry
from traced_redis.observability.tracing import (
    RoundtripTrackingSpan,
    ScopedSpan,
    TracingFacility,
)
from traced_redis.observability.types import (
    AggregationType,
    ExporterType,
    MeasureKind,
    Measurement,
    SpanAttributes,
    TagKeys,
    TagSet,
    View,
)

__all__ = [
    # Configuration
    "ObservabilityConfig",
    "DEFAULT_OBSERVABILITY_CONFIG",
    "TESTING_OBSERVABILITY_CONFIG",
    "DISABLED_OBSERVABILITY_CONFIG",
    # Context
    "ObservabilityContext",
    "get_default_context",
    "set_default_context",
    "reset_default_context",
    # Registry and tracing
    "MetricRegistry",
    "TracingFacility",
    "ScopedSpan",
    "RoundtripTrackingSpan",
    # Types
    "AggregationType",
    "ExporterType",
    "MeasureKind",
    "Measurement",
    "View",
    "TagSet",
    "TagKeys",
    "SpanAttributes",
    # Exceptions
    "ObservabilityError",
    "ObservabilityConfigurationError",
    "RegistrationError",
]
