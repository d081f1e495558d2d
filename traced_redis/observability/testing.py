"""Testing utilities for traced-redis observability.

Helpers to build an in-memory ObservabilityContext and to read back what it
collected, without walking the OpenTelemetry metric data model by hand.

Example:
    context = create_test_context()
    connection = Connection(host, port, observability=context)
    connection.connect()
    assert metric_count(context, "redis.client.dials", outcome="success") == 1
"""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from opentelemetry.sdk.trace import ReadableSpan

from traced_redis.observability.config import TESTING_OBSERVABILITY_CONFIG
from traced_redis.observability.context import ObservabilityContext

__all__ = [
    "create_test_context",
    "collect_points",
    "metric_count",
    "metric_sum",
    "finished_spans",
    "spans_named",
]


def create_test_context(**kwargs: Any) -> ObservabilityContext:
    """Create an initialized context with in-memory reader and span exporter.

    Args:
        **kwargs: Extra keyword arguments for ObservabilityContext.

    Returns:
        Initialized ObservabilityContext.
    """
    return ObservabilityContext(TESTING_OBSERVABILITY_CONFIG, **kwargs).initialize()


def collect_points(context: ObservabilityContext) -> dict[str, list[Any]]:
    """Collect current data points keyed by metric stream name.

    Args:
        context: Context created with the MEMORY metrics exporter.

    Returns:
        Mapping of stream name to its data points.
    """
    reader = context.memory_metric_reader
    if reader is None:
        raise ValueError("context has no in-memory metric reader")
    points: dict[str, list[Any]] = defaultdict(list)
    data = reader.get_metrics_data()
    if data is None:
        return {}
    for resource_metrics in data.resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name].extend(metric.data.data_points)
    return dict(points)


def _matching(points: list[Any], tags: dict[str, str]) -> list[Any]:
    return [
        p for p in points
        if all((p.attributes or {}).get(k) == v for k, v in tags.items())
    ]


def metric_count(context: ObservabilityContext, name: str, **tags: str) -> float:
    """Number of events in a metric stream, optionally filtered by tags.

    Sum streams report their value; histogram streams report their count.
    """
    points = _matching(collect_points(context).get(name, []), tags)
    return sum(p.count if hasattr(p, "count") else p.value for p in points)


def metric_sum(context: ObservabilityContext, name: str, **tags: str) -> float:
    """Sum of recorded values in a metric stream, optionally filtered by tags."""
    points = _matching(collect_points(context).get(name, []), tags)
    return sum(p.sum if hasattr(p, "sum") else p.value for p in points)


def finished_spans(context: ObservabilityContext) -> list[ReadableSpan]:
    """Get the spans ended so far.

    Args:
        context: Context created with the MEMORY traces exporter.
    """
    exporter = context.memory_span_exporter
    if exporter is None:
        raise ValueError("context has no in-memory span exporter")
    return list(exporter.get_finished_spans())


def spans_named(context: ObservabilityContext, name: str) -> list[ReadableSpan]:
    """Get the ended spans with the given name."""
    return [s for s in finished_spans(context) if s.name == name]
