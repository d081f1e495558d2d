"""Type definitions for the observability layer.

Measurements and views are immutable descriptions; the registry turns them
into OpenTelemetry instruments and views when it is initialized.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    # Enums
    "MeasureKind",
    "AggregationType",
    "ExporterType",
    # Descriptions
    "Measurement",
    "View",
    # Tags
    "TagSet",
    "TagKeys",
    "SpanAttributes",
]


class MeasureKind(Enum):
    """Kind of a measurement, deciding which instrument records it."""

    COUNTER = "counter"
    """Monotonic count of events."""

    DISTRIBUTION = "distribution"
    """Individual samples (latencies, sizes) recorded into a histogram."""


class AggregationType(Enum):
    """How a view aggregates the events of its measurement."""

    COUNT = "count"
    """Number of recorded events."""

    SUM = "sum"
    """Sum of recorded values."""

    DISTRIBUTION = "distribution"
    """Bucketed distribution using the view's boundaries."""


class ExporterType(Enum):
    """Where produced metrics and spans go.

    Exporting to a remote collector is left to the caller, who can pass any
    OpenTelemetry metric reader or span processor to the context.
    """

    CONSOLE = "console"
    """Print to stdout for debugging."""

    MEMORY = "memory"
    """Keep in memory for inspection in tests."""

    NONE = "none"
    """Produce events without attaching a built-in reader or exporter."""


TagSet = Mapping[str, str]
"""Tags attached to one recorded event."""


class TagKeys:
    """Tag keys used when recording measurements."""

    COMMAND = "command"
    """Name of the protocol command (e.g. "GET")."""

    PHASE = "phase"
    """Connection operation the event happened in (e.g. "get_many")."""

    ENUM = "enum"
    """Error classification (e.g. "data_error")."""

    OUTCOME = "outcome"
    """Result of a dial: "success" or "failure"."""


class SpanAttributes:
    """Span attribute names, following OpenTelemetry database conventions."""

    DB_SYSTEM = "db.system"
    DB_OPERATION = "db.operation"
    NET_PEER_NAME = "net.peer.name"
    NET_PEER_PORT = "net.peer.port"
    CONNECT_TIMEOUT = "redis.connect_timeout_seconds"
    READ_TIMEOUT = "redis.read_timeout_seconds"
    SSL = "redis.ssl"
    REPLY_COUNT = "redis.reply_count"
    DATA_ERRORS = "redis.data_errors"


@dataclass(frozen=True, slots=True)
class Measurement:
    """A named quantity produced by the connection layer.

    Attributes:
        name: Instrument name.
        kind: Counter or distribution.
        unit: UCUM unit ("1", "ms", "By").
        description: Human-readable description.
    """

    name: str
    kind: MeasureKind
    unit: str = "1"
    description: str = ""


@dataclass(frozen=True, slots=True)
class View:
    """An aggregation of one measurement.

    Attributes:
        name: Name of the aggregated metric stream.
        measurement: Measurement being aggregated.
        aggregation: Aggregation applied to the measurement's events.
        tag_keys: Tag keys kept on the stream; all other tags are dropped.
        description: Human-readable description.
        boundaries: Bucket boundaries for distribution aggregations.
    """

    name: str
    measurement: Measurement
    aggregation: AggregationType
    tag_keys: tuple[str, ...] = ()
    description: str = ""
    boundaries: tuple[float, ...] = field(default=())
