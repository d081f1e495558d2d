"""Measurements and views produced by the connection layer.

The names here are the contract with whatever collects the metrics. Counts
use unit "1", sizes "By" and latencies "ms".
"""

from __future__ import annotations

from traced_redis.observability.types import (
    AggregationType,
    MeasureKind,
    Measurement,
    TagKeys,
    View,
)

__all__ = [
    "BYTES_READ",
    "BYTES_WRITTEN",
    "DIALS",
    "DIAL_LATENCY_MILLISECONDS",
    "DIAL_ERRORS",
    "CONNECTIONS_TAKEN",
    "CONNECTIONS_RETURNED",
    "CONNECTIONS_REUSED",
    "CONNECTIONS_OPENED",
    "CONNECTIONS_CLOSED",
    "CONNECTIONS_CLOSED_ERRORS",
    "ERRORS",
    "ROUNDTRIP_LATENCY",
    "READS",
    "WRITES",
    "READ_ERRORS",
    "WRITE_ERRORS",
    "ALL_MEASUREMENTS",
    "ALL_VIEWS",
    "DEFAULT_BYTES_BOUNDARIES",
    "DEFAULT_MILLISECONDS_BOUNDARIES",
]

DIMENSIONLESS = "1"
MILLISECONDS = "ms"
BYTES = "By"

# [0, 1KB, 2KB, 4KB, 16KB, 64KB, 256KB, 1MB, 4MB, 16MB, 64MB, 256MB, 1GB, 2GB]
DEFAULT_BYTES_BOUNDARIES: tuple[float, ...] = (
    0.0, 1024.0, 2048.0, 4096.0, 16384.0, 65536.0, 262144.0, 1048576.0,
    4194304.0, 16777216.0, 67108864.0, 268435456.0, 1073741824.0, 2147483648.0,
)

# [0ms, 1us, 5us, 10us, 50us, 100us, 500us, 1ms, ..., 500s]
DEFAULT_MILLISECONDS_BOUNDARIES: tuple[float, ...] = (
    0.0, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 1.5, 2.0, 2.5, 5.0, 10.0,
    25.0, 50.0, 100.0, 200.0, 400.0, 600.0, 800.0, 1000.0, 1500.0, 2500.0,
    5000.0, 10000.0, 20000.0, 40000.0, 100000.0, 200000.0, 500000.0,
)


# =============================================================================
# Measurements
# =============================================================================

BYTES_READ = Measurement(
    "redis.bytes_read", MeasureKind.DISTRIBUTION, BYTES,
    "The number of bytes read from the server",
)
BYTES_WRITTEN = Measurement(
    "redis.bytes_written", MeasureKind.DISTRIBUTION, BYTES,
    "The number of bytes written to the server",
)
DIALS = Measurement(
    "redis.dials", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of dials",
)
DIAL_LATENCY_MILLISECONDS = Measurement(
    "redis.dial_latency_milliseconds", MeasureKind.DISTRIBUTION, MILLISECONDS,
    "The number of milliseconds spent dialling to the Redis server",
)
DIAL_ERRORS = Measurement(
    "redis.dial_errors", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of failed dials",
)
CONNECTIONS_TAKEN = Measurement(
    "redis.connections_taken", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of connections taken from the pool",
)
CONNECTIONS_RETURNED = Measurement(
    "redis.connections_returned", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of connections returned to the pool",
)
CONNECTIONS_REUSED = Measurement(
    "redis.connections_reused", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of times an already open connection was reused",
)
CONNECTIONS_OPENED = Measurement(
    "redis.connections_opened", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of opened connections",
)
CONNECTIONS_CLOSED = Measurement(
    "redis.connections_closed", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of closed connections",
)
CONNECTIONS_CLOSED_ERRORS = Measurement(
    "redis.connections_closed_errors", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of connections whose close failed",
)
ERRORS = Measurement(
    "redis.errors", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of errors encountered",
)
ROUNDTRIP_LATENCY = Measurement(
    "redis.roundtrip_latency", MeasureKind.DISTRIBUTION, MILLISECONDS,
    "The time in milliseconds between sending the first byte to the server "
    "until the last byte of response",
)
READS = Measurement(
    "redis.reads", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of read invocations",
)
WRITES = Measurement(
    "redis.writes", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of write invocations",
)
READ_ERRORS = Measurement(
    "redis.read_errors", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of failed read invocations",
)
WRITE_ERRORS = Measurement(
    "redis.write_errors", MeasureKind.COUNTER, DIMENSIONLESS,
    "The number of failed write invocations",
)

ALL_MEASUREMENTS: tuple[Measurement, ...] = (
    BYTES_READ,
    BYTES_WRITTEN,
    DIALS,
    DIAL_LATENCY_MILLISECONDS,
    DIAL_ERRORS,
    CONNECTIONS_TAKEN,
    CONNECTIONS_RETURNED,
    CONNECTIONS_REUSED,
    CONNECTIONS_OPENED,
    CONNECTIONS_CLOSED,
    CONNECTIONS_CLOSED_ERRORS,
    ERRORS,
    ROUNDTRIP_LATENCY,
    READS,
    WRITES,
    READ_ERRORS,
    WRITE_ERRORS,
)


# =============================================================================
# Views
# =============================================================================


def _count(name: str, measurement: Measurement, description: str, *tag_keys: str) -> View:
    return View(name, measurement, AggregationType.COUNT, tag_keys, description)


ALL_VIEWS: tuple[View, ...] = (
    _count("redis.client.dials", DIALS, "The number of dials", TagKeys.OUTCOME),
    View(
        "redis.client.dial_latency",
        DIAL_LATENCY_MILLISECONDS,
        AggregationType.DISTRIBUTION,
        description="The number of milliseconds spent dialling",
        boundaries=DEFAULT_MILLISECONDS_BOUNDARIES,
    ),
    _count("redis.client.dial_errors", DIAL_ERRORS, "The number of failed dials"),
    _count("redis.client.connections_taken", CONNECTIONS_TAKEN, "The number of connections taken"),
    _count(
        "redis.client.connections_returned",
        CONNECTIONS_RETURNED,
        "The number of connections returned",
    ),
    _count("redis.client.connections_opened", CONNECTIONS_OPENED, "The number of opened connections"),
    _count("redis.client.connections_reused", CONNECTIONS_REUSED, "The number of reused connections"),
    _count("redis.client.connections_closed", CONNECTIONS_CLOSED, "The number of closed connections"),
    _count(
        "redis.client.connections_closed_errors",
        CONNECTIONS_CLOSED_ERRORS,
        "The number of failed connection closes",
    ),
    _count(
        "redis.client.bytes_read_count",
        BYTES_READ,
        "The number of replies read back from the server",
    ),
    View(
        "redis.client.bytes_read_distribution",
        BYTES_READ,
        AggregationType.DISTRIBUTION,
        description="The number of bytes read back from the server",
        boundaries=DEFAULT_BYTES_BOUNDARIES,
    ),
    View(
        "redis.client.bytes_written_cumulative",
        BYTES_WRITTEN,
        AggregationType.SUM,
        description="The number of bytes written to the server",
    ),
    View(
        "redis.client.bytes_written_distribution",
        BYTES_WRITTEN,
        AggregationType.DISTRIBUTION,
        description="The number of bytes written to the server",
        boundaries=DEFAULT_BYTES_BOUNDARIES,
    ),
    View(
        "redis.client.roundtrip_latency",
        ROUNDTRIP_LATENCY,
        AggregationType.DISTRIBUTION,
        (TagKeys.COMMAND,),
        "The distribution of milliseconds",
        DEFAULT_MILLISECONDS_BOUNDARIES,
    ),
    _count("redis.client.writes", WRITES, "The number of writes"),
    _count("redis.client.reads", READS, "The number of reads"),
    _count("redis.client.write_errors", WRITE_ERRORS, "The number of failed writes"),
    _count("redis.client.read_errors", READ_ERRORS, "The number of failed reads"),
    _count(
        "redis.client.errors",
        ERRORS,
        "The number of errors discerned by the various tags",
        TagKeys.COMMAND,
        TagKeys.PHASE,
        TagKeys.ENUM,
    ),
)
