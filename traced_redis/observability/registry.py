"""Metric registry backed by the OpenTelemetry metrics SDK.

Measurements and views are registered first and turned into an SDK
MeterProvider, its views and one instrument per measurement when the registry
is initialized. Recording never raises: failures are logged and dropped so the
operation being measured keeps its own outcome.

Example:
    registry = MetricRegistry()
    registry.register_measurement(DIALS)
    registry.register_view(View("redis.client.dials", DIALS, AggregationType.COUNT))
    registry.initialize(metric_readers=[InMemoryMetricReader()])
    registry.record(DIALS, 1, {"outcome": "success"})
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from opentelemetry.metrics import Meter, NoOpMeter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import MetricReader
from opentelemetry.sdk.metrics.view import (
    Aggregation,
    DropAggregation,
    ExplicitBucketHistogramAggregation,
    SumAggregation,
)
from opentelemetry.sdk.metrics.view import View as SDKView
from opentelemetry.sdk.resources import Resource

from traced_redis.observability.config import ObservabilityConfig
from traced_redis.observability.exceptions import RegistrationError
from traced_redis.observability.types import (
    AggregationType,
    MeasureKind,
    Measurement,
    TagSet,
    View,
)

__all__ = [
    "MetricRegistry",
    "to_sdk_view",
]

logger = logging.getLogger(__name__)


def _aggregation_for(view: View) -> Aggregation:
    """Map a view's aggregation onto an SDK aggregation.

    Counters are summed for both COUNT and SUM since every counter event adds
    one. Distribution measurements keep individual samples, so COUNT and SUM
    use a single-bucket histogram whose point carries both count and sum.
    """
    if view.aggregation is AggregationType.DISTRIBUTION:
        return ExplicitBucketHistogramAggregation(boundaries=view.boundaries)
    if view.measurement.kind is MeasureKind.COUNTER:
        return SumAggregation()
    return ExplicitBucketHistogramAggregation(boundaries=())


def to_sdk_view(view: View) -> SDKView:
    """Convert a view description into an SDK view.

    Args:
        view: View description.

    Returns:
        SDK view selecting the view's measurement by instrument name and
        keeping only the view's tag keys.
    """
    return SDKView(
        instrument_name=view.measurement.name,
        name=view.name,
        description=view.description or view.measurement.description,
        attribute_keys=set(view.tag_keys),
        aggregation=_aggregation_for(view),
    )


def _create_instrument(meter: Meter, measurement: Measurement) -> Any:
    if measurement.kind is MeasureKind.COUNTER:
        return meter.create_counter(
            measurement.name,
            unit=measurement.unit,
            description=measurement.description,
        )
    return meter.create_histogram(
        measurement.name,
        unit=measurement.unit,
        description=measurement.description,
    )


class MetricRegistry:
    """Registry of measurements and views with tagged recording.

    Registration is only possible before ``initialize``. Duplicate or late
    registrations are logged and ignored.
    """

    def __init__(self, config: ObservabilityConfig | None = None) -> None:
        """Initialize MetricRegistry.

        Args:
            config: Observability configuration.
        """
        self._config = config or ObservabilityConfig()
        self._lock = threading.Lock()
        self._measurements: dict[str, Measurement] = {}
        self._views: dict[str, View] = {}
        self._instruments: dict[str, Any] = {}
        self._provider: MeterProvider | None = None
        self._meter: Meter | None = None
        self._initialized = False
        self._is_shutdown = False

    @property
    def is_initialized(self) -> bool:
        """Check if instruments have been created."""
        return self._initialized

    @property
    def meter_provider(self) -> MeterProvider | None:
        """Get the SDK MeterProvider, None before initialization or when disabled."""
        return self._provider

    @property
    def measurements(self) -> tuple[Measurement, ...]:
        """Get registered measurements in registration order."""
        return tuple(self._measurements.values())

    @property
    def views(self) -> tuple[View, ...]:
        """Get registered views in registration order."""
        return tuple(self._views.values())

    def get_measurement(self, name: str) -> Measurement | None:
        """Look up a registered measurement by name."""
        return self._measurements.get(name)

    def get_view(self, name: str) -> View | None:
        """Look up a registered view by name."""
        return self._views.get(name)

    def register_measurement(self, measurement: Measurement) -> bool:
        """Register a measurement.

        Args:
            measurement: Measurement to register.

        Returns:
            True if registered, False if the name is taken or the registry is
            already initialized.
        """
        with self._lock:
            if self._initialized:
                logger.warning(
                    f"Measurement {measurement.name!r} registered after initialization; ignored"
                )
                return False
            if measurement.name in self._measurements:
                logger.debug(f"Measurement {measurement.name!r} already registered")
                return False
            self._measurements[measurement.name] = measurement
            return True

    def register_view(self, view: View) -> bool:
        """Register a view over a registered measurement.

        Args:
            view: View to register.

        Returns:
            True if registered, False if the name is taken, the measurement is
            unknown or the registry is already initialized.
        """
        with self._lock:
            if self._initialized:
                logger.warning(f"View {view.name!r} registered after initialization; ignored")
                return False
            if view.name in self._views:
                logger.debug(f"View {view.name!r} already registered")
                return False
            if self._measurements.get(view.measurement.name) != view.measurement:
                logger.warning(
                    f"View {view.name!r} refers to unregistered measurement "
                    f"{view.measurement.name!r}; ignored"
                )
                return False
            self._views[view.name] = view
            return True

    def register_all(
        self,
        measurements: Iterable[Measurement],
        views: Iterable[View] = (),
    ) -> int:
        """Register many measurements, then many views.

        Returns:
            Number of accepted registrations.
        """
        accepted = sum(1 for m in measurements if self.register_measurement(m))
        accepted += sum(1 for v in views if self.register_view(v))
        return accepted

    def require_registered(self, *names: str) -> None:
        """Fail if any measurement or view name is not registered.

        Args:
            *names: Measurement or view names.

        Raises:
            RegistrationError: If a name is unknown.
        """
        for name in names:
            if name not in self._measurements and name not in self._views:
                raise RegistrationError(f"{name!r} is not registered", name=name)

    def initialize(
        self,
        metric_readers: Sequence[MetricReader] = (),
        resource: Resource | None = None,
    ) -> bool:
        """Create the meter provider and one instrument per measurement.

        Measurements without any view are dropped from export. When metrics
        are disabled, instruments come from a no-op meter.

        Args:
            metric_readers: SDK readers to attach to the provider.
            resource: Resource describing the producing service.

        Returns:
            True if this call initialized the registry, False if it already was.
        """
        with self._lock:
            if self._initialized:
                return False

            if self._config.metrics_active:
                sdk_views = [to_sdk_view(v) for v in self._views.values()]
                covered = {v.measurement.name for v in self._views.values()}
                sdk_views.extend(
                    SDKView(instrument_name=name, aggregation=DropAggregation())
                    for name in self._measurements
                    if name not in covered
                )
                self._provider = MeterProvider(
                    metric_readers=list(metric_readers),
                    resource=resource or Resource.create(self._config.resource_attributes()),
                    views=sdk_views,
                )
                meter = self._provider.get_meter(self._config.instrumentation_name)
            else:
                meter = NoOpMeter(self._config.instrumentation_name)
            self._meter = meter

            for measurement in self._measurements.values():
                self._instruments[measurement.name] = _create_instrument(meter, measurement)

            self._initialized = True
            logger.debug(
                f"Metric registry initialized with {len(self._measurements)} measurements "
                f"and {len(self._views)} views"
            )
            return True

    def record(
        self,
        measurement: Measurement,
        value: float = 1,
        tags: TagSet | None = None,
    ) -> None:
        """Record one event of a measurement.

        Tags apply to this event only. Unknown measurements and SDK failures
        are logged and dropped.

        Args:
            measurement: Registered measurement.
            value: Event value; 1 for plain counts.
            tags: Tags for this event.
        """
        instrument = self._instruments.get(measurement.name)
        if instrument is None:
            logger.debug(f"Dropping event for unknown measurement {measurement.name!r}")
            return
        attributes: Mapping[str, str] = dict(tags) if tags else {}
        try:
            if measurement.kind is MeasureKind.COUNTER:
                instrument.add(value, attributes=attributes)
            else:
                instrument.record(value, attributes=attributes)
        except Exception as e:
            logger.warning(f"Failed to record {measurement.name!r}: {e}")

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Force flush all readers.

        Args:
            timeout_millis: Timeout for flush operation.

        Returns:
            True if successful.
        """
        if self._provider is None:
            return True
        try:
            return self._provider.force_flush(timeout_millis)
        except Exception as e:
            logger.warning(f"Failed to force flush metrics: {e}")
            return False

    def shutdown(self, timeout_millis: int = 30000) -> bool:
        """Shutdown the meter provider.

        Args:
            timeout_millis: Timeout for shutdown operation.

        Returns:
            True if successful.
        """
        if self._is_shutdown:
            return True
        self._is_shutdown = True
        if self._provider is None:
            return True
        try:
            self._provider.shutdown(timeout_millis)
            return True
        except Exception as e:
            logger.warning(f"Failed to shutdown MeterProvider: {e}")
            return False
