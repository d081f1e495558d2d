"""Observability configuration for traced-redis.

This module provides an immutable configuration class for the metric
registry and tracing facility, with builder methods and presets.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from traced_redis.config import DEFAULT_ENV_PREFIX, EnvReader
from traced_redis.observability.exceptions import ObservabilityConfigurationError
from traced_redis.observability.types import ExporterType

__all__ = [
    "ObservabilityConfig",
    "DEFAULT_OBSERVABILITY_CONFIG",
    "TESTING_OBSERVABILITY_CONFIG",
    "DISABLED_OBSERVABILITY_CONFIG",
]

DEFAULT_INSTRUMENTATION_NAME = "traced_redis"


@dataclass(frozen=True)
class ObservabilityConfig:
    """Configuration for metrics and tracing.

    Example:
        config = (
            ObservabilityConfig()
            .with_service_name("checkout")
            .with_exporters(metrics=ExporterType.CONSOLE)
        )
    """

    enabled: bool = True
    """Master switch; when False nothing is recorded or traced."""

    metrics_enabled: bool = True
    """Whether measurements are recorded."""

    tracing_enabled: bool = True
    """Whether spans are produced."""

    metrics_exporter: ExporterType = ExporterType.NONE
    """Built-in reader attached to the meter provider."""

    traces_exporter: ExporterType = ExporterType.NONE
    """Built-in exporter attached to the tracer provider."""

    service_name: str = "traced-redis"
    """Value of the ``service.name`` resource attribute."""

    service_version: str = "0.1.0"
    """Value of the ``service.version`` resource attribute."""

    instrumentation_name: str = DEFAULT_INSTRUMENTATION_NAME
    """Instrumentation scope name of the meter and tracer."""

    export_interval_seconds: float = 60.0
    """Export interval of the console metric reader."""

    @property
    def metrics_active(self) -> bool:
        """Check whether measurements are recorded."""
        return self.enabled and self.metrics_enabled

    @property
    def tracing_active(self) -> bool:
        """Check whether spans are produced."""
        return self.enabled and self.tracing_enabled

    def resource_attributes(self) -> dict[str, Any]:
        """Convert to OpenTelemetry resource attributes."""
        return {
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

    def with_enabled(self, enabled: bool) -> ObservabilityConfig:
        """Create a new config with updated enabled status."""
        return self._replace(enabled=enabled)

    def with_metrics_enabled(self, enabled: bool) -> ObservabilityConfig:
        """Create a new config with updated metrics enabled status."""
        return self._replace(metrics_enabled=enabled)

    def with_tracing_enabled(self, enabled: bool) -> ObservabilityConfig:
        """Create a new config with updated tracing enabled status."""
        return self._replace(tracing_enabled=enabled)

    def with_exporters(
        self,
        metrics: ExporterType | None = None,
        traces: ExporterType | None = None,
    ) -> ObservabilityConfig:
        """Create a new config with updated exporter types."""
        return self._replace(
            metrics_exporter=metrics if metrics is not None else self.metrics_exporter,
            traces_exporter=traces if traces is not None else self.traces_exporter,
        )

    def with_service_name(self, name: str) -> ObservabilityConfig:
        """Create a new config with updated service name."""
        return self._replace(service_name=name)

    def with_service_version(self, version: str) -> ObservabilityConfig:
        """Create a new config with updated service version."""
        return self._replace(service_version=version)

    def _replace(self, **changes: Any) -> ObservabilityConfig:
        values = asdict(self)
        values.update(changes)
        return ObservabilityConfig(**values)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary with plain values."""
        data = asdict(self)
        data["metrics_exporter"] = self.metrics_exporter.value
        data["traces_exporter"] = self.traces_exporter.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ObservabilityConfig:
        """Create a config from a dictionary.

        Args:
            data: Dictionary with configuration values. Unknown keys are
                ignored; exporter values are ExporterType names or values.

        Returns:
            ObservabilityConfig instance.

        Raises:
            ObservabilityConfigurationError: If an exporter value is unknown.
        """
        known = {name for name in cls.__dataclass_fields__}
        values = {key: value for key, value in data.items() if key in known}
        for key in ("metrics_exporter", "traces_exporter"):
            if key in values:
                values[key] = _parse_exporter(key, values[key])
        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = DEFAULT_ENV_PREFIX) -> ObservabilityConfig:
        """Create a config from environment variables.

        Reads ``{prefix}_OBSERVABILITY_ENABLED``, ``{prefix}_METRICS_ENABLED``,
        ``{prefix}_TRACING_ENABLED``, ``{prefix}_METRICS_EXPORTER``,
        ``{prefix}_TRACES_EXPORTER`` and ``{prefix}_SERVICE_NAME``.

        Args:
            prefix: Environment variable prefix.

        Returns:
            ObservabilityConfig instance.
        """
        env = EnvReader(prefix)
        default = cls()
        data: dict[str, Any] = {
            "enabled": env.get_bool("OBSERVABILITY_ENABLED", default.enabled),
            "metrics_enabled": env.get_bool("METRICS_ENABLED", default.metrics_enabled),
            "tracing_enabled": env.get_bool("TRACING_ENABLED", default.tracing_enabled),
            "metrics_exporter": env.get("METRICS_EXPORTER", default.metrics_exporter.value),
            "traces_exporter": env.get("TRACES_EXPORTER", default.traces_exporter.value),
            "service_name": env.get("SERVICE_NAME", default.service_name),
        }
        return cls.from_dict(data)


def _parse_exporter(key: str, value: Any) -> ExporterType:
    if isinstance(value, ExporterType):
        return value
    text = str(value).strip().lower()
    for exporter in ExporterType:
        if text in (exporter.value, exporter.name.lower()):
            return exporter
    raise ObservabilityConfigurationError(
        f"Unknown exporter type: {value!r}",
        config_key=key,
        config_value=value,
        details={"allowed": [e.value for e in ExporterType]},
    )


# Preset configurations
DEFAULT_OBSERVABILITY_CONFIG = ObservabilityConfig()
"""Default configuration: instruments are live, the caller attaches readers."""

TESTING_OBSERVABILITY_CONFIG = ObservabilityConfig(
    metrics_exporter=ExporterType.MEMORY,
    traces_exporter=ExporterType.MEMORY,
    service_name="traced-redis-tests",
)
"""Testing configuration with in-memory metric reader and span exporter."""

DISABLED_OBSERVABILITY_CONFIG = ObservabilityConfig(
    enabled=False,
    metrics_enabled=False,
    tracing_enabled=False,
)
"""Disabled configuration; every instrument and tracer is a no-op."""
