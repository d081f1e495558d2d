"""Tests for traced_redis.observability.config module."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

from traced_redis.observability.config import (
    DEFAULT_OBSERVABILITY_CONFIG,
    DISABLED_OBSERVABILITY_CONFIG,
    TESTING_OBSERVABILITY_CONFIG,
    ObservabilityConfig,
)
from traced_redis.observability.exceptions import ObservabilityConfigurationError
from traced_redis.observability.types import ExporterType


class TestObservabilityConfig:
    """Tests for ObservabilityConfig."""

    def test_defaults(self):
        """Test default values."""
        config = ObservabilityConfig()
        assert config.metrics_active is True
        assert config.tracing_active is True
        assert config.metrics_exporter is ExporterType.NONE
        assert config.resource_attributes() == {
            "service.name": "traced-redis",
            "service.version": "0.1.0",
        }

    def test_master_switch(self):
        """Test disabling turns off both signals."""
        config = ObservabilityConfig().with_enabled(False)
        assert config.metrics_active is False
        assert config.tracing_active is False

    def test_builders_return_copies(self):
        """Test builder methods leave the original untouched."""
        config = DEFAULT_OBSERVABILITY_CONFIG.with_exporters(metrics=ExporterType.CONSOLE)

        assert config.metrics_exporter is ExporterType.CONSOLE
        assert config.traces_exporter is ExporterType.NONE
        assert DEFAULT_OBSERVABILITY_CONFIG.metrics_exporter is ExporterType.NONE

    def test_round_trip_dict(self):
        """Test to_dict and from_dict agree."""
        data = TESTING_OBSERVABILITY_CONFIG.to_dict()
        assert data["metrics_exporter"] == "memory"
        assert ObservabilityConfig.from_dict(data) == TESTING_OBSERVABILITY_CONFIG

    def test_from_dict_ignores_unknown_keys(self):
        """Test unknown keys are dropped."""
        config = ObservabilityConfig.from_dict({"service_name": "api", "colour": "blue"})
        assert config.service_name == "api"

    def test_from_dict_unknown_exporter(self):
        """Test unknown exporter names are rejected."""
        with pytest.raises(ObservabilityConfigurationError) as exc_info:
            ObservabilityConfig.from_dict({"traces_exporter": "jaeger"})
        assert exc_info.value.config_key == "traces_exporter"

    def test_from_env(self):
        """Test environment variables are read with the prefix."""
        env = {
            "TRACED_REDIS_TRACING_ENABLED": "false",
            "TRACED_REDIS_METRICS_EXPORTER": "CONSOLE",
            "TRACED_REDIS_SERVICE_NAME": "checkout",
        }
        with patch.dict(os.environ, env):
            config = ObservabilityConfig.from_env()

        assert config.tracing_enabled is False
        assert config.metrics_exporter is ExporterType.CONSOLE
        assert config.service_name == "checkout"

    def test_disabled_preset(self):
        """Test the disabled preset turns everything off."""
        assert DISABLED_OBSERVABILITY_CONFIG.metrics_active is False
        assert DISABLED_OBSERVABILITY_CONFIG.tracing_active is False
