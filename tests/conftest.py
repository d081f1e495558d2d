"""Pytest fixtures for traced-redis tests."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator

import pytest

from fake_server import FakeRedisServer
from traced_redis.connection import Connection
from traced_redis.exceptions import RedisClientError
from traced_redis.observability.context import ObservabilityContext, reset_default_context
from traced_redis.observability.testing import create_test_context


@pytest.fixture
def observability() -> Iterator[ObservabilityContext]:
    """Create an initialized in-memory observability context."""
    context = create_test_context()
    yield context
    context.shutdown()


@pytest.fixture
def fake_server() -> Iterator[FakeRedisServer]:
    """Start a loopback server with scripted replies."""
    server = FakeRedisServer().start()
    yield server
    server.stop()


@pytest.fixture
def connection(
    fake_server: FakeRedisServer,
    observability: ObservabilityContext,
) -> Iterator[Connection]:
    """Create an unopened connection to the fake server."""
    conn = Connection(
        fake_server.host,
        fake_server.port,
        connect_timeout=1.0,
        read_timeout=1.0,
        observability=observability,
    )
    yield conn
    with contextlib.suppress(RedisClientError):
        conn.disconnect()


@pytest.fixture
def closed_port() -> int:
    """Return a loopback port nobody listens on."""
    server = FakeRedisServer()
    port = server.port
    server.stop()
    return port


@pytest.fixture(autouse=True)
def _isolate_default_context() -> Iterator[None]:
    yield
    reset_default_context()
