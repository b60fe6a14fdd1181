"""
Shared pytest fixtures for recon-spine tests.

Fixtures:
- ``conn``: in-memory SQLite connection with the engine schema
- ``clock``: frozen clock (see ``tests._support.fakes.FrozenClock``)
- ``source`` / ``target``: fake connectors wired into ``registry``
- ``engine``, ``ctx``, ``dry_ctx``: engine and operation contexts on top
"""

from __future__ import annotations

import pytest

from reconspine.core.connection import SqliteConnection
from reconspine.core.schema import create_tables
from reconspine.core.settings import ReconSettings
from reconspine.execution.connectors import ConnectorRegistry
from reconspine.execution.engine import OperationEngine
from reconspine.ops.context import OperationContext
from tests._support.fakes import CONNECTOR, FakeConnector, FrozenClock


@pytest.fixture()
def conn():
    """In-memory SQLite connection with all engine tables."""
    connection = SqliteConnection(":memory:")
    create_tables(connection)
    yield connection
    connection.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def settings() -> ReconSettings:
    return ReconSettings(
        max_retries=3,
        backoff_base_seconds=10.0,
        backoff_max_seconds=100.0,
        connector_timeout_seconds=2.0,
        default_connector_concurrency=2,
    )


@pytest.fixture()
def source() -> FakeConnector:
    """The source-of-truth directory."""
    return FakeConnector()


@pytest.fixture()
def target() -> FakeConnector:
    return FakeConnector()


@pytest.fixture()
def registry(source: FakeConnector, target: FakeConnector) -> ConnectorRegistry:
    reg = ConnectorRegistry(default_source=source)
    reg.register(CONNECTOR, target, description="test target")
    return reg


@pytest.fixture()
def engine(conn, registry, settings, clock) -> OperationEngine:
    return OperationEngine(conn, registry, settings=settings, clock=clock)


@pytest.fixture()
def ctx(conn, registry, settings) -> OperationContext:
    return OperationContext(conn=conn, connectors=registry, settings=settings, caller="test")


@pytest.fixture()
def dry_ctx(conn, registry, settings) -> OperationContext:
    return OperationContext(
        conn=conn, connectors=registry, settings=settings, caller="test", dry_run=True
    )
