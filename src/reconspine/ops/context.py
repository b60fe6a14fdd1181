"""
Request-scoped context for operations.

Every operation function receives an :class:`OperationContext` as its first
argument.  The context carries the database connection, the connector
registry, settings, caller identity, the dry-run flag and arbitrary metadata.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

from reconspine.core.protocols import Connection
from reconspine.core.settings import ReconSettings, get_settings
from reconspine.execution.connectors import ConnectorRegistry


@dataclass
class OperationContext:
    """Context passed to every operation function.

    Attributes:
        conn: Database connection satisfying :class:`reconspine.core.protocols.Connection`.
        connectors: Connector registry; only needed by operations that reach a
            connector (``trigger_run``).  Defaults to an empty registry.
        settings: Engine settings; defaults to :func:`get_settings`.
        request_id: Unique ID for this operation invocation (auto-generated).
        caller: Origin of the request, ``"cli"``, ``"sdk"`` or ``"scheduler"``.
        user: Optional operator identifier, recorded in log events.
        dry_run: When ``True``, operations return a preview without side effects.
        metadata: Arbitrary key/value pairs forwarded to logging.
    """

    conn: Connection
    connectors: ConnectorRegistry = field(default_factory=ConnectorRegistry)
    settings: ReconSettings = field(default_factory=get_settings)
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    caller: str = "sdk"
    user: str | None = None
    dry_run: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
