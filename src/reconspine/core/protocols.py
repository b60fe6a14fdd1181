"""
Canonical protocol definitions for the reconciliation engine.

Manifesto:
    Protocols define contracts without inheritance. The engine depends on
    the *shape* of a database connection and of a connector, never on a
    concrete driver or on how a connector talks LDAP/SQL/REST.

Architecture:
    ::

        protocols.py
        ├── Connection  — sync DB protocol (sqlite3 adapter, psycopg, ...)
        └── Connector   — one side of a reconciliation pair
                          apply(request)     → Ok(ApplyReceipt) | Err(ConnectorError)
                          scan(mode, since)  → iterable of ObservedEntity
                          observe(ref)       → ObservedEntity | None
                          claimants(ref, key) → every entity claiming one identity

    The source of truth directory and every target system implement the
    same :class:`Connector` protocol; the operation's direction decides
    which one is written to.

Guardrails:
    ❌ DON'T: Raise from ``apply`` for expected failures
    ✅ DO: Return ``Err(TransientConnectorError(...))`` or
       ``Err(PermanentConnectorError(...))`` so the state machine can match

    ❌ DON'T: Apply the same idempotency key twice on the remote side
    ✅ DO: Treat ``ApplyRequest.idempotency_key`` as a dedup token

Tags:
    protocol, connection, connector, reconspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from reconspine.core.enums import RunMode
    from reconspine.core.models import ApplyReceipt, ApplyRequest, ObservedEntity
    from reconspine.core.result import Result


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface for database operations."""

    def execute(self, sql: str, params: tuple = ()) -> Any: ...

    def executemany(self, sql: str, params: list[tuple]) -> Any: ...

    def fetchone(self) -> Any: ...

    def fetchall(self) -> list[Any]: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@runtime_checkable
class Connector(Protocol):
    """One side of a reconciliation pair (source directory or target system).

    Both ``apply`` and ``scan`` must be safe to repeat: ``apply`` is issued
    with an idempotency key and may be retried after an ambiguous failure.
    """

    def apply(self, request: ApplyRequest) -> Result[ApplyReceipt]:
        """Apply one corrective action and report the outcome as a value."""
        ...

    def scan(self, mode: RunMode, since: datetime | None = None) -> Iterable[ObservedEntity]:
        """Yield observed entities; in delta mode only those changed after *since*."""
        ...

    def observe(self, ref: str) -> ObservedEntity | None:
        """Return the current state of one entity, or ``None`` if it is absent.

        *ref* is the entity's own ref or its correlation key; an entity that
        does not exist yet (a pending create) is addressed by the latter.
        """
        ...

    def claimants(self, ref: str, correlation_key: str | None = None) -> Iterable[ObservedEntity]:
        """Yield every entity claiming the identity *ref*.

        An entity claims it when its ``linked_ref`` is *ref*, or when it is
        unlinked and carries *correlation_key*. Delta runs rely on getting
        the whole group so collisions are seen as in a full scan.
        """
        ...


__all__ = ["Connection", "Connector"]
