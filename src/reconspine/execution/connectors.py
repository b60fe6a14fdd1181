"""Connector Registry — injectable connector_id → adapter lookup.

Every target system (LDAP, an HR database, a SaaS app) is reached through a
:class:`~reconspine.core.protocols.Connector` adapter registered under its
``connector_id``. The source of truth is also a connector: the directory
adapter that ``target_to_source`` remediations write back into and that
reconciliation runs scan on the other side.

ARCHITECTURE
────────────
::

    ConnectorRegistry
      ├── .register(connector_id, target, source=None)
      ├── .set_default_source(source)     ─ shared directory adapter
      ├── .target(connector_id)           ─ the target adapter
      ├── .source(connector_id)           ─ per-connector or default source
      ├── .endpoint(connector_id, dir)    ─ adapter a remediation writes to
      └── .list_connectors()

    load_registry("pkg.module:factory")  ─ build from settings.connector_factory

Tags:
    reconspine, execution, registry, connectors

Doc-Types:
    api-reference
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass

from reconspine.core.enums import Direction
from reconspine.core.errors import ConfigError
from reconspine.core.protocols import Connector


@dataclass(frozen=True, slots=True)
class _Entry:
    target: Connector
    source: Connector | None
    description: str | None


class ConnectorRegistry:
    """Injectable connector registry.

    Example:
        >>> registry = ConnectorRegistry()
        >>> registry.set_default_source(directory)
        >>> registry.register("ldap-main", LdapConnector(...))
        >>> registry.endpoint("ldap-main", Direction.SOURCE_TO_TARGET)
        <LdapConnector ...>
    """

    def __init__(self, default_source: Connector | None = None) -> None:
        self._entries: dict[str, _Entry] = {}
        self._default_source = default_source

    def register(
        self,
        connector_id: str,
        target: Connector,
        *,
        source: Connector | None = None,
        description: str | None = None,
    ) -> None:
        """Register the adapters for *connector_id* (replaces an existing entry)."""
        if not connector_id:
            raise ConfigError("connector_id must be non-empty")
        self._entries[connector_id] = _Entry(target=target, source=source, description=description)

    def set_default_source(self, source: Connector) -> None:
        self._default_source = source

    def has(self, connector_id: str) -> bool:
        return connector_id in self._entries

    def _entry(self, connector_id: str) -> _Entry:
        try:
            return self._entries[connector_id]
        except KeyError:
            available = ", ".join(sorted(self._entries)) or "none"
            raise ConfigError(
                f"No connector registered for '{connector_id}'. Available: {available}"
            ) from None

    def target(self, connector_id: str) -> Connector:
        return self._entry(connector_id).target

    def source(self, connector_id: str) -> Connector:
        entry = self._entry(connector_id)
        source = entry.source or self._default_source
        if source is None:
            raise ConfigError(f"No source connector configured for '{connector_id}'")
        return source

    def endpoint(self, connector_id: str, direction: Direction) -> Connector:
        """The adapter a remediation in *direction* writes to."""
        if direction is Direction.TARGET_TO_SOURCE:
            return self.source(connector_id)
        return self.target(connector_id)

    def list_connectors(self) -> list[dict[str, str | None]]:
        return [
            {"connector_id": cid, "description": entry.description}
            for cid, entry in sorted(self._entries.items())
        ]

    def unregister(self, connector_id: str) -> bool:
        return self._entries.pop(connector_id, None) is not None


def load_registry(factory_path: str) -> ConnectorRegistry:
    """Import ``"module:callable"`` and call it to build a registry.

    Raises:
        ConfigError: If the path is malformed, the import fails, or the
            callable does not return a :class:`ConnectorRegistry`.
    """
    module_name, sep, attr = factory_path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"connector factory must look like 'module:callable', got '{factory_path}'")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(f"Cannot load connector factory '{factory_path}'", cause=exc) from exc

    registry = factory()
    if not isinstance(registry, ConnectorRegistry):
        raise ConfigError(
            f"Connector factory '{factory_path}' returned {type(registry).__name__}, "
            f"expected ConnectorRegistry"
        )
    return registry


__all__ = ["ConnectorRegistry", "load_registry"]
