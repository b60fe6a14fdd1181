"""Per-connector concurrency limits.

WHY
───
Target systems throttle or fall over when hit by too many parallel writes.
Each connector gets a bounded number of in-flight operations across the
whole worker pool; the rest stay PENDING in the due index until a slot
frees up.

ARCHITECTURE
────────────
::

    ConnectorLimiter(settings)
      ├── .try_acquire(connector_id)  ─ non-blocking, False when saturated
      ├── .release(connector_id)
      ├── .in_flight(connector_id)
      └── .slot(connector_id)         ─ context manager (blocking)

Limits come from ``settings.connector_concurrency`` with
``settings.default_connector_concurrency`` as the fallback.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager

from reconspine.core.settings import ReconSettings


class ConnectorLimiter:
    """Bounded semaphores keyed by connector, created lazily."""

    def __init__(self, settings: ReconSettings):
        self._settings = settings
        self._semaphores: dict[str, threading.BoundedSemaphore] = {}
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def limit_for(self, connector_id: str) -> int:
        return self._settings.concurrency_for(connector_id)

    def _semaphore(self, connector_id: str) -> threading.BoundedSemaphore:
        with self._lock:
            sem = self._semaphores.get(connector_id)
            if sem is None:
                sem = threading.BoundedSemaphore(self.limit_for(connector_id))
                self._semaphores[connector_id] = sem
            return sem

    def try_acquire(self, connector_id: str) -> bool:
        """Take a slot without blocking.  Returns False when the connector is saturated."""
        if not self._semaphore(connector_id).acquire(blocking=False):
            return False
        with self._lock:
            self._counts[connector_id] = self._counts.get(connector_id, 0) + 1
        return True

    def release(self, connector_id: str) -> None:
        with self._lock:
            self._counts[connector_id] = max(self._counts.get(connector_id, 0) - 1, 0)
        self._semaphore(connector_id).release()

    def in_flight(self, connector_id: str) -> int:
        with self._lock:
            return self._counts.get(connector_id, 0)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {cid: n for cid, n in self._counts.items() if n}

    @contextmanager
    def slot(self, connector_id: str) -> Iterator[None]:
        """Block until a slot is free, hold it for the ``with`` body."""
        self._semaphore(connector_id).acquire()
        with self._lock:
            self._counts[connector_id] = self._counts.get(connector_id, 0) + 1
        try:
            yield
        finally:
            self.release(connector_id)


__all__ = ["ConnectorLimiter"]
