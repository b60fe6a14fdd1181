"""Dead Letter Queue (DLQ) — inspect, retry and resolve exhausted operations.

WHY
───
Operations that exhaust their retry budget, or fail with a permanent
error, must not disappear silently. They park in ``dead_letter`` with
their full attempt history so operators can retry them (a fresh retry
series) or resolve them as handled out of band.

ARCHITECTURE
────────────
::

    DeadLetterManager(engine)
      ├── .list(connector_id)   ─ dead letters with their attempts embedded
      ├── .retry(op_id)         ─ DEAD_LETTER → PENDING (new retry series)
      ├── .resolve(op_id, notes)─ DEAD_LETTER → RESOLVED
      └── .stats()              ─ counts per connector

Example::

    dlq = DeadLetterManager(engine)
    entries, total = dlq.list(connector_id="ldap-main")
    dlq.retry(entries[0]["id"], note="target fixed")
"""

from __future__ import annotations

from typing import Any

from reconspine.core.enums import OperationStatus
from reconspine.core.errors import InvalidTransitionError
from reconspine.core.models import Operation
from reconspine.execution.engine import OperationEngine


class DeadLetterManager:
    """Operator view over dead-lettered operations."""

    def __init__(self, engine: OperationEngine):
        self._engine = engine

    def list(
        self,
        *,
        connector_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[dict[str, Any]], int]:
        """Dead letters, newest first, each with an ``attempts`` list."""
        ops, total = self._engine.operations.list_dead_letters(
            connector_id=connector_id, limit=limit, offset=offset
        )
        attempts = self._engine.attempts.list_for_operations([op.id for op in ops])
        entries = []
        for op in ops:
            entry = op.to_dict()
            entry["attempts"] = [a.to_dict() for a in attempts.get(op.id, [])]
            entries.append(entry)
        return entries, total

    def _require_dead_letter(self, operation_id: str, target: OperationStatus) -> Operation:
        op = self._engine.get(operation_id)
        if op.status is not OperationStatus.DEAD_LETTER:
            raise InvalidTransitionError(op.status.value, target.value, "Operation")
        return op

    def retry(self, operation_id: str, *, note: str | None = None) -> Operation:
        self._require_dead_letter(operation_id, OperationStatus.PENDING)
        return self._engine.retry(operation_id, note=note)

    def resolve(self, operation_id: str, *, notes: str | None = None) -> Operation:
        return self._engine.resolve(operation_id, notes=notes)

    def stats(self) -> dict[str, int]:
        """Dead-letter counts keyed by connector."""
        counts: dict[str, int] = {}
        for row in self._engine.operations.status_counts():
            if row["status"] == OperationStatus.DEAD_LETTER.value:
                counts[row["connector_id"]] = row["cnt"]
        return counts


__all__ = ["DeadLetterManager"]
