"""
Typed response objects for operations.

Each dataclass represents an *output* that is more than a single domain
model.  List operations return the domain models themselves; these shapes
cover detail views, reports and statistics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from reconspine.core.models import (
    Attempt,
    ConflictRecord,
    Discrepancy,
    Operation,
    OperationEvent,
    ReconciliationRun,
    RemediationActionRecord,
)

# ------------------------------------------------------------------ #
# Discrepancy responses
# ------------------------------------------------------------------ #


@dataclass(slots=True)
class DiscrepancyDetail:
    """A discrepancy with its active operation and action history."""

    discrepancy: Discrepancy
    active_operation: Operation | None = None
    actions: list[RemediationActionRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = self.discrepancy.to_dict()
        d["active_operation"] = self.active_operation.to_dict() if self.active_operation else None
        d["actions"] = [a.to_dict() for a in self.actions]
        return d


@dataclass(frozen=True, slots=True)
class TrendPoint:
    """Discrepancies of one type detected on one day."""

    day: str
    discrepancy_type: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"day": self.day, "discrepancy_type": self.discrepancy_type, "count": self.count}


# ------------------------------------------------------------------ #
# Operation responses
# ------------------------------------------------------------------ #


@dataclass(slots=True)
class OperationDetail:
    """An operation with its attempts, log and conflict adjudication."""

    operation: Operation
    attempts: list[Attempt] = field(default_factory=list)
    events: list[OperationEvent] = field(default_factory=list)
    conflict: ConflictRecord | None = None

    def to_dict(self) -> dict[str, Any]:
        d = self.operation.to_dict()
        d["attempts"] = [a.to_dict() for a in self.attempts]
        d["events"] = [e.to_dict() for e in self.events]
        d["conflict"] = self.conflict.to_dict() if self.conflict else None
        return d


@dataclass(slots=True)
class QueueStats:
    """Operation counts by status for one connector."""

    connector_id: str
    by_status: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_status.values())

    def to_dict(self) -> dict[str, Any]:
        return {"connector_id": self.connector_id, "by_status": dict(self.by_status), "total": self.total}


@dataclass(slots=True)
class OperationStats:
    """Queue statistics per connector plus overall totals by status."""

    connectors: list[QueueStats] = field(default_factory=list)
    totals: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "connectors": [c.to_dict() for c in self.connectors],
            "totals": dict(self.totals),
        }


# ------------------------------------------------------------------ #
# Run responses
# ------------------------------------------------------------------ #


@dataclass(slots=True)
class RunReportView:
    """A run with the current resolution state of what it detected."""

    run: ReconciliationRun
    by_type: dict[str, int] = field(default_factory=dict)
    by_resolution: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.by_type.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "run": self.run.to_dict(),
            "by_type": dict(self.by_type),
            "by_resolution": dict(self.by_resolution),
            "total": self.total,
        }

