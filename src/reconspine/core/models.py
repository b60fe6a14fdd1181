"""Reconciliation domain models.

Defines the core data structures of the engine:

- ObservedEntity: one entity as seen by a scan or an observe() call
- ApplyRequest / ApplyReceipt: the connector call contract
- OperationDraft: an operation before it is persisted (also the dry-run preview)
- Operation: one corrective action driven by the state machine
- Attempt: one execution try of an Operation
- Discrepancy: one detected unit of drift
- ConflictRecord: adjudication of a concurrent change
- Schedule / ReconciliationRun: recurring and on-demand scans
- OperationEvent / RemediationActionRecord: audit logs

Models convert from repository rows (``from_row``) and to plain dicts for
API/CLI consumers (``to_dict``). JSON columns are decoded here so nothing
above the repository layer sees raw JSON text.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from reconspine.core.enums import (
    AttemptOutcome,
    ConflictOutcome,
    Direction,
    DiscrepancyType,
    Frequency,
    OperationStatus,
    OperationType,
    RemediationAction,
    ResolutionStatus,
    RunMode,
    RunStatus,
    RunTrigger,
)
from reconspine.core.errors import ErrorKind
from reconspine.core.timestamps import from_iso, to_iso


def canonical_json(value: Any) -> str:
    """Deterministic JSON encoding (sorted keys, compact separators)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def fingerprint(snapshot: dict[str, Any] | None) -> str:
    """32-char content hash of a snapshot; ``None`` hashes like ``null``."""
    return hashlib.sha256(canonical_json(snapshot).encode()).hexdigest()[:32]


def dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return canonical_json(value)


def load_json(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, (dict, list)):
        return value
    return json.loads(value)


def _opt(enum_cls, value):
    return enum_cls(value) if value is not None else None


# =============================================================================
# CONNECTOR CONTRACT
# =============================================================================


@dataclass(frozen=True, slots=True)
class ObservedEntity:
    """One entity as observed in the source directory or a target system.

    ``ref`` is the system-local identifier (identity id in the source,
    external uid on a target). ``correlation_key`` is what pairs an identity
    with an account (e.g. a normalized username). ``linked_ref`` is the
    counterpart this entity is explicitly linked to, if any.
    """

    ref: str
    correlation_key: str | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    linked_ref: str | None = None
    deleted: bool = False
    changed_at: datetime | None = None

    def snapshot(self) -> dict[str, Any]:
        """State captured for later conflict checks (``changed_at`` excluded)."""
        return {
            "ref": self.ref,
            "correlation_key": self.correlation_key,
            "attributes": dict(self.attributes),
            "linked_ref": self.linked_ref,
            "deleted": self.deleted,
        }

    @classmethod
    def from_snapshot(cls, data: dict[str, Any] | None) -> ObservedEntity | None:
        if not data:
            return None
        return cls(
            ref=data["ref"],
            correlation_key=data.get("correlation_key"),
            attributes=dict(data.get("attributes") or {}),
            linked_ref=data.get("linked_ref"),
            deleted=bool(data.get("deleted", False)),
        )


@dataclass(frozen=True, slots=True)
class ApplyRequest:
    """What a connector receives for one execution attempt."""

    operation_id: str
    connector_id: str
    operation_type: OperationType
    direction: Direction
    target_entity_ref: str
    payload: dict[str, Any]
    idempotency_key: str


@dataclass(frozen=True, slots=True)
class ApplyReceipt:
    """Successful connector outcome.

    ``awaiting_confirmation`` means the target accepted the request but will
    confirm asynchronously (e.g. a provisioning callback).
    """

    external_ref: str | None = None
    awaiting_confirmation: bool = False
    detail: str | None = None


# =============================================================================
# OPERATIONS
# =============================================================================


@dataclass(frozen=True, slots=True)
class OperationDraft:
    """An operation that has not been persisted yet.

    Produced by remediation planning; returned as-is for dry runs and handed
    to ``submit()`` otherwise.
    """

    connector_id: str
    operation_type: OperationType
    direction: Direction
    target_entity_ref: str
    payload: dict[str, Any]
    discrepancy_id: str | None = None
    action: RemediationAction | None = None
    baseline: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "connector_id": self.connector_id,
            "operation_type": self.operation_type.value,
            "direction": self.direction.value,
            "target_entity_ref": self.target_entity_ref,
            "payload": self.payload,
            "discrepancy_id": self.discrepancy_id,
            "action": self.action.value if self.action else None,
            "baseline": self.baseline,
        }


@dataclass
class Operation:
    """One corrective action.

    ``version`` is bumped by every status transition and is half of the
    compare-and-swap key. ``retry_series`` counts manual retries from the
    dead-letter queue and keeps idempotency keys unique across series.
    """

    id: str
    connector_id: str
    operation_type: OperationType
    direction: Direction
    target_entity_ref: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: OperationStatus = OperationStatus.PENDING
    version: int = 0
    discrepancy_id: str | None = None
    action: RemediationAction | None = None
    baseline: dict[str, Any] | None = None
    retry_count: int = 0
    max_retries: int = 3
    retry_series: int = 0
    next_retry_at: datetime | None = None
    last_error: str | None = None
    external_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    resolved_at: datetime | None = None
    resolution_notes: str | None = None

    @property
    def idempotency_key(self) -> str:
        return f"{self.id}:{self.retry_series}:{self.retry_count}"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Operation:
        return cls(
            id=row["id"],
            connector_id=row["connector_id"],
            operation_type=OperationType(row["operation_type"]),
            direction=Direction(row["direction"]),
            target_entity_ref=row["target_entity_ref"],
            payload=load_json(row.get("payload")) or {},
            status=OperationStatus(row["status"]),
            version=row.get("version", 0),
            discrepancy_id=row.get("discrepancy_id"),
            action=_opt(RemediationAction, row.get("action")),
            baseline=load_json(row.get("baseline")),
            retry_count=row.get("retry_count", 0),
            max_retries=row.get("max_retries", 3),
            retry_series=row.get("retry_series", 0),
            next_retry_at=from_iso(row.get("next_retry_at")),
            last_error=row.get("last_error"),
            external_ref=row.get("external_ref"),
            created_at=from_iso(row.get("created_at")),
            updated_at=from_iso(row.get("updated_at")),
            started_at=from_iso(row.get("started_at")),
            resolved_at=from_iso(row.get("resolved_at")),
            resolution_notes=row.get("resolution_notes"),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connector_id": self.connector_id,
            "discrepancy_id": self.discrepancy_id,
            "operation_type": self.operation_type.value,
            "direction": self.direction.value,
            "action": self.action.value if self.action else None,
            "status": self.status.value,
            "version": self.version,
            "target_entity_ref": self.target_entity_ref,
            "payload": dump_json(self.payload),
            "baseline": dump_json(self.baseline),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "retry_series": self.retry_series,
            "next_retry_at": to_iso(self.next_retry_at),
            "last_error": self.last_error,
            "external_ref": self.external_ref,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "started_at": to_iso(self.started_at),
            "resolved_at": to_iso(self.resolved_at),
            "resolution_notes": self.resolution_notes,
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["payload"] = self.payload
        d["baseline"] = self.baseline
        d["idempotency_key"] = self.idempotency_key
        return d


@dataclass(frozen=True)
class Attempt:
    """One execution try. Immutable once written."""

    id: str
    operation_id: str
    idempotency_key: str
    outcome: AttemptOutcome
    attempted_at: datetime
    duration_ms: float = 0.0
    retry_count: int = 0
    error_kind: ErrorKind | None = None
    error_detail: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Attempt:
        return cls(
            id=row["id"],
            operation_id=row["operation_id"],
            idempotency_key=row["idempotency_key"],
            outcome=AttemptOutcome(row["outcome"]),
            attempted_at=from_iso(row["attempted_at"]),
            duration_ms=row.get("duration_ms") or 0.0,
            retry_count=row.get("retry_count", 0),
            error_kind=_opt(ErrorKind, row.get("error_kind")),
            error_detail=row.get("error_detail"),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "idempotency_key": self.idempotency_key,
            "outcome": self.outcome.value,
            "attempted_at": to_iso(self.attempted_at),
            "duration_ms": self.duration_ms,
            "retry_count": self.retry_count,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error_detail": self.error_detail,
        }

    def to_dict(self) -> dict[str, Any]:
        return self.to_row()


@dataclass(frozen=True)
class OperationEvent:
    """Operation log entry (status transitions and notable events)."""

    id: str
    operation_id: str
    event_type: str
    created_at: datetime
    from_status: OperationStatus | None = None
    to_status: OperationStatus | None = None
    message: str | None = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> OperationEvent:
        return cls(
            id=row["id"],
            operation_id=row["operation_id"],
            event_type=row["event_type"],
            created_at=from_iso(row["created_at"]),
            from_status=_opt(OperationStatus, row.get("from_status")),
            to_status=_opt(OperationStatus, row.get("to_status")),
            message=row.get("message"),
            data=load_json(row.get("data")) or {},
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "event_type": self.event_type,
            "from_status": self.from_status.value if self.from_status else None,
            "to_status": self.to_status.value if self.to_status else None,
            "message": self.message,
            "data": self.data,
            "created_at": to_iso(self.created_at),
        }


# =============================================================================
# DISCREPANCIES AND CONFLICTS
# =============================================================================


@dataclass
class Discrepancy:
    """One detected unit of drift.

    ``source_ref`` is ``None`` for orphans (no identity in the source);
    ``target_ref`` is ``None`` when no account exists on the target.
    """

    id: str
    connector_id: str
    discrepancy_type: DiscrepancyType
    source_ref: str | None = None
    target_ref: str | None = None
    run_id: str | None = None
    source_snapshot: dict[str, Any] | None = None
    target_snapshot: dict[str, Any] | None = None
    resolution_status: ResolutionStatus = ResolutionStatus.PENDING
    active_operation_id: str | None = None
    resolved_operation_id: str | None = None
    detected_at: datetime | None = None
    resolved_at: datetime | None = None

    @property
    def dedup_key(self) -> tuple[str, str, str | None, str | None]:
        return (self.connector_id, self.discrepancy_type.value, self.source_ref, self.target_ref)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Discrepancy:
        return cls(
            id=row["id"],
            connector_id=row["connector_id"],
            discrepancy_type=DiscrepancyType(row["discrepancy_type"]),
            source_ref=row.get("source_ref"),
            target_ref=row.get("target_ref"),
            run_id=row.get("run_id"),
            source_snapshot=load_json(row.get("source_snapshot")),
            target_snapshot=load_json(row.get("target_snapshot")),
            resolution_status=ResolutionStatus(row["resolution_status"]),
            active_operation_id=row.get("active_operation_id"),
            resolved_operation_id=row.get("resolved_operation_id"),
            detected_at=from_iso(row.get("detected_at")),
            resolved_at=from_iso(row.get("resolved_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connector_id": self.connector_id,
            "run_id": self.run_id,
            "discrepancy_type": self.discrepancy_type.value,
            "source_ref": self.source_ref,
            "target_ref": self.target_ref,
            "source_snapshot": dump_json(self.source_snapshot),
            "target_snapshot": dump_json(self.target_snapshot),
            "resolution_status": self.resolution_status.value,
            "active_operation_id": self.active_operation_id,
            "resolved_operation_id": self.resolved_operation_id,
            "detected_at": to_iso(self.detected_at),
            "resolved_at": to_iso(self.resolved_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["source_snapshot"] = self.source_snapshot
        d["target_snapshot"] = self.target_snapshot
        return d


@dataclass(frozen=True)
class ConflictRecord:
    """Adjudication of a remediation against a concurrent change. Immutable."""

    id: str
    operation_id: str
    outcome: ConflictOutcome
    decided_at: datetime
    baseline_snapshot: dict[str, Any] | None = None
    detected_change_snapshot: dict[str, Any] | None = None
    detail: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ConflictRecord:
        return cls(
            id=row["id"],
            operation_id=row["operation_id"],
            outcome=ConflictOutcome(row["outcome"]),
            decided_at=from_iso(row["decided_at"]),
            baseline_snapshot=load_json(row.get("baseline_snapshot")),
            detected_change_snapshot=load_json(row.get("detected_change_snapshot")),
            detail=row.get("detail"),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "outcome": self.outcome.value,
            "baseline_snapshot": dump_json(self.baseline_snapshot),
            "detected_change_snapshot": dump_json(self.detected_change_snapshot),
            "detail": self.detail,
            "decided_at": to_iso(self.decided_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["baseline_snapshot"] = self.baseline_snapshot
        d["detected_change_snapshot"] = self.detected_change_snapshot
        return d


@dataclass(frozen=True)
class RemediationActionRecord:
    """Action log entry: one non-dry-run remediation request."""

    id: str
    connector_id: str
    discrepancy_id: str
    action: RemediationAction
    direction: Direction
    result: str
    created_at: datetime
    operation_id: str | None = None
    error: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> RemediationActionRecord:
        return cls(
            id=row["id"],
            connector_id=row["connector_id"],
            discrepancy_id=row["discrepancy_id"],
            action=RemediationAction(row["action"]),
            direction=Direction(row["direction"]),
            result=row["result"],
            created_at=from_iso(row["created_at"]),
            operation_id=row.get("operation_id"),
            error=row.get("error"),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connector_id": self.connector_id,
            "discrepancy_id": self.discrepancy_id,
            "action": self.action.value,
            "direction": self.direction.value,
            "operation_id": self.operation_id,
            "result": self.result,
            "error": self.error,
            "created_at": to_iso(self.created_at),
        }

    def to_dict(self) -> dict[str, Any]:
        return self.to_row()


# =============================================================================
# SCHEDULES AND RUNS
# =============================================================================


@dataclass
class Schedule:
    """Recurring trigger for reconciliation runs (one per connector)."""

    id: str
    connector_id: str
    mode: RunMode
    frequency: Frequency
    cron_expression: str | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    hour_of_day: int | None = None
    enabled: bool = True
    next_run_at: datetime | None = None
    last_run_at: datetime | None = None
    last_run_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Schedule:
        return cls(
            id=row["id"],
            connector_id=row["connector_id"],
            mode=RunMode(row["mode"]),
            frequency=Frequency(row["frequency"]),
            cron_expression=row.get("cron_expression"),
            day_of_week=row.get("day_of_week"),
            day_of_month=row.get("day_of_month"),
            hour_of_day=row.get("hour_of_day"),
            enabled=bool(row.get("enabled", 1)),
            next_run_at=from_iso(row.get("next_run_at")),
            last_run_at=from_iso(row.get("last_run_at")),
            last_run_id=row.get("last_run_id"),
            created_at=from_iso(row.get("created_at")),
            updated_at=from_iso(row.get("updated_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connector_id": self.connector_id,
            "mode": self.mode.value,
            "frequency": self.frequency.value,
            "cron_expression": self.cron_expression,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "hour_of_day": self.hour_of_day,
            "enabled": 1 if self.enabled else 0,
            "next_run_at": to_iso(self.next_run_at),
            "last_run_at": to_iso(self.last_run_at),
            "last_run_id": self.last_run_id,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["enabled"] = self.enabled
        return d


@dataclass
class ReconciliationRun:
    """One full or delta scan of a connector against the source."""

    id: str
    connector_id: str
    mode: RunMode
    status: RunStatus = RunStatus.PENDING
    dry_run: bool = False
    trigger: RunTrigger = RunTrigger.MANUAL
    since: datetime | None = None
    resumed_from: str | None = None
    summary: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    version: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ReconciliationRun:
        return cls(
            id=row["id"],
            connector_id=row["connector_id"],
            mode=RunMode(row["mode"]),
            status=RunStatus(row["status"]),
            dry_run=bool(row.get("dry_run", 0)),
            trigger=RunTrigger(row.get("trigger") or RunTrigger.MANUAL.value),
            since=from_iso(row.get("since")),
            resumed_from=row.get("resumed_from"),
            summary=load_json(row.get("summary")) or {},
            error=row.get("error"),
            version=row.get("version", 0),
            created_at=from_iso(row.get("created_at")),
            started_at=from_iso(row.get("started_at")),
            completed_at=from_iso(row.get("completed_at")),
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "connector_id": self.connector_id,
            "mode": self.mode.value,
            "status": self.status.value,
            "dry_run": 1 if self.dry_run else 0,
            "trigger": self.trigger.value,
            "since": to_iso(self.since),
            "resumed_from": self.resumed_from,
            "summary": dump_json(self.summary),
            "error": self.error,
            "version": self.version,
            "created_at": to_iso(self.created_at),
            "started_at": to_iso(self.started_at),
            "completed_at": to_iso(self.completed_at),
        }

    def to_dict(self) -> dict[str, Any]:
        d = self.to_row()
        d["dry_run"] = self.dry_run
        d["summary"] = self.summary
        return d
