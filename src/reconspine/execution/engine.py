"""Operation Engine — submit, execute and govern corrective operations.

WHY
───
A remediation must reach the target exactly once in effect, even when
connectors time out, workers crash mid-call, or an operator cancels while
the call is in flight. The engine owns every status change of an
:class:`~reconspine.core.models.Operation` and pairs each one with the
rows that must commit alongside it (attempt, conflict record, event,
discrepancy update).

ARCHITECTURE
────────────
::

    OperationEngine(conn, connectors)
      ├── .submit(draft)          ─ insert PENDING, attach to discrepancy
      ├── .execute(op_id)         ─ claim → conflict check → apply → record
      ├── .confirm(op_id, ok)     ─ AWAITING_SYSTEM → COMPLETED | FAILED
      ├── .retry(op_id)           ─ FAILED | DEAD_LETTER → PENDING
      ├── .cancel(op_id)          ─ PENDING | IN_PROGRESS | AWAITING_SYSTEM → CANCELLED
      ├── .resolve(op_id, notes)  ─ DEAD_LETTER → RESOLVED
      └── .requeue_stale()        ─ IN_PROGRESS (abandoned) → PENDING

    execute(op_id):
      txn 1: CAS PENDING → IN_PROGRESS
      ─────  no transaction held ─────
             key = "{id}:{retry_series}:{retry_count}"
             ConflictResolver.check(op, endpoint)
             endpoint.apply(request)  under a deadline
      txn 2: re-read op; discard if cancelled or moved on
             ConflictRecord (once), Attempt, CAS to next status
             discrepancy resolved on COMPLETED

Failure path::

    IN_PROGRESS → FAILED → PENDING      (retry_count < max_retries, backoff)
                        → DEAD_LETTER  (exhausted, or permanent error)

A receipt asking for confirmation writes the call's Attempt and parks the
operation in AWAITING_SYSTEM; ``confirm`` adds a second Attempt keyed
``{key}:confirmation``.

Related modules:
    state_machine.py — legal transitions
    conflicts.py     — adjudication of concurrent changes
    retry.py         — backoff schedule
    worker.py        — polls the due index and calls execute()

Tags:
    reconspine, execution, state-machine, idempotency, engine

Doc-Types:
    api-reference
"""

from __future__ import annotations

import time
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any

from reconspine.core.connection import transaction
from reconspine.core.enums import AttemptOutcome, ConflictOutcome, OperationStatus
from reconspine.core.errors import (
    ActiveOperationError,
    ConfigError,
    ConflictError,
    ConnectorError,
    ConnectorTimeoutError,
    NotFoundError,
    PermanentConnectorError,
    StaleVersionError,
    TransientConnectorError,
)
from reconspine.core.logging import get_logger
from reconspine.core.models import (
    ApplyReceipt,
    ApplyRequest,
    Attempt,
    ConflictRecord,
    Operation,
    OperationDraft,
    OperationEvent,
)
from reconspine.core.protocols import Connection, Connector
from reconspine.core.repositories import (
    AttemptRepository,
    ConflictRepository,
    DiscrepancyRepository,
    OperationRepository,
)
from reconspine.core.result import Err, Ok, Result, try_result_with
from reconspine.core.settings import ReconSettings, get_settings
from reconspine.core.timestamps import Clock, new_id, utcnow
from reconspine.execution.conflicts import ConflictDecision, ConflictResolver
from reconspine.execution.connectors import ConnectorRegistry
from reconspine.execution.retry import ExponentialBackoff, RetryStrategy
from reconspine.execution.state_machine import (
    CANCELLABLE_FROM,
    RESOLVABLE_FROM,
    RETRYABLE_FROM,
    require_status,
    validate_transition,
)
from reconspine.execution.timeout import TimeoutExpired, run_with_timeout

logger = get_logger(__name__)

S = OperationStatus

_AWAITING_ONLY = frozenset({S.AWAITING_SYSTEM})
AWAITING_DETAIL = "awaiting confirmation"


def _is_integrity_error(exc: Exception) -> bool:
    return type(exc).__name__ == "IntegrityError"


def to_connector_error(exc: Exception) -> ConnectorError:
    """Normalize anything raised or returned by an adapter to a ConnectorError."""
    if isinstance(exc, ConnectorError):
        return exc
    if isinstance(exc, TimeoutExpired):
        return ConnectorTimeoutError(timeout=exc.timeout, cause=exc)
    if isinstance(exc, ConfigError):
        return PermanentConnectorError(exc.message, cause=exc)
    return TransientConnectorError(f"{type(exc).__name__}: {exc}", cause=exc)


class OperationEngine:
    """Drives operations through their lifecycle.

    Args:
        conn: Shared database connection.
        connectors: Registry resolving ``connector_id`` to adapters.
        settings: Engine settings (defaults to :func:`get_settings`).
        retry: Backoff strategy (defaults to settings-driven exponential),
            kept as ``self.backoff``.
        conflicts: Conflict resolver (defaults to the built-in policy).
        clock: Injectable time source.
    """

    def __init__(
        self,
        conn: Connection,
        connectors: ConnectorRegistry,
        *,
        settings: ReconSettings | None = None,
        retry: RetryStrategy | None = None,
        conflicts: ConflictResolver | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.conn = conn
        self.connectors = connectors
        self.settings = settings or get_settings()
        self.backoff = retry or ExponentialBackoff.from_settings(self.settings)
        self.conflicts = conflicts or ConflictResolver()
        self.clock = clock
        self.timeout_seconds = self.settings.connector_timeout_seconds

        self.operations = OperationRepository(conn)
        self.attempts = AttemptRepository(conn)
        self.conflict_records = ConflictRepository(conn)
        self.discrepancies = DiscrepancyRepository(conn)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, operation_id: str) -> Operation:
        op = self.operations.get(operation_id)
        if op is None:
            raise NotFoundError("Operation", operation_id)
        return op

    def events(self, operation_id: str, *, limit: int = 100, offset: int = 0) -> tuple[list[OperationEvent], int]:
        self.get(operation_id)
        return self.operations.list_events(operation_id, limit=limit, offset=offset)

    # ------------------------------------------------------------------ #
    # Submit
    # ------------------------------------------------------------------ #

    def submit(self, draft: OperationDraft, *, max_retries: int | None = None) -> Operation:
        """Persist *draft* as a PENDING operation due immediately.

        Raises:
            ActiveOperationError: The discrepancy already has a non-terminal
                operation.
        """
        now = self.clock()
        op = Operation(
            id=new_id(),
            connector_id=draft.connector_id,
            operation_type=draft.operation_type,
            direction=draft.direction,
            target_entity_ref=draft.target_entity_ref,
            payload=dict(draft.payload),
            status=S.PENDING,
            discrepancy_id=draft.discrepancy_id,
            action=draft.action,
            baseline=draft.baseline,
            max_retries=max_retries if max_retries is not None else self.backoff.max_retries,
            next_retry_at=now,
            created_at=now,
            updated_at=now,
        )

        with transaction(self.conn):
            if op.discrepancy_id:
                active = self.operations.find_active_for_discrepancy(op.discrepancy_id)
                if active is not None:
                    raise ActiveOperationError(op.discrepancy_id, active.id)
            try:
                self.operations.create(op)
            except Exception as exc:
                if op.discrepancy_id and _is_integrity_error(exc):
                    raise ActiveOperationError(op.discrepancy_id, cause=exc) from exc
                raise
            self._log_event(op.id, "submitted", None, S.PENDING, now)
            if op.discrepancy_id:
                self.discrepancies.attach_operation(op.discrepancy_id, op.id)

        logger.info(
            "operation_submitted",
            operation_id=op.id,
            connector_id=op.connector_id,
            operation_type=op.operation_type.value,
            discrepancy_id=op.discrepancy_id,
        )
        return op

    # ------------------------------------------------------------------ #
    # Execute
    # ------------------------------------------------------------------ #

    def execute(self, operation_id: str) -> Operation:
        """Run one attempt of a PENDING operation and record its outcome.

        Raises:
            NotFoundError: Unknown operation.
            InvalidTransitionError: The operation is not PENDING.
            StaleVersionError: Another worker claimed it first.
        """
        op = self._claim(operation_id)
        key = op.idempotency_key
        started = time.monotonic()

        decision: ConflictDecision | None = None
        try:
            endpoint = self.connectors.endpoint(op.connector_id, op.direction)
            decision = self.conflicts.check(op, endpoint)
        except Exception as exc:
            result: Result[ApplyReceipt] = Err(to_connector_error(exc))
        else:
            if decision is None or decision.proceeds:
                payload = decision.payload if decision is not None else op.payload
                result = self._apply(endpoint, op, payload, key)
            elif decision.outcome is ConflictOutcome.SUPERSEDED:
                result = Ok(ApplyReceipt(detail="superseded"))
            else:
                result = Err(ConflictError(decision.detail or "remediation rejected by conflict check"))

        duration_ms = (time.monotonic() - started) * 1000.0
        return self._record(op, key, result, decision, duration_ms)

    def _claim(self, operation_id: str) -> Operation:
        with transaction(self.conn):
            op = self.get(operation_id)
            now = self.clock()
            return self._transition(op, S.IN_PROGRESS, now, "claimed", started_at=now)

    def _apply(
        self,
        endpoint: Connector,
        op: Operation,
        payload: dict[str, Any],
        key: str,
    ) -> Result[ApplyReceipt]:
        request = ApplyRequest(
            operation_id=op.id,
            connector_id=op.connector_id,
            operation_type=op.operation_type,
            direction=op.direction,
            target_entity_ref=op.target_entity_ref,
            payload=payload,
            idempotency_key=key,
        )
        outcome = try_result_with(
            lambda: run_with_timeout(
                endpoint.apply,
                self.timeout_seconds,
                operation=f"{op.connector_id}.apply",
                args=(request,),
            ),
            to_connector_error,
        )
        if isinstance(outcome, Ok) and isinstance(outcome.value, (Ok, Err)):
            outcome = outcome.value
        if isinstance(outcome, Err):
            return Err(to_connector_error(outcome.error))
        if not isinstance(outcome.value, ApplyReceipt):
            return Ok(ApplyReceipt())
        return outcome

    def _record(
        self,
        op: Operation,
        key: str,
        result: Result[ApplyReceipt],
        decision: ConflictDecision | None,
        duration_ms: float,
    ) -> Operation:
        now = self.clock()
        with transaction(self.conn):
            current = self.operations.get(op.id)
            if current is None or current.status is not S.IN_PROGRESS or current.version != op.version:
                logger.warning(
                    "operation_outcome_discarded",
                    operation_id=op.id,
                    status=current.status.value if current else None,
                    ok=result.is_ok(),
                )
                return current or op

            if decision is not None:
                self.conflict_records.add_once(
                    ConflictRecord(
                        id=new_id(),
                        operation_id=op.id,
                        outcome=decision.outcome,
                        decided_at=now,
                        baseline_snapshot=decision.baseline,
                        detected_change_snapshot=decision.current,
                        detail=decision.detail,
                    )
                )

            match result:
                case Ok(receipt):
                    external_ref = receipt.external_ref or op.external_ref
                    if receipt.awaiting_confirmation:
                        self._add_attempt(
                            op, key, AttemptOutcome.SUCCESS, now, duration_ms, detail=AWAITING_DETAIL
                        )
                        updated = self._transition(
                            op, S.AWAITING_SYSTEM, now, "awaiting_system",
                            message=receipt.detail, external_ref=external_ref, last_error=None,
                        )
                    else:
                        self._add_attempt(op, key, AttemptOutcome.SUCCESS, now, duration_ms)
                        updated = self._transition(
                            op, S.COMPLETED, now, "completed",
                            message=receipt.detail, external_ref=external_ref, last_error=None,
                        )
                        self._resolve_discrepancy(updated, now)
                case Err(error):
                    self._add_attempt(op, key, AttemptOutcome.FAILURE, now, duration_ms, error=error)
                    updated = self._fail(op, error, now)

        logger.info(
            "operation_executed",
            operation_id=op.id,
            idempotency_key=key,
            status=updated.status.value,
            duration_ms=round(duration_ms, 2),
        )
        return updated

    def _fail(self, op: Operation, error: Exception, now: datetime) -> Operation:
        """IN_PROGRESS | AWAITING_SYSTEM → FAILED → PENDING | DEAD_LETTER."""
        detail = error.detail if isinstance(error, ConnectorError) else str(error)
        failures = op.retry_count + 1
        failed = self._transition(
            op, S.FAILED, now, "failed", message=detail, retry_count=failures, last_error=detail,
        )
        if self.backoff.should_retry(failures, error, op.max_retries):
            next_at = self.backoff.next_retry_at(now, op.retry_count)
            return self._transition(
                failed, S.PENDING, now, "retry_scheduled",
                data={"next_retry_at": next_at.isoformat(), "retry_count": failures},
                next_retry_at=next_at,
            )
        logger.warning(
            "operation_dead_lettered",
            operation_id=op.id,
            retry_count=failures,
            error=detail,
        )
        return self._transition(failed, S.DEAD_LETTER, now, "dead_lettered", message=detail)

    # ------------------------------------------------------------------ #
    # Operator actions
    # ------------------------------------------------------------------ #

    def confirm(
        self,
        operation_id: str,
        succeeded: bool,
        *,
        detail: str | None = None,
        external_ref: str | None = None,
    ) -> Operation:
        """Record the target's asynchronous confirmation of an AWAITING_SYSTEM operation."""
        with transaction(self.conn):
            op = self.get(operation_id)
            require_status(op.status, _AWAITING_ONLY, S.COMPLETED if succeeded else S.FAILED)
            now = self.clock()
            duration_ms = (now - op.started_at).total_seconds() * 1000.0 if op.started_at else 0.0
            key = f"{op.idempotency_key}:confirmation"
            if succeeded:
                self._add_attempt(op, key, AttemptOutcome.SUCCESS, now, duration_ms)
                updated = self._transition(
                    op, S.COMPLETED, now, "confirmed",
                    message=detail, external_ref=external_ref or op.external_ref,
                )
                self._resolve_discrepancy(updated, now)
            else:
                error = TransientConnectorError(detail or "target reported failure")
                self._add_attempt(op, key, AttemptOutcome.FAILURE, now, duration_ms, error=error)
                updated = self._fail(op, error, now)
        logger.info("operation_confirmed", operation_id=op.id, succeeded=succeeded, status=updated.status.value)
        return updated

    def retry(self, operation_id: str, *, note: str | None = None) -> Operation:
        """Manually requeue a FAILED or DEAD_LETTER operation.

        A retry from DEAD_LETTER starts a new retry series: ``retry_count``
        resets to zero and ``retry_series`` advances, so the new attempts get
        fresh idempotency keys and a full retry budget.
        """
        with transaction(self.conn):
            op = self.get(operation_id)
            require_status(op.status, RETRYABLE_FROM, S.PENDING)
            now = self.clock()
            fields: dict[str, Any] = {"next_retry_at": now}
            if op.status is S.DEAD_LETTER:
                fields.update(retry_count=0, retry_series=op.retry_series + 1)
            updated = self._transition(op, S.PENDING, now, "manual_retry", message=note, **fields)
        logger.info(
            "operation_retried",
            operation_id=op.id,
            from_status=op.status.value,
            retry_series=updated.retry_series,
        )
        return updated

    def cancel(self, operation_id: str, *, reason: str | None = None) -> Operation:
        """Cancel a non-terminal operation and free its discrepancy.

        Cancelling an IN_PROGRESS operation bumps its version, so the
        in-flight worker's outcome is discarded when it tries to record it.
        """
        with transaction(self.conn):
            op = self.get(operation_id)
            require_status(op.status, CANCELLABLE_FROM, S.CANCELLED)
            now = self.clock()
            updated = self._transition(
                op, S.CANCELLED, now, "cancelled", message=reason, resolution_notes=reason,
            )
            if op.discrepancy_id:
                self.discrepancies.release(op.discrepancy_id, op.id)
        logger.info("operation_cancelled", operation_id=op.id, from_status=op.status.value)
        return updated

    def resolve(self, operation_id: str, *, notes: str | None = None) -> Operation:
        """Close a DEAD_LETTER operation as handled out of band."""
        with transaction(self.conn):
            op = self.get(operation_id)
            require_status(op.status, RESOLVABLE_FROM, S.RESOLVED)
            now = self.clock()
            updated = self._transition(
                op, S.RESOLVED, now, "resolved",
                message=notes, resolved_at=now, resolution_notes=notes,
            )
            self._resolve_discrepancy(updated, now)
        logger.info("operation_resolved", operation_id=op.id)
        return updated

    def requeue_stale(self, older_than: timedelta | None = None) -> list[str]:
        """Return abandoned IN_PROGRESS claims to PENDING.

        ``retry_count`` is kept, so the re-run reuses the same idempotency
        key and the connector can deduplicate the abandoned call.
        """
        now = self.clock()
        cutoff = now - (older_than or timedelta(seconds=self.settings.stale_after_seconds))
        requeued: list[str] = []
        for op in self.operations.list_stale(cutoff):
            try:
                with transaction(self.conn):
                    self._transition(
                        op, S.PENDING, now, "requeued_stale",
                        next_retry_at=now, started_at=None,
                    )
            except StaleVersionError:
                continue
            requeued.append(op.id)
        if requeued:
            logger.warning("operations_requeued", count=len(requeued), cutoff=cutoff.isoformat())
        return requeued

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _transition(
        self,
        op: Operation,
        target: OperationStatus,
        now: datetime,
        event_type: str,
        *,
        message: str | None = None,
        data: dict[str, Any] | None = None,
        **fields: Any,
    ) -> Operation:
        """Validate, compare-and-swap and log one status change."""
        validate_transition(op.status, target)
        if target is not S.PENDING:
            fields.setdefault("next_retry_at", None)
        swapped = self.operations.compare_and_set(
            op.id,
            expected_status=op.status,
            expected_version=op.version,
            new_status=target,
            updated_at=now,
            **fields,
        )
        if not swapped:
            raise StaleVersionError(op.id, op.status.value, op.version)
        self._log_event(op.id, event_type, op.status, target, now, message=message, data=data)
        return replace(op, status=target, version=op.version + 1, updated_at=now, **fields)

    def _log_event(
        self,
        operation_id: str,
        event_type: str,
        from_status: OperationStatus | None,
        to_status: OperationStatus | None,
        now: datetime,
        *,
        message: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> None:
        self.operations.add_event(
            OperationEvent(
                id=new_id(),
                operation_id=operation_id,
                event_type=event_type,
                created_at=now,
                from_status=from_status,
                to_status=to_status,
                message=message,
                data=data or {},
            )
        )

    def _add_attempt(
        self,
        op: Operation,
        key: str,
        outcome: AttemptOutcome,
        now: datetime,
        duration_ms: float,
        *,
        error: Exception | None = None,
        detail: str | None = None,
    ) -> None:
        kind = error.kind if isinstance(error, ConnectorError) else None
        if error is not None:
            detail = error.detail if isinstance(error, ConnectorError) else str(error)
        self.attempts.add(
            Attempt(
                id=new_id(),
                operation_id=op.id,
                idempotency_key=key,
                outcome=outcome,
                attempted_at=now,
                duration_ms=round(duration_ms, 3),
                retry_count=op.retry_count,
                error_kind=kind,
                error_detail=detail,
            )
        )

    def _resolve_discrepancy(self, op: Operation, now: datetime) -> None:
        if op.discrepancy_id:
            self.discrepancies.mark_resolved(op.discrepancy_id, op.id, now)


__all__ = ["OperationEngine", "to_connector_error"]
