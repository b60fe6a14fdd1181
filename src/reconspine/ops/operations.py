"""
Operation operations.

Read and control corrective operations.  State changes go through
:class:`~reconspine.execution.engine.OperationEngine`, so every transition
is validated, compare-and-swapped and written to the operation log.  With
``ctx.dry_run`` a control operation only checks that the transition is
legal and returns the operation unchanged.
"""

from __future__ import annotations

from reconspine.core.enums import OperationStatus, OperationType, parse_optional_enum
from reconspine.core.errors import ReconError
from reconspine.core.logging import get_logger
from reconspine.core.models import Attempt, Operation, OperationEvent
from reconspine.execution.engine import OperationEngine
from reconspine.execution.state_machine import (
    CANCELLABLE_FROM,
    RESOLVABLE_FROM,
    RETRYABLE_FROM,
    require_status,
)
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import (
    CancelOperationRequest,
    ConfirmOperationRequest,
    GetOperationRequest,
    ListOperationAttemptsRequest,
    ListOperationLogsRequest,
    ListOperationsRequest,
    OperationStatsRequest,
    ResolveOperationRequest,
    RetryOperationRequest,
)
from reconspine.ops.responses import OperationDetail, OperationStats, QueueStats
from reconspine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)

_AWAITING_ONLY = frozenset({OperationStatus.AWAITING_SYSTEM})


def _engine(ctx: OperationContext) -> OperationEngine:
    """Create an OperationEngine from OperationContext."""
    return OperationEngine(ctx.conn, ctx.connectors, settings=ctx.settings)


def _preview(
    engine: OperationEngine,
    operation_id: str,
    allowed: frozenset[OperationStatus],
    target: OperationStatus,
) -> Operation:
    op = engine.get(operation_id)
    require_status(op.status, allowed, target)
    return op


def get_operation(
    ctx: OperationContext,
    request: GetOperationRequest,
) -> OperationResult[OperationDetail]:
    """Return an operation with its attempts, log and conflict record."""
    timer = start_timer()

    if not request.operation_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        op = engine.operations.get(request.operation_id)
        if op is None:
            return OperationResult.fail(
                "NOT_FOUND",
                f"Operation '{request.operation_id}' not found",
                elapsed_ms=timer.elapsed_ms,
            )
        attempts, _ = engine.attempts.list_for_operation(op.id)
        events, _ = engine.events(op.id)
        conflict = engine.conflict_records.get_for_operation(op.id)
        return OperationResult.ok(
            OperationDetail(operation=op, attempts=attempts, events=events, conflict=conflict),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get operation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_operations(
    ctx: OperationContext,
    request: ListOperationsRequest,
) -> PagedResult[Operation]:
    """List operations with filtering and pagination, newest first."""
    timer = start_timer()

    try:
        status = parse_optional_enum(OperationStatus, request.status, "status")
        op_type = parse_optional_enum(OperationType, request.operation_type, "operation_type")
        rows, total = _engine(ctx).operations.list_operations(
            connector_id=request.connector_id,
            status=status.value if status else None,
            operation_type=op_type.value if op_type else None,
            discrepancy_id=request.discrepancy_id,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            rows,
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except ReconError as exc:
        return PagedResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list operations: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_operation_attempts(
    ctx: OperationContext,
    request: ListOperationAttemptsRequest,
) -> PagedResult[Attempt]:
    """Attempt history of one operation in execution order."""
    timer = start_timer()

    if not request.operation_id:
        return PagedResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        engine.get(request.operation_id)
        rows, total = engine.attempts.list_for_operation(
            request.operation_id, limit=request.limit, offset=request.offset
        )
        return PagedResult.from_items(
            rows,
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except ReconError as exc:
        return PagedResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list attempts: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_operation_logs(
    ctx: OperationContext,
    request: ListOperationLogsRequest,
) -> PagedResult[OperationEvent]:
    """Operation log (status transitions and notable events) in write order."""
    timer = start_timer()

    if not request.operation_id:
        return PagedResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        engine.get(request.operation_id)
        rows, total = engine.events(
            request.operation_id, limit=request.limit, offset=request.offset
        )
        return PagedResult.from_items(
            rows,
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except ReconError as exc:
        return PagedResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list operation log: {exc}", elapsed_ms=timer.elapsed_ms
        )


def retry_operation(
    ctx: OperationContext,
    request: RetryOperationRequest,
) -> OperationResult[Operation]:
    """Requeue a failed or dead-lettered operation."""
    timer = start_timer()

    if not request.operation_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        if ctx.dry_run:
            op = _preview(engine, request.operation_id, RETRYABLE_FROM, OperationStatus.PENDING)
            return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
        op = engine.retry(request.operation_id, note=request.note)
        return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to retry operation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def cancel_operation(
    ctx: OperationContext,
    request: CancelOperationRequest,
) -> OperationResult[Operation]:
    """Cancel a pending, in-progress or awaiting operation."""
    timer = start_timer()

    if not request.operation_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        if ctx.dry_run:
            op = _preview(engine, request.operation_id, CANCELLABLE_FROM, OperationStatus.CANCELLED)
            return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
        op = engine.cancel(request.operation_id, reason=request.reason)
        return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to cancel operation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def resolve_operation(
    ctx: OperationContext,
    request: ResolveOperationRequest,
) -> OperationResult[Operation]:
    """Close a dead-lettered operation as handled out of band."""
    timer = start_timer()

    if not request.operation_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        if ctx.dry_run:
            op = _preview(engine, request.operation_id, RESOLVABLE_FROM, OperationStatus.RESOLVED)
            return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
        op = engine.resolve(request.operation_id, notes=request.notes)
        return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to resolve operation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def confirm_operation(
    ctx: OperationContext,
    request: ConfirmOperationRequest,
) -> OperationResult[Operation]:
    """Record the target's asynchronous confirmation of an awaiting operation."""
    timer = start_timer()

    if not request.operation_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "operation_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        engine = _engine(ctx)
        if ctx.dry_run:
            target = OperationStatus.COMPLETED if request.succeeded else OperationStatus.FAILED
            op = _preview(engine, request.operation_id, _AWAITING_ONLY, target)
            return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
        op = engine.confirm(
            request.operation_id,
            request.succeeded,
            detail=request.detail,
            external_ref=request.external_ref,
        )
        return OperationResult.ok(op, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to confirm operation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def operation_stats(
    ctx: OperationContext,
    request: OperationStatsRequest,
) -> OperationResult[OperationStats]:
    """Queue statistics: operation counts by status, per connector."""
    timer = start_timer()

    try:
        rows = _engine(ctx).operations.status_counts(connector_id=request.connector_id)
        per_connector: dict[str, QueueStats] = {}
        totals = {s.value: 0 for s in OperationStatus}
        for row in rows:
            stats = per_connector.setdefault(row["connector_id"], QueueStats(row["connector_id"]))
            stats.by_status[row["status"]] = row["cnt"]
            totals[row["status"]] = totals.get(row["status"], 0) + row["cnt"]
        return OperationResult.ok(
            OperationStats(connectors=list(per_connector.values()), totals=totals),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to compute operation stats: {exc}", elapsed_ms=timer.elapsed_ms
        )
