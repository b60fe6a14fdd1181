"""
Conflict operations.

Read-only access to conflict adjudications recorded by the engine.
"""

from __future__ import annotations

from reconspine.core.enums import ConflictOutcome, parse_optional_enum
from reconspine.core.errors import ReconError
from reconspine.core.logging import get_logger
from reconspine.core.models import ConflictRecord
from reconspine.core.repositories import ConflictRepository
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import GetConflictRequest, ListConflictsRequest
from reconspine.ops.result import OperationResult, PagedResult, start_timer

logger = get_logger(__name__)


def _repo(ctx: OperationContext) -> ConflictRepository:
    return ConflictRepository(ctx.conn)


def list_conflicts(
    ctx: OperationContext,
    request: ListConflictsRequest,
) -> PagedResult[ConflictRecord]:
    """List conflict records, filtered by connector, operation or outcome."""
    timer = start_timer()

    try:
        outcome = parse_optional_enum(ConflictOutcome, request.outcome, "outcome")
        rows, total = _repo(ctx).list_conflicts(
            connector_id=request.connector_id,
            operation_id=request.operation_id,
            outcome=outcome.value if outcome else None,
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
            "INTERNAL", f"Failed to list conflicts: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_conflict(
    ctx: OperationContext,
    request: GetConflictRequest,
) -> OperationResult[ConflictRecord]:
    timer = start_timer()

    if not request.conflict_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "conflict_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        record = _repo(ctx).get(request.conflict_id)
        if record is None:
            return OperationResult.fail(
                "NOT_FOUND",
                f"Conflict '{request.conflict_id}' not found",
                elapsed_ms=timer.elapsed_ms,
            )
        return OperationResult.ok(record, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get conflict: {exc}", elapsed_ms=timer.elapsed_ms
        )
