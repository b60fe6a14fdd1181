"""
Dead letter queue operations.

Wraps :class:`~reconspine.execution.dlq.DeadLetterManager` with typed
contracts.  Retrying and resolving a dead letter are
:func:`~reconspine.ops.operations.retry_operation` and
:func:`~reconspine.ops.operations.resolve_operation`.
"""

from __future__ import annotations

from typing import Any

from reconspine.core.logging import get_logger
from reconspine.execution.dlq import DeadLetterManager
from reconspine.execution.engine import OperationEngine
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import ListDeadLetterRequest
from reconspine.ops.result import PagedResult, start_timer

logger = get_logger(__name__)


def _dlq(ctx: OperationContext) -> DeadLetterManager:
    return DeadLetterManager(OperationEngine(ctx.conn, ctx.connectors, settings=ctx.settings))


def list_dead_letter(
    ctx: OperationContext,
    request: ListDeadLetterRequest,
) -> PagedResult[dict[str, Any]]:
    """List dead-lettered operations, each with its full attempt history."""
    timer = start_timer()

    try:
        entries, total = _dlq(ctx).list(
            connector_id=request.connector_id,
            limit=request.limit,
            offset=request.offset,
        )
        return PagedResult.from_items(
            entries,
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list dead letters: {exc}", elapsed_ms=timer.elapsed_ms
        )
