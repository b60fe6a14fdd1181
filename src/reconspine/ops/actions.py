"""
Remediation action log operations.

Every non-dry-run remediation request is logged, whether it created an
operation or was rejected.
"""

from __future__ import annotations

from reconspine.core.enums import RemediationAction, parse_optional_enum
from reconspine.core.errors import ReconError, ValidationError
from reconspine.core.logging import get_logger
from reconspine.core.models import RemediationActionRecord
from reconspine.core.repositories import RemediationActionRepository
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import ListRemediationActionsRequest
from reconspine.ops.result import PagedResult, start_timer
from reconspine.reconciliation.remediation import RESULT_CREATED, RESULT_REJECTED

logger = get_logger(__name__)


def list_remediation_actions(
    ctx: OperationContext,
    request: ListRemediationActionsRequest,
) -> PagedResult[RemediationActionRecord]:
    """List logged remediation requests, newest first."""
    timer = start_timer()

    try:
        action = parse_optional_enum(RemediationAction, request.action, "action")
        if request.result and request.result not in (RESULT_CREATED, RESULT_REJECTED):
            raise ValidationError(
                f"Unknown result '{request.result}'. Expected one of: "
                f"{RESULT_CREATED}, {RESULT_REJECTED}",
                field="result",
            )
        rows, total = RemediationActionRepository(ctx.conn).list_actions(
            connector_id=request.connector_id,
            discrepancy_id=request.discrepancy_id,
            action=action.value if action else None,
            result=request.result or None,
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
            "INTERNAL", f"Failed to list remediation actions: {exc}", elapsed_ms=timer.elapsed_ms
        )
