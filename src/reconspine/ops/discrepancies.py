"""
Discrepancy operations.

List, inspect and act on detected drift.  Remediation goes through
:class:`~reconspine.reconciliation.remediation.RemediationService` so the
action matrix, the one-active-operation rule and the action log apply the
same way for single and bulk requests.
"""

from __future__ import annotations

from datetime import timedelta

from reconspine.core.enums import DiscrepancyType, ResolutionStatus, parse_optional_enum
from reconspine.core.errors import ReconError
from reconspine.core.logging import get_logger
from reconspine.core.models import Discrepancy
from reconspine.core.repositories import (
    DiscrepancyRepository,
    OperationRepository,
    RemediationActionRepository,
)
from reconspine.core.timestamps import utcnow
from reconspine.execution.engine import OperationEngine
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import (
    BulkRemediateRequest,
    DiscrepancyTrendRequest,
    GetDiscrepancyRequest,
    IgnoreDiscrepancyRequest,
    ListDiscrepanciesRequest,
    RemediateRequest,
)
from reconspine.ops.responses import DiscrepancyDetail, TrendPoint
from reconspine.ops.result import OperationResult, PagedResult, start_timer
from reconspine.reconciliation.bulk import BulkRemediationCoordinator, BulkResult
from reconspine.reconciliation.remediation import RemediationOutcome, RemediationService

logger = get_logger(__name__)


def _repo(ctx: OperationContext) -> DiscrepancyRepository:
    return DiscrepancyRepository(ctx.conn)


def _service(ctx: OperationContext) -> RemediationService:
    return RemediationService(OperationEngine(ctx.conn, ctx.connectors, settings=ctx.settings))


def _first_missing(request: object, *names: str) -> str | None:
    """First of *names* that is empty on *request*."""
    return next((name for name in names if not getattr(request, name)), None)


def list_discrepancies(
    ctx: OperationContext,
    request: ListDiscrepanciesRequest,
) -> PagedResult[Discrepancy]:
    """List discrepancies with filtering and pagination."""
    timer = start_timer()

    try:
        discrepancy_type = parse_optional_enum(
            DiscrepancyType, request.discrepancy_type, "discrepancy_type"
        )
        resolution_status = parse_optional_enum(
            ResolutionStatus, request.resolution_status, "resolution_status"
        )
        rows, total = _repo(ctx).list_discrepancies(
            connector_id=request.connector_id,
            run_id=request.run_id,
            discrepancy_type=discrepancy_type.value if discrepancy_type else None,
            resolution_status=resolution_status.value if resolution_status else None,
            source_ref=request.source_ref,
            target_ref=request.target_ref,
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
            "INTERNAL", f"Failed to list discrepancies: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_discrepancy(
    ctx: OperationContext,
    request: GetDiscrepancyRequest,
) -> OperationResult[DiscrepancyDetail]:
    """Return a discrepancy with its active operation and action history."""
    timer = start_timer()

    if not request.discrepancy_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "discrepancy_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        discrepancy = _repo(ctx).get(request.discrepancy_id)
        if discrepancy is None:
            return OperationResult.fail(
                "NOT_FOUND",
                f"Discrepancy '{request.discrepancy_id}' not found",
                elapsed_ms=timer.elapsed_ms,
            )
        active = OperationRepository(ctx.conn).find_active_for_discrepancy(discrepancy.id)
        actions, _ = RemediationActionRepository(ctx.conn).list_actions(
            discrepancy_id=discrepancy.id, limit=100
        )
        return OperationResult.ok(
            DiscrepancyDetail(discrepancy=discrepancy, active_operation=active, actions=actions),
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get discrepancy: {exc}", elapsed_ms=timer.elapsed_ms
        )


def remediate_discrepancy(
    ctx: OperationContext,
    request: RemediateRequest,
) -> OperationResult[RemediationOutcome]:
    """Preview or create the corrective operation for one discrepancy.

    Dry run when either ``request.dry_run`` or ``ctx.dry_run`` is set; a dry
    run persists nothing, not even an action log entry.
    """
    timer = start_timer()

    missing = _first_missing(request, "connector_id", "discrepancy_id")
    if missing:
        return OperationResult.fail(
            "VALIDATION_FAILED", f"{missing} is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        outcome = _service(ctx).remediate(
            request.discrepancy_id,
            request.action,
            request.direction,
            connector_id=request.connector_id,
            dry_run=request.dry_run or ctx.dry_run,
        )
        return OperationResult.ok(outcome, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to remediate discrepancy: {exc}", elapsed_ms=timer.elapsed_ms
        )


def bulk_remediate(
    ctx: OperationContext,
    request: BulkRemediateRequest,
) -> OperationResult[BulkResult]:
    """Remediate many discrepancies; each item succeeds or fails on its own.

    The envelope is successful whenever the batch ran, even if some items
    were rejected.  Per-item failures are in ``data.items`` and a warning
    summarises them.
    """
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )
    if not request.items:
        return OperationResult.fail(
            "VALIDATION_FAILED", "items must not be empty", elapsed_ms=timer.elapsed_ms
        )

    try:
        result = BulkRemediationCoordinator(_service(ctx)).run(
            request.items,
            connector_id=request.connector_id,
            dry_run=request.dry_run or ctx.dry_run,
        )
        failed = result.counts["failed"]
        warnings = [f"{failed} of {len(result.items)} items failed"] if failed else None
        return OperationResult.ok(result, warnings=warnings, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to run bulk remediation: {exc}", elapsed_ms=timer.elapsed_ms
        )


def ignore_discrepancy(
    ctx: OperationContext,
    request: IgnoreDiscrepancyRequest,
) -> OperationResult[Discrepancy]:
    """Dismiss a pending discrepancy.  Rejected while an operation is active."""
    timer = start_timer()

    missing = _first_missing(request, "connector_id", "discrepancy_id")
    if missing:
        return OperationResult.fail(
            "VALIDATION_FAILED", f"{missing} is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        service = _service(ctx)
        if ctx.dry_run:
            discrepancy = service.get(request.discrepancy_id, request.connector_id)
            service.require_remediable(discrepancy)
            return OperationResult.ok(discrepancy, elapsed_ms=timer.elapsed_ms)
        discrepancy = service.ignore(request.discrepancy_id, connector_id=request.connector_id)
        logger.info(
            "ignore_requested",
            discrepancy_id=discrepancy.id,
            caller=ctx.caller,
            user=ctx.user,
            request_id=ctx.request_id,
        )
        return OperationResult.ok(discrepancy, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to ignore discrepancy: {exc}", elapsed_ms=timer.elapsed_ms
        )


def discrepancy_trend(
    ctx: OperationContext,
    request: DiscrepancyTrendRequest,
) -> OperationResult[list[TrendPoint]]:
    """Daily detection counts per discrepancy type over the last ``days`` days."""
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )
    if request.days < 1:
        return OperationResult.fail(
            "VALIDATION_FAILED", "days must be >= 1", elapsed_ms=timer.elapsed_ms
        )

    try:
        start = utcnow() - timedelta(days=request.days)
        rows = _repo(ctx).trend(request.connector_id, start=start)
        points = [
            TrendPoint(day=r["day"], discrepancy_type=r["discrepancy_type"], count=r["cnt"])
            for r in rows
        ]
        return OperationResult.ok(points, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to compute discrepancy trend: {exc}", elapsed_ms=timer.elapsed_ms
        )
