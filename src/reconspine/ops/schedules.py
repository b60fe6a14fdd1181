"""
Schedule operations.

One recurring reconciliation schedule per connector.  Validation and
fire-time computation live in
:mod:`reconspine.reconciliation.scheduler`; invalid definitions surface
as ``VALIDATION_FAILED``.
"""

from __future__ import annotations

from reconspine.core.errors import ReconError
from reconspine.core.logging import get_logger
from reconspine.core.models import Schedule
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import (
    DeleteScheduleRequest,
    GetScheduleRequest,
    ListSchedulesRequest,
    ToggleScheduleRequest,
    UpsertScheduleRequest,
)
from reconspine.ops.result import OperationResult, PagedResult, start_timer
from reconspine.reconciliation.scheduler import ReconciliationScheduler

logger = get_logger(__name__)


def _scheduler(ctx: OperationContext) -> ReconciliationScheduler:
    return ReconciliationScheduler(ctx.conn)


def get_schedule(
    ctx: OperationContext,
    request: GetScheduleRequest,
) -> OperationResult[Schedule]:
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        return OperationResult.ok(
            _scheduler(ctx).get(request.connector_id), elapsed_ms=timer.elapsed_ms
        )
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get schedule: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_schedules(
    ctx: OperationContext,
    request: ListSchedulesRequest,
) -> PagedResult[Schedule]:
    """List schedules ordered by connector."""
    timer = start_timer()

    try:
        rows, total = _scheduler(ctx).schedules.list_schedules(
            enabled=request.enabled, limit=request.limit, offset=request.offset
        )
        return PagedResult.from_items(
            rows,
            total=total,
            limit=request.limit,
            offset=request.offset,
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return PagedResult.fail(
            "INTERNAL", f"Failed to list schedules: {exc}", elapsed_ms=timer.elapsed_ms
        )


def upsert_schedule(
    ctx: OperationContext,
    request: UpsertScheduleRequest,
) -> OperationResult[Schedule]:
    """Create or replace a connector's schedule.

    With ``ctx.dry_run`` the validated schedule and its next fire time are
    returned without being stored.
    """
    timer = start_timer()

    try:
        schedule = _scheduler(ctx).upsert(
            request.connector_id,
            mode=request.mode,
            frequency=request.frequency,
            cron_expression=request.cron_expression,
            day_of_week=request.day_of_week,
            day_of_month=request.day_of_month,
            hour_of_day=request.hour_of_day,
            enabled=request.enabled,
            dry_run=ctx.dry_run,
        )
        return OperationResult.ok(schedule, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to save schedule: {exc}", elapsed_ms=timer.elapsed_ms
        )


def _toggle(ctx: OperationContext, request: ToggleScheduleRequest, enabled: bool) -> OperationResult[Schedule]:
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        scheduler = _scheduler(ctx)
        if ctx.dry_run:
            return OperationResult.ok(scheduler.get(request.connector_id), elapsed_ms=timer.elapsed_ms)
        schedule = scheduler.set_enabled(request.connector_id, enabled)
        return OperationResult.ok(schedule, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to update schedule: {exc}", elapsed_ms=timer.elapsed_ms
        )


def enable_schedule(ctx: OperationContext, request: ToggleScheduleRequest) -> OperationResult[Schedule]:
    """Enable a schedule; its next fire time is recomputed from now."""
    return _toggle(ctx, request, True)


def disable_schedule(ctx: OperationContext, request: ToggleScheduleRequest) -> OperationResult[Schedule]:
    """Disable a schedule.  Run history is kept."""
    return _toggle(ctx, request, False)


def delete_schedule(
    ctx: OperationContext,
    request: DeleteScheduleRequest,
) -> OperationResult[str]:
    """Delete a connector's schedule.  Runs it fired are kept."""
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        scheduler = _scheduler(ctx)
        if ctx.dry_run:
            scheduler.get(request.connector_id)
        else:
            scheduler.delete(request.connector_id)
        return OperationResult.ok(request.connector_id, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to delete schedule: {exc}", elapsed_ms=timer.elapsed_ms
        )
