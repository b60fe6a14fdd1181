"""
Reconciliation run operations.

Trigger, inspect, cancel and resume reconciliation runs.  ``trigger_run``
and ``resume_run`` are the operations in this package that talk to
connectors, so they are the ones that need ``ctx.connectors`` populated.
"""

from __future__ import annotations

from reconspine.core.enums import RunMode, RunStatus, parse_enum, parse_optional_enum
from reconspine.core.errors import ReconError
from reconspine.core.logging import get_logger
from reconspine.core.models import ReconciliationRun
from reconspine.core.repositories import DiscrepancyRepository, RunRepository
from reconspine.ops.context import OperationContext
from reconspine.ops.requests import (
    CancelRunRequest,
    GetRunReportRequest,
    GetRunRequest,
    ListRunsRequest,
    ResumeRunRequest,
    TriggerRunRequest,
)
from reconspine.ops.responses import RunReportView
from reconspine.ops.result import OperationResult, PagedResult, start_timer
from reconspine.reconciliation.runner import ReconciliationRunner, RunReport

logger = get_logger(__name__)


def _runner(ctx: OperationContext) -> ReconciliationRunner:
    """Create a ReconciliationRunner from OperationContext."""
    return ReconciliationRunner(ctx.conn, ctx.connectors)


def trigger_run(
    ctx: OperationContext,
    request: TriggerRunRequest,
) -> OperationResult[RunReport]:
    """Run one reconciliation pass now and return its report.

    A run whose scan failed is still a successful envelope: the failure is
    recorded on the run (``status == "failed"``, ``error``) and repeated as
    a warning.
    """
    timer = start_timer()

    if not request.connector_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "connector_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        mode = parse_enum(RunMode, request.mode, "mode")
        report = _runner(ctx).trigger_run(
            request.connector_id, mode, dry_run=request.dry_run or ctx.dry_run
        )
        warnings = None
        if report.run.status is RunStatus.FAILED:
            warnings = [f"Run failed: {report.run.error}"]
        return OperationResult.ok(report, warnings=warnings, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to trigger run: {exc}", elapsed_ms=timer.elapsed_ms
        )


def list_runs(
    ctx: OperationContext,
    request: ListRunsRequest,
) -> PagedResult[ReconciliationRun]:
    """List runs newest first."""
    timer = start_timer()

    try:
        mode = parse_optional_enum(RunMode, request.mode, "mode")
        status = parse_optional_enum(RunStatus, request.status, "status")
        rows, total = RunRepository(ctx.conn).list_runs(
            connector_id=request.connector_id,
            mode=mode.value if mode else None,
            status=status.value if status else None,
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
            "INTERNAL", f"Failed to list runs: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_run(
    ctx: OperationContext,
    request: GetRunRequest,
) -> OperationResult[ReconciliationRun]:
    timer = start_timer()

    if not request.run_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        run = RunRepository(ctx.conn).get(request.run_id)
        if run is None:
            return OperationResult.fail(
                "NOT_FOUND", f"Run '{request.run_id}' not found", elapsed_ms=timer.elapsed_ms
            )
        return OperationResult.ok(run, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to get run: {exc}", elapsed_ms=timer.elapsed_ms
        )


def cancel_run(
    ctx: OperationContext,
    request: CancelRunRequest,
) -> OperationResult[ReconciliationRun]:
    """Cancel a pending or in-progress run; an in-flight scan's results are discarded."""
    timer = start_timer()

    if not request.run_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        runner = _runner(ctx)
        if ctx.dry_run:
            return OperationResult.ok(runner.get(request.run_id), elapsed_ms=timer.elapsed_ms)
        return OperationResult.ok(runner.cancel_run(request.run_id), elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to cancel run: {exc}", elapsed_ms=timer.elapsed_ms
        )


def get_run_report(
    ctx: OperationContext,
    request: GetRunReportRequest,
) -> OperationResult[RunReportView]:
    """A run plus the current resolution state of the discrepancies it detected."""
    timer = start_timer()

    if not request.run_id:
        return OperationResult.fail(
            "VALIDATION_FAILED", "run_id is required", elapsed_ms=timer.elapsed_ms
        )

    try:
        run = RunRepository(ctx.conn).get(request.run_id)
        if run is None:
            return OperationResult.fail(
                "NOT_FOUND", f"Run '{request.run_id}' not found", elapsed_ms=timer.elapsed_ms
            )
        view = RunReportView(run=run)
        for row in DiscrepancyRepository(ctx.conn).counts_for_run(run.id):
            view.by_type[row["discrepancy_type"]] = (
                view.by_type.get(row["discrepancy_type"], 0) + row["cnt"]
            )
            view.by_resolution[row["resolution_status"]] = (
                view.by_resolution.get(row["resolution_status"], 0) + row["cnt"]
            )
        return OperationResult.ok(view, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to build run report: {exc}", elapsed_ms=timer.elapsed_ms
        )


def resume_run(
    ctx: OperationContext,
    request: ResumeRunRequest,
) -> OperationResult[RunReport]:
    """Start a fresh pass for a failed or cancelled run.

    Under ``ctx.dry_run`` the run is only checked for being resumable and
    returned as is.
    """
    timer = start_timer()

    for name in ("connector_id", "run_id"):
        if not getattr(request, name):
            return OperationResult.fail(
                "VALIDATION_FAILED", f"{name} is required", elapsed_ms=timer.elapsed_ms
            )

    try:
        runner = _runner(ctx)
        if ctx.dry_run:
            original = runner.resumable(request.run_id, request.connector_id)
            return OperationResult.ok(RunReport(original), elapsed_ms=timer.elapsed_ms)
        report = runner.resume_run(request.run_id, connector_id=request.connector_id)
        warnings = None
        if report.run.status is RunStatus.FAILED:
            warnings = [f"Run failed: {report.run.error}"]
        return OperationResult.ok(report, warnings=warnings, elapsed_ms=timer.elapsed_ms)
    except ReconError as exc:
        return OperationResult.from_error(exc, elapsed_ms=timer.elapsed_ms)
    except Exception as exc:
        logger.exception("op_failed", error=str(exc))
        return OperationResult.fail(
            "INTERNAL", f"Failed to resume run: {exc}", elapsed_ms=timer.elapsed_ms
        )
