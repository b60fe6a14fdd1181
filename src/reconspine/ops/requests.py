"""
Typed request objects for operations.

Each dataclass represents the *input* contract for a single operation
function.  Requests carry only transport-agnostic data; enum-valued fields
arrive as plain strings and are parsed by the operation, so an unknown
value surfaces as ``VALIDATION_FAILED`` rather than an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ------------------------------------------------------------------ #
# Discrepancy operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListDiscrepanciesRequest:
    """Request for :func:`reconspine.ops.discrepancies.list_discrepancies`.

    Attributes:
        connector_id: Filter by connector.
        run_id: Only discrepancies detected by this run.
        discrepancy_type: ``missing``, ``orphan``, ``mismatch``, ...
        resolution_status: ``pending``, ``resolved`` or ``ignored``.
        source_ref: Filter by the source-side ref.
        target_ref: Filter by the target-side ref.
        limit: Maximum items to return.
        offset: Pagination offset.
    """

    connector_id: str | None = None
    run_id: str | None = None
    discrepancy_type: str | None = None
    resolution_status: str | None = None
    source_ref: str | None = None
    target_ref: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetDiscrepancyRequest:
    discrepancy_id: str = ""


@dataclass(frozen=True, slots=True)
class RemediateRequest:
    """Request for :func:`reconspine.ops.discrepancies.remediate_discrepancy`."""

    connector_id: str = ""
    discrepancy_id: str = ""
    action: str = ""
    direction: str = ""
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class BulkRemediateRequest:
    """Request for :func:`reconspine.ops.discrepancies.bulk_remediate`.

    Each item is a mapping with ``discrepancy_id``, ``action`` and
    ``direction`` keys. Every item must belong to ``connector_id``.
    """

    connector_id: str = ""
    items: list[dict[str, Any]] = field(default_factory=list)
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class IgnoreDiscrepancyRequest:
    connector_id: str = ""
    discrepancy_id: str = ""


@dataclass(frozen=True, slots=True)
class DiscrepancyTrendRequest:
    """Daily detection counts for *connector_id* over the last *days* days."""

    connector_id: str = ""
    days: int = 30


# ------------------------------------------------------------------ #
# Operation operations
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class GetOperationRequest:
    operation_id: str = ""


@dataclass(frozen=True, slots=True)
class ListOperationsRequest:
    """Request for :func:`reconspine.ops.operations.list_operations`."""

    connector_id: str | None = None
    status: str | None = None
    operation_type: str | None = None
    discrepancy_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ListOperationAttemptsRequest:
    operation_id: str = ""
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ListOperationLogsRequest:
    operation_id: str = ""
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True, slots=True)
class RetryOperationRequest:
    operation_id: str = ""
    note: str | None = None


@dataclass(frozen=True, slots=True)
class CancelOperationRequest:
    operation_id: str = ""
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class ResolveOperationRequest:
    operation_id: str = ""
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class ConfirmOperationRequest:
    """Asynchronous confirmation from the target for an ``awaiting_system`` operation."""

    operation_id: str = ""
    succeeded: bool = True
    detail: str | None = None
    external_ref: str | None = None


@dataclass(frozen=True, slots=True)
class OperationStatsRequest:
    connector_id: str | None = None


# ------------------------------------------------------------------ #
# Dead letters and conflicts
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListDeadLetterRequest:
    connector_id: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class ListConflictsRequest:
    connector_id: str | None = None
    operation_id: str | None = None
    outcome: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetConflictRequest:
    conflict_id: str = ""


# ------------------------------------------------------------------ #
# Schedules
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class GetScheduleRequest:
    connector_id: str = ""


@dataclass(frozen=True, slots=True)
class ListSchedulesRequest:
    enabled: bool | None = None
    limit: int = 100
    offset: int = 0


@dataclass(frozen=True, slots=True)
class UpsertScheduleRequest:
    """Request for :func:`reconspine.ops.schedules.upsert_schedule`.

    Attributes:
        connector_id: One schedule per connector; an existing one is replaced.
        mode: ``full`` or ``delta``.
        frequency: ``hourly``, ``daily``, ``weekly``, ``monthly`` or ``cron``.
        cron_expression: Required for ``cron``, rejected otherwise.
        day_of_week: 0-6, 0 is Sunday (``weekly``).
        day_of_month: 1-28 (``monthly``).
        hour_of_day: 0-23, UTC (defaults to 0).
        enabled: Whether the scheduler fires it.
    """

    connector_id: str = ""
    mode: str = "full"
    frequency: str = "daily"
    cron_expression: str | None = None
    day_of_week: int | None = None
    day_of_month: int | None = None
    hour_of_day: int | None = None
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ToggleScheduleRequest:
    """Request for ``enable_schedule`` / ``disable_schedule``."""

    connector_id: str = ""


@dataclass(frozen=True, slots=True)
class DeleteScheduleRequest:
    connector_id: str = ""


# ------------------------------------------------------------------ #
# Runs
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class TriggerRunRequest:
    """Request for :func:`reconspine.ops.runs.trigger_run`."""

    connector_id: str = ""
    mode: str = "full"
    dry_run: bool = False


@dataclass(frozen=True, slots=True)
class ListRunsRequest:
    connector_id: str | None = None
    mode: str | None = None
    status: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass(frozen=True, slots=True)
class GetRunRequest:
    run_id: str = ""


@dataclass(frozen=True, slots=True)
class CancelRunRequest:
    run_id: str = ""


@dataclass(frozen=True, slots=True)
class ResumeRunRequest:
    """Request for :func:`reconspine.ops.runs.resume_run`."""

    connector_id: str = ""
    run_id: str = ""


@dataclass(frozen=True, slots=True)
class GetRunReportRequest:
    run_id: str = ""


# ------------------------------------------------------------------ #
# Remediation action log
# ------------------------------------------------------------------ #


@dataclass(frozen=True, slots=True)
class ListRemediationActionsRequest:
    connector_id: str | None = None
    discrepancy_id: str | None = None
    action: str | None = None
    result: str | None = None
    limit: int = 50
    offset: int = 0
