"""
Tests for operation, dead-letter and conflict operations.
"""

from __future__ import annotations

import pytest

from reconspine.core.enums import DiscrepancyType, OperationStatus
from reconspine.core.errors import PermanentConnectorError
from reconspine.core.models import ApplyReceipt
from reconspine.ops.conflicts import get_conflict, list_conflicts
from reconspine.ops.dlq import list_dead_letter
from reconspine.ops.operations import (
    cancel_operation,
    confirm_operation,
    get_operation,
    list_operation_attempts,
    list_operation_logs,
    list_operations,
    operation_stats,
    resolve_operation,
    retry_operation,
)
from reconspine.ops.requests import (
    CancelOperationRequest,
    ConfirmOperationRequest,
    GetConflictRequest,
    GetOperationRequest,
    ListConflictsRequest,
    ListDeadLetterRequest,
    ListOperationAttemptsRequest,
    ListOperationLogsRequest,
    ListOperationsRequest,
    OperationStatsRequest,
    ResolveOperationRequest,
    RetryOperationRequest,
)
from reconspine.reconciliation.remediation import RemediationService
from tests._support.fakes import CONNECTOR, entity, seed_discrepancy

S = OperationStatus


@pytest.fixture()
def pending(engine, conn):
    d = seed_discrepancy(conn)
    return RemediationService(engine).remediate(d.id, "create", "source_to_target").operation


@pytest.fixture()
def dead_letter(engine, target, pending):
    target.outcomes = [PermanentConnectorError("schema violation")]
    return engine.execute(pending.id)


@pytest.fixture()
def awaiting(engine, target, pending):
    target.outcomes = [ApplyReceipt(external_ref="ticket-7", awaiting_confirmation=True)]
    return engine.execute(pending.id)


class TestGetOperation:
    def test_detail(self, ctx, engine, pending):
        engine.execute(pending.id)

        result = get_operation(ctx, GetOperationRequest(operation_id=pending.id))

        assert result.success
        detail = result.data
        assert detail.operation.status is S.COMPLETED
        assert len(detail.attempts) == 1
        assert [e.to_status for e in detail.events] == [S.PENDING, S.IN_PROGRESS, S.COMPLETED]
        assert detail.conflict is None
        assert result.to_dict()["data"]["attempts"][0]["outcome"] == "success"

    def test_not_found(self, ctx):
        assert get_operation(ctx, GetOperationRequest(operation_id="nope")).error.code == "NOT_FOUND"

    def test_requires_id(self, ctx):
        assert get_operation(ctx, GetOperationRequest()).error.code == "VALIDATION_FAILED"


class TestListOperations:
    def test_filter_by_status(self, ctx, pending):
        result = list_operations(ctx, ListOperationsRequest(status="pending", connector_id=CONNECTOR))

        assert result.total == 1
        assert result.data[0].id == pending.id
        assert list_operations(ctx, ListOperationsRequest(status="completed")).total == 0

    def test_unknown_status(self, ctx):
        result = list_operations(ctx, ListOperationsRequest(status="sleeping"))

        assert result.error.code == "VALIDATION_FAILED"

    def test_attempts_and_logs(self, ctx, dead_letter):
        attempts = list_operation_attempts(ctx, ListOperationAttemptsRequest(operation_id=dead_letter.id))
        logs = list_operation_logs(ctx, ListOperationLogsRequest(operation_id=dead_letter.id))

        assert attempts.total == 1
        assert attempts.data[0].error_detail == "permanent: schema violation"
        assert [e.to_status for e in logs.data][-1] is S.DEAD_LETTER

    @pytest.mark.parametrize("op", [list_operation_attempts, list_operation_logs])
    def test_history_of_unknown_operation(self, ctx, op):
        request_cls = (
            ListOperationAttemptsRequest if op is list_operation_attempts else ListOperationLogsRequest
        )
        assert op(ctx, request_cls(operation_id="nope")).error.code == "NOT_FOUND"


class TestRetryOperation:
    def test_retry_dead_letter(self, ctx, dead_letter):
        result = retry_operation(ctx, RetryOperationRequest(operation_id=dead_letter.id, note="fixed schema"))

        assert result.success
        assert result.data.status is S.PENDING
        assert result.data.retry_series == 1
        assert result.data.retry_count == 0

    def test_dry_run_previews(self, dry_ctx, dead_letter):
        result = retry_operation(dry_ctx, RetryOperationRequest(operation_id=dead_letter.id))

        assert result.success
        assert result.data.status is S.DEAD_LETTER

    def test_pending_cannot_be_retried(self, ctx, dry_ctx, pending):
        assert retry_operation(ctx, RetryOperationRequest(operation_id=pending.id)).error.code == "INVALID_STATE"
        assert retry_operation(dry_ctx, RetryOperationRequest(operation_id=pending.id)).error.code == "INVALID_STATE"


class TestCancelOperation:
    def test_cancel_pending_releases_discrepancy(self, ctx, pending):
        result = cancel_operation(ctx, CancelOperationRequest(operation_id=pending.id, reason="wrong action"))

        assert result.data.status is S.CANCELLED
        assert result.data.resolution_notes == "wrong action"

    def test_dry_run_previews(self, dry_ctx, pending):
        result = cancel_operation(dry_ctx, CancelOperationRequest(operation_id=pending.id))

        assert result.data.status is S.PENDING

    def test_dead_letter_cannot_be_cancelled(self, ctx, dead_letter):
        result = cancel_operation(ctx, CancelOperationRequest(operation_id=dead_letter.id))

        assert result.error.code == "INVALID_STATE"

    def test_not_found(self, ctx):
        assert cancel_operation(ctx, CancelOperationRequest(operation_id="nope")).error.code == "NOT_FOUND"


class TestResolveOperation:
    def test_resolve_dead_letter(self, ctx, dead_letter):
        result = resolve_operation(ctx, ResolveOperationRequest(operation_id=dead_letter.id, notes="by hand"))

        assert result.data.status is S.RESOLVED

    def test_pending_cannot_be_resolved(self, ctx, pending):
        result = resolve_operation(ctx, ResolveOperationRequest(operation_id=pending.id))

        assert result.error.code == "INVALID_STATE"


class TestConfirmOperation:
    def test_confirm_success(self, ctx, awaiting):
        assert awaiting.status is S.AWAITING_SYSTEM

        result = confirm_operation(
            ctx, ConfirmOperationRequest(operation_id=awaiting.id, external_ref="uid=alice")
        )

        assert result.data.status is S.COMPLETED

    def test_confirm_failure_schedules_retry(self, ctx, awaiting):
        result = confirm_operation(
            ctx,
            ConfirmOperationRequest(operation_id=awaiting.id, succeeded=False, detail="ticket rejected"),
        )

        assert result.data.status is S.PENDING
        assert result.data.retry_count == 1
        assert result.data.last_error == "transient: ticket rejected"

    def test_dry_run_previews(self, dry_ctx, awaiting):
        result = confirm_operation(dry_ctx, ConfirmOperationRequest(operation_id=awaiting.id))

        assert result.data.status is S.AWAITING_SYSTEM

    def test_only_awaiting_operations(self, ctx, dry_ctx, pending):
        request = ConfirmOperationRequest(operation_id=pending.id)

        assert confirm_operation(ctx, request).error.code == "INVALID_STATE"
        assert confirm_operation(dry_ctx, request).error.code == "INVALID_STATE"


class TestOperationStats:
    def test_counts_by_status(self, ctx, engine, conn, dead_letter):
        d = seed_discrepancy(conn, source=entity("u-2", "bob"))
        RemediationService(engine).remediate(d.id, "create", "source_to_target")

        result = operation_stats(ctx, OperationStatsRequest())

        assert result.success
        [queue] = result.data.connectors
        assert queue.connector_id == CONNECTOR
        assert queue.by_status == {"dead_letter": 1, "pending": 1}
        assert queue.total == 2
        assert result.data.totals["completed"] == 0
        assert result.data.totals["dead_letter"] == 1


class TestDeadLetterOps:
    def test_list(self, ctx, dead_letter):
        result = list_dead_letter(ctx, ListDeadLetterRequest())

        assert result.total == 1
        assert result.data[0]["id"] == dead_letter.id
        assert result.data[0]["attempts"][0]["outcome"] == "failure"

    def test_empty_for_other_connector(self, ctx, dead_letter):
        assert list_dead_letter(ctx, ListDeadLetterRequest(connector_id="hr-main")).total == 0


class TestConflictOps:
    @pytest.fixture()
    def superseded(self, engine, conn, source, target):
        source_entity = entity("u-1", "alice", groups=["staff", "vpn"])
        target_entity = entity("t-1", "alice", groups=["staff"], linked_ref="u-1")
        d = seed_discrepancy(conn, DiscrepancyType.MISMATCH, source=source_entity, target=target_entity)
        op = RemediationService(engine).remediate(d.id, "update", "source_to_target").operation
        target.entities["t-1"] = entity("t-1", "alice", groups=["staff", "vpn"], linked_ref="u-1")
        return engine.execute(op.id)

    def test_list_and_get(self, ctx, superseded):
        listed = list_conflicts(ctx, ListConflictsRequest(outcome="superseded"))

        assert listed.total == 1
        record = listed.data[0]
        assert record.operation_id == superseded.id

        fetched = get_conflict(ctx, GetConflictRequest(conflict_id=record.id))
        assert fetched.data.id == record.id

    def test_filter_by_operation(self, ctx, superseded):
        assert list_conflicts(ctx, ListConflictsRequest(operation_id="other")).total == 0
        assert list_conflicts(ctx, ListConflictsRequest(connector_id=CONNECTOR)).total == 1

    def test_unknown_outcome(self, ctx):
        assert list_conflicts(ctx, ListConflictsRequest(outcome="maybe")).error.code == "VALIDATION_FAILED"

    def test_get_missing(self, ctx):
        assert get_conflict(ctx, GetConflictRequest(conflict_id="nope")).error.code == "NOT_FOUND"
        assert get_conflict(ctx, GetConflictRequest()).error.code == "VALIDATION_FAILED"
