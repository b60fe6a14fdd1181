"""
Tests for OperationEngine: execution, retry budget, dead letters,
idempotency keys, awaiting confirmation and operator actions.
"""

from __future__ import annotations

import sqlite3
from datetime import timedelta

import pytest

from reconspine.core.connection import transaction
from reconspine.core.enums import (
    AttemptOutcome,
    Direction,
    DiscrepancyType,
    OperationStatus,
    OperationType,
    ResolutionStatus,
)
from reconspine.core.errors import (
    ActiveOperationError,
    ConfigError,
    ErrorKind,
    InvalidTransitionError,
    NotFoundError,
    PermanentConnectorError,
    StaleVersionError,
    TransientConnectorError,
)
from reconspine.core.models import ApplyReceipt, Operation, OperationDraft
from reconspine.core.repositories import DiscrepancyRepository, OperationRepository
from reconspine.core.result import Err
from reconspine.execution.engine import OperationEngine, to_connector_error
from reconspine.execution.retry import ExponentialBackoff
from reconspine.execution.timeout import TimeoutExpired
from reconspine.reconciliation.remediation import RemediationService
from tests._support.fakes import CONNECTOR, entity, seed_discrepancy

S = OperationStatus


def _submit_create(engine, conn) -> Operation:
    discrepancy = seed_discrepancy(conn)
    outcome = RemediationService(engine).remediate(
        discrepancy.id, "create", "source_to_target"
    )
    return outcome.operation


def _statuses(engine, operation_id):
    events, _ = engine.events(operation_id)
    return [e.to_status for e in events]


class TestToConnectorError:
    def test_connector_errors_pass_through(self):
        err = PermanentConnectorError("bad attribute")
        assert to_connector_error(err) is err

    def test_timeout_becomes_transient_timeout(self):
        converted = to_connector_error(TimeoutExpired(timeout=2.0, operation="x.apply"))
        assert converted.kind is ErrorKind.TRANSIENT
        assert converted.timeout == 2.0

    def test_config_error_is_permanent(self):
        converted = to_connector_error(ConfigError("no adapter"))
        assert converted.kind is ErrorKind.PERMANENT

    def test_anything_else_is_transient(self):
        converted = to_connector_error(RuntimeError("socket closed"))
        assert converted.kind is ErrorKind.TRANSIENT
        assert converted.message == "RuntimeError: socket closed"


class TestSubmit:
    def test_submit_creates_pending_operation_due_now(self, engine, conn, clock):
        op = _submit_create(engine, conn)

        assert op.status is S.PENDING
        assert op.version == 0
        assert op.retry_count == 0
        assert op.max_retries == 3
        assert op.next_retry_at == clock.now
        assert op.operation_type is OperationType.CREATE
        assert op.target_entity_ref == "alice"
        assert op.payload == {
            "attributes": {"mail": "alice@example.com"},
            "correlation_key": "alice",
        }
        assert _statuses(engine, op.id) == [S.PENDING]

    def test_submit_attaches_operation_to_discrepancy(self, engine, conn):
        op = _submit_create(engine, conn)

        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.active_operation_id == op.id

    def test_explicit_zero_max_retries_is_kept(self, engine, target):
        draft = OperationDraft(
            connector_id=CONNECTOR,
            operation_type=OperationType.UPDATE,
            direction=Direction.SOURCE_TO_TARGET,
            target_entity_ref="alice",
            payload={"attributes": {"mail": "alice@example.com"}},
        )
        target.outcomes = [TransientConnectorError("busy")]

        op = engine.submit(draft, max_retries=0)

        assert op.max_retries == 0
        assert engine.execute(op.id).status is S.DEAD_LETTER

    def test_second_active_operation_is_rejected(self, engine, conn):
        op = _submit_create(engine, conn)
        draft = OperationDraft(
            connector_id=CONNECTOR,
            operation_type=OperationType.DELETE,
            direction=Direction.SOURCE_TO_TARGET,
            target_entity_ref="alice",
            payload={},
            discrepancy_id=op.discrepancy_id,
        )

        with pytest.raises(ActiveOperationError):
            engine.submit(draft)

    def test_database_rejects_two_active_operations(self, engine, conn, clock):
        op = _submit_create(engine, conn)
        duplicate = Operation(
            id="op-dup",
            connector_id=CONNECTOR,
            operation_type=OperationType.DELETE,
            direction=Direction.SOURCE_TO_TARGET,
            target_entity_ref="alice",
            discrepancy_id=op.discrepancy_id,
            created_at=clock(),
            updated_at=clock(),
        )

        with pytest.raises(sqlite3.IntegrityError):
            with transaction(conn):
                OperationRepository(conn).create(duplicate)

    def test_get_unknown_operation(self, engine):
        with pytest.raises(NotFoundError):
            engine.get("missing")


class TestExecuteSuccess:
    def test_create_completes_and_resolves_discrepancy(self, engine, conn, target):
        op = _submit_create(engine, conn)

        done = engine.execute(op.id)

        assert done.status is S.COMPLETED
        assert done.external_ref == "ext-alice"
        assert target.apply_count == 1
        request = target.calls[0]
        assert request.idempotency_key == f"{op.id}:0:0"
        assert request.operation_type is OperationType.CREATE

        attempts, total = engine.attempts.list_for_operation(op.id)
        assert total == 1
        assert attempts[0].outcome is AttemptOutcome.SUCCESS
        assert attempts[0].idempotency_key == f"{op.id}:0:0"

        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.RESOLVED
        assert discrepancy.resolved_operation_id == op.id
        assert discrepancy.active_operation_id is None
        assert _statuses(engine, op.id) == [S.PENDING, S.IN_PROGRESS, S.COMPLETED]

    def test_execute_only_runs_pending_operations(self, engine, conn):
        op = _submit_create(engine, conn)
        engine.execute(op.id)

        with pytest.raises(InvalidTransitionError):
            engine.execute(op.id)

    def test_stale_copy_cannot_transition(self, engine, conn, clock):
        op = _submit_create(engine, conn)
        engine.cancel(op.id)

        with pytest.raises(StaleVersionError):
            with transaction(conn):
                engine._transition(op, S.IN_PROGRESS, clock(), "claimed")


class TestExecuteFailure:
    def test_transient_failure_schedules_backoff(self, engine, conn, target, clock):
        target.outcomes = [TransientConnectorError("503 from directory")]
        op = _submit_create(engine, conn)

        failed = engine.execute(op.id)

        assert failed.status is S.PENDING
        assert failed.retry_count == 1
        assert failed.next_retry_at == clock.now + timedelta(seconds=10)
        assert failed.last_error == "transient: 503 from directory"
        assert _statuses(engine, op.id) == [S.PENDING, S.IN_PROGRESS, S.FAILED, S.PENDING]

    def test_backoff_doubles_per_failure(self, engine, conn, target, clock):
        target.outcomes = [TransientConnectorError("down")] * 2
        op = _submit_create(engine, conn)

        engine.execute(op.id)
        second = engine.execute(op.id)

        assert second.retry_count == 2
        assert second.next_retry_at == clock.now + timedelta(seconds=20)

    def test_injected_retry_strategy_leaves_retry_callable(self, conn, registry, settings, target, clock):
        engine = OperationEngine(
            conn, registry, settings=settings, retry=ExponentialBackoff(max_retries=1, base_delay=5.0), clock=clock
        )
        target.outcomes = [TransientConnectorError("down")]
        op = _submit_create(engine, conn)

        dead = engine.execute(op.id)
        retried = engine.retry(op.id)

        assert op.max_retries == 1
        assert dead.status is S.DEAD_LETTER
        assert retried.status is S.PENDING
        assert retried.retry_count == 0

    def test_raised_exception_counts_as_transient(self, engine, conn, target):
        target.outcomes = [RuntimeError("boom")]
        op = _submit_create(engine, conn)

        failed = engine.execute(op.id)

        assert failed.status is S.PENDING
        attempts, _ = engine.attempts.list_for_operation(op.id)
        assert attempts[0].error_kind is ErrorKind.TRANSIENT
        assert attempts[0].error_detail == "transient: RuntimeError: boom"

    def test_exhausted_budget_dead_letters(self, engine, conn, target, clock):
        target.outcomes = [TransientConnectorError("down")] * 3
        op = _submit_create(engine, conn)

        for _ in range(3):
            result = engine.execute(op.id)
            clock.advance(60)

        assert result.status is S.DEAD_LETTER
        assert result.retry_count == 3
        assert _statuses(engine, op.id) == [
            S.PENDING,
            S.IN_PROGRESS, S.FAILED, S.PENDING,
            S.IN_PROGRESS, S.FAILED, S.PENDING,
            S.IN_PROGRESS, S.FAILED, S.DEAD_LETTER,
        ]
        attempts, total = engine.attempts.list_for_operation(op.id)
        assert total == 3
        assert [a.idempotency_key for a in attempts] == [
            f"{op.id}:0:0", f"{op.id}:0:1", f"{op.id}:0:2",
        ]
        assert all(a.outcome is AttemptOutcome.FAILURE for a in attempts)

    def test_permanent_error_dead_letters_immediately(self, engine, conn, target):
        target.outcomes = [PermanentConnectorError("schema violation")]
        op = _submit_create(engine, conn)

        result = engine.execute(op.id)

        assert result.status is S.DEAD_LETTER
        attempts, total = engine.attempts.list_for_operation(op.id)
        assert total == 1
        assert attempts[0].error_kind is ErrorKind.PERMANENT
        assert attempts[0].error_detail == "permanent: schema violation"

    def test_returned_err_is_recorded(self, engine, conn, target):
        target.outcomes = [Err(TransientConnectorError("throttled"))]
        op = _submit_create(engine, conn)

        result = engine.execute(op.id)

        assert result.status is S.PENDING
        assert result.last_error == "transient: throttled"

    def test_dead_letter_keeps_discrepancy_attached(self, engine, conn, target):
        target.outcomes = [PermanentConnectorError("nope")]
        op = _submit_create(engine, conn)
        engine.execute(op.id)

        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.PENDING
        assert discrepancy.active_operation_id == op.id

    def test_unknown_connector_is_permanent(self, conn, settings, clock):
        from reconspine.execution.connectors import ConnectorRegistry
        from reconspine.execution.engine import OperationEngine

        engine = OperationEngine(conn, ConnectorRegistry(), settings=settings, clock=clock)
        op = _submit_create(engine, conn)

        result = engine.execute(op.id)

        assert result.status is S.DEAD_LETTER
        assert result.last_error.startswith("permanent:")


@pytest.mark.slow
class TestExecuteTimeout:
    def test_slow_connector_times_out_as_transient(self, conn, registry, target, clock):
        import time

        from reconspine.core.settings import ReconSettings
        from reconspine.execution.engine import OperationEngine

        settings = ReconSettings(connector_timeout_seconds=0.05, backoff_base_seconds=1.0)
        engine = OperationEngine(conn, registry, settings=settings, clock=clock)
        target.before_apply = lambda request: time.sleep(0.5)
        op = _submit_create(engine, conn)

        result = engine.execute(op.id)

        assert result.status is S.PENDING
        attempts, _ = engine.attempts.list_for_operation(op.id)
        assert attempts[0].error_kind is ErrorKind.TRANSIENT
        assert "timed out" in attempts[0].error_detail


class TestIdempotency:
    def test_stale_claim_reruns_with_same_key(self, engine, conn, target, clock):
        op = _submit_create(engine, conn)
        claimed = engine._claim(op.id)
        # the abandoned call reached the target before the worker died
        target.effects[claimed.idempotency_key] = object()

        clock.advance(engine.settings.stale_after_seconds + 1)
        assert engine.requeue_stale() == [op.id]
        requeued = engine.get(op.id)
        assert requeued.status is S.PENDING
        assert requeued.retry_count == 0
        assert requeued.started_at is None

        done = engine.execute(op.id)

        assert done.status is S.COMPLETED
        assert target.calls[0].idempotency_key == f"{op.id}:0:0"
        assert target.calls[0].idempotency_key in target.effects
        assert len(target.effects) == 1

    def test_fresh_claims_are_not_requeued(self, engine, conn, clock):
        op = _submit_create(engine, conn)
        engine._claim(op.id)
        clock.advance(5)

        assert engine.requeue_stale() == []
        assert engine.get(op.id).status is S.IN_PROGRESS

    def test_retry_from_dead_letter_starts_new_series(self, engine, conn, target, clock):
        target.outcomes = [PermanentConnectorError("locked account")]
        op = _submit_create(engine, conn)
        engine.execute(op.id)
        clock.advance(60)

        retried = engine.retry(op.id, note="unlocked")

        assert retried.status is S.PENDING
        assert retried.retry_count == 0
        assert retried.retry_series == 1
        assert retried.idempotency_key == f"{op.id}:1:0"

        clock.advance(1)
        done = engine.execute(op.id)
        assert done.status is S.COMPLETED
        attempts, _ = engine.attempts.list_for_operation(op.id)
        assert [a.idempotency_key for a in attempts] == [f"{op.id}:0:0", f"{op.id}:1:0"]


class TestAwaitingConfirmation:
    def test_awaiting_receipt_records_the_call(self, engine, conn, target):
        target.outcomes = [ApplyReceipt(external_ref="ticket-7", awaiting_confirmation=True)]
        op = _submit_create(engine, conn)

        parked = engine.execute(op.id)

        assert parked.status is S.AWAITING_SYSTEM
        assert parked.external_ref == "ticket-7"
        attempts, total = engine.attempts.list_for_operation(op.id)
        assert total == 1
        assert attempts[0].outcome is AttemptOutcome.SUCCESS
        assert attempts[0].idempotency_key == f"{op.id}:0:0"
        assert attempts[0].error_detail == "awaiting confirmation"

    def test_confirm_success_completes(self, engine, conn, target, clock):
        target.outcomes = [ApplyReceipt(external_ref="ticket-7", awaiting_confirmation=True)]
        op = _submit_create(engine, conn)
        engine.execute(op.id)
        clock.advance(30)

        done = engine.confirm(op.id, True, detail="provisioned")

        assert done.status is S.COMPLETED
        attempts, total = engine.attempts.list_for_operation(op.id)
        assert total == 2
        assert [a.idempotency_key for a in attempts] == [f"{op.id}:0:0", f"{op.id}:0:0:confirmation"]
        assert attempts[1].outcome is AttemptOutcome.SUCCESS
        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.RESOLVED

    def test_confirm_failure_takes_retry_path(self, engine, conn, target, clock):
        target.outcomes = [ApplyReceipt(awaiting_confirmation=True)]
        op = _submit_create(engine, conn)
        engine.execute(op.id)
        clock.advance(30)

        result = engine.confirm(op.id, False, detail="rejected by approver")

        assert result.status is S.PENDING
        assert result.retry_count == 1
        assert result.last_error == "transient: rejected by approver"
        attempts, _ = engine.attempts.list_for_operation(op.id)
        assert [a.outcome for a in attempts] == [AttemptOutcome.SUCCESS, AttemptOutcome.FAILURE]

        clock.advance(3600)
        assert engine.execute(op.id).status is S.COMPLETED
        assert target.calls[-1].idempotency_key == f"{op.id}:0:1"

    def test_cancel_while_awaiting_keeps_the_call_attempt(self, engine, conn, target):
        target.outcomes = [ApplyReceipt(awaiting_confirmation=True)]
        op = _submit_create(engine, conn)
        engine.execute(op.id)

        cancelled = engine.cancel(op.id, reason="ticket withdrawn")

        assert cancelled.status is S.CANCELLED
        assert engine.attempts.list_for_operation(op.id)[1] == 1

    def test_confirm_requires_awaiting_status(self, engine, conn):
        op = _submit_create(engine, conn)

        with pytest.raises(InvalidTransitionError):
            engine.confirm(op.id, True)


class TestOperatorActions:
    def test_cancel_pending_releases_discrepancy(self, engine, conn):
        op = _submit_create(engine, conn)

        cancelled = engine.cancel(op.id, reason="handled manually")

        assert cancelled.status is S.CANCELLED
        assert cancelled.resolution_notes == "handled manually"
        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.PENDING
        assert discrepancy.active_operation_id is None

    def test_cancel_during_call_discards_outcome(self, engine, conn, target):
        op = _submit_create(engine, conn)
        target.before_apply = lambda request: engine.cancel(request.operation_id, reason="operator")

        result = engine.execute(op.id)

        assert result.status is S.CANCELLED
        assert engine.get(op.id).status is S.CANCELLED
        assert engine.attempts.list_for_operation(op.id)[1] == 0
        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.PENDING

    def test_cancel_terminal_operation_fails(self, engine, conn):
        op = _submit_create(engine, conn)
        engine.execute(op.id)

        with pytest.raises(InvalidTransitionError):
            engine.cancel(op.id)

    def test_retry_requires_failed_or_dead_letter(self, engine, conn):
        op = _submit_create(engine, conn)

        with pytest.raises(InvalidTransitionError):
            engine.retry(op.id)

    def test_resolve_dead_letter_resolves_discrepancy(self, engine, conn, target):
        target.outcomes = [PermanentConnectorError("nope")]
        op = _submit_create(engine, conn)
        engine.execute(op.id)

        resolved = engine.resolve(op.id, notes="fixed by hand")

        assert resolved.status is S.RESOLVED
        assert resolved.resolution_notes == "fixed by hand"
        discrepancy = DiscrepancyRepository(conn).get(op.discrepancy_id)
        assert discrepancy.resolution_status is ResolutionStatus.RESOLVED
        assert discrepancy.resolved_operation_id == op.id

    def test_resolve_requires_dead_letter(self, engine, conn):
        op = _submit_create(engine, conn)

        with pytest.raises(InvalidTransitionError):
            engine.resolve(op.id)

    def test_cancelled_discrepancy_can_be_remediated_again(self, engine, conn):
        op = _submit_create(engine, conn)
        engine.cancel(op.id)

        again = RemediationService(engine).remediate(
            op.discrepancy_id, "create", "source_to_target"
        )

        assert again.operation.id != op.id
        assert again.operation.status is S.PENDING


class TestUpdateDirection:
    def test_target_to_source_update_writes_to_source(self, engine, conn, source, target):
        source_entity = entity("u-1", "alice", mail="alice@example.com")
        target_entity = entity("t-1", "alice", mail="alice@corp.example", linked_ref="u-1")
        source.entities["u-1"] = source_entity
        discrepancy = seed_discrepancy(
            conn, DiscrepancyType.MISMATCH, source=source_entity, target=target_entity
        )

        op = RemediationService(engine).remediate(
            discrepancy.id, "update", "target_to_source"
        ).operation
        done = engine.execute(op.id)

        assert done.status is S.COMPLETED
        assert target.apply_count == 0
        assert source.calls[0].target_entity_ref == "u-1"
        assert source.calls[0].payload == {"attributes": {"mail": "alice@corp.example"}}
