"""
Tests for OperationWorker polling, dispatch and per-connector limits.
"""

from __future__ import annotations

import pytest

from reconspine.core.enums import OperationStatus
from reconspine.core.errors import TransientConnectorError
from reconspine.core.settings import ReconSettings
from reconspine.execution.concurrency import ConnectorLimiter
from reconspine.execution.worker import OperationWorker, WorkerStats
from reconspine.reconciliation.remediation import RemediationService
from tests._support.fakes import CONNECTOR, entity, seed_discrepancy


def _submit(engine, conn, count: int) -> list[str]:
    service = RemediationService(engine)
    ids = []
    for i in range(count):
        discrepancy = seed_discrepancy(conn, source=entity(f"u-{i}", f"user{i}", mail=f"user{i}@example.com"))
        ids.append(service.remediate(discrepancy.id, "create", "source_to_target").operation.id)
    return ids


@pytest.fixture()
def worker(engine):
    w = OperationWorker(engine, max_threads=4, batch_size=10, poll_interval=0.01)
    yield w
    w.close()


class TestRunOnce:
    def test_dispatches_due_operations(self, worker, engine, conn, target):
        ids = _submit(engine, conn, 2)

        dispatched = worker.run_once(wait_for_completion=True)

        assert dispatched == 2
        assert all(engine.get(i).status is OperationStatus.COMPLETED for i in ids)
        stats = worker.get_stats()
        assert stats.total_dispatched == 2
        assert stats.total_completed == 2
        assert stats.active == 0
        assert target.apply_count == 2

    def test_nothing_due(self, worker):
        assert worker.run_once(wait_for_completion=True) == 0
        assert worker.get_stats().last_poll_at is not None

    def test_backoff_delays_next_dispatch(self, worker, engine, conn, target, clock):
        target.outcomes = [TransientConnectorError("down")]
        (op_id,) = _submit(engine, conn, 1)

        worker.run_once(wait_for_completion=True)
        assert engine.get(op_id).status is OperationStatus.PENDING
        assert worker.get_stats().total_retrying == 1

        assert worker.run_once(wait_for_completion=True) == 0

        clock.advance(10)
        assert worker.run_once(wait_for_completion=True) == 1
        assert engine.get(op_id).status is OperationStatus.COMPLETED

    def test_saturated_connector_is_skipped(self, worker, engine, conn):
        _submit(engine, conn, 3)
        assert worker.limiter.try_acquire(CONNECTOR)
        assert worker.limiter.try_acquire(CONNECTOR)

        dispatched = worker.run_once(wait_for_completion=True)

        assert dispatched == 0
        assert worker.get_stats().total_saturated == 3

        worker.limiter.release(CONNECTOR)
        worker.limiter.release(CONNECTOR)

    def test_dead_letters_are_counted(self, worker, engine, conn, target):
        from reconspine.core.errors import PermanentConnectorError

        target.outcomes = [PermanentConnectorError("rejected")]
        _submit(engine, conn, 1)

        worker.run_once(wait_for_completion=True)

        assert worker.get_stats().total_dead_lettered == 1

    def test_stale_claims_requeued_on_first_poll(self, worker, engine, conn, clock):
        (op_id,) = _submit(engine, conn, 1)
        engine._claim(op_id)
        clock.advance(engine.settings.stale_after_seconds + 1)

        worker.run_once(wait_for_completion=True)

        assert worker.get_stats().total_requeued == 1
        assert engine.get(op_id).status is OperationStatus.COMPLETED


class TestWorkerStats:
    def test_to_dict_has_counters(self):
        d = WorkerStats().to_dict()
        assert d["total_dispatched"] == 0
        assert d["total_saturated"] == 0


class TestConnectorLimiter:
    def test_default_and_override_limits(self):
        settings = ReconSettings(default_connector_concurrency=2, connector_concurrency={"hr": 1})
        limiter = ConnectorLimiter(settings)

        assert limiter.limit_for("hr") == 1
        assert limiter.limit_for("ldap") == 2

    def test_try_acquire_respects_limit(self):
        limiter = ConnectorLimiter(ReconSettings(connector_concurrency={"hr": 1}))

        assert limiter.try_acquire("hr")
        assert not limiter.try_acquire("hr")
        assert limiter.in_flight("hr") == 1
        assert limiter.snapshot() == {"hr": 1}

        limiter.release("hr")
        assert limiter.in_flight("hr") == 0
        assert limiter.try_acquire("hr")

    def test_slot_context_releases(self):
        limiter = ConnectorLimiter(ReconSettings(connector_concurrency={"hr": 1}))

        with limiter.slot("hr"):
            assert limiter.in_flight("hr") == 1
        assert limiter.in_flight("hr") == 0
        assert limiter.snapshot() == {}
