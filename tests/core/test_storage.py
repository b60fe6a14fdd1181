"""
Tests for the SQLite connection, schema and repositories.
"""

from __future__ import annotations

import sqlite3
from dataclasses import replace
from datetime import UTC, datetime

import pytest

from reconspine.core.connection import SqliteConnection, create_connection, transaction
from reconspine.core.enums import (
    AttemptOutcome,
    ConflictOutcome,
    Direction,
    DiscrepancyType,
    OperationStatus,
    OperationType,
    RunMode,
    RunStatus,
)
from reconspine.core.models import (
    Attempt,
    ConflictRecord,
    Discrepancy,
    Operation,
    ReconciliationRun,
    fingerprint,
)
from reconspine.core.repositories import (
    AttemptRepository,
    ConflictRepository,
    DiscrepancyRepository,
    OperationRepository,
    RunRepository,
)
from reconspine.core.schema import RECON_TABLES, create_tables
from tests._support.fakes import CONNECTOR, entity

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


def _operation(op_id: str = "op-1", **kwargs) -> Operation:
    return Operation(
        id=op_id,
        connector_id=CONNECTOR,
        operation_type=OperationType.UPDATE,
        direction=Direction.SOURCE_TO_TARGET,
        target_entity_ref="t-1",
        payload={"attributes": {"mail": "a@example.com"}},
        created_at=T0,
        updated_at=T0,
        next_retry_at=T0,
        **kwargs,
    )


class TestConnection:
    def test_transaction_commits(self, conn):
        with transaction(conn):
            OperationRepository(conn).create(_operation())

        assert OperationRepository(conn).get("op-1") is not None

    def test_transaction_rolls_back_on_error(self, conn):
        with pytest.raises(RuntimeError):
            with transaction(conn):
                OperationRepository(conn).create(_operation())
                raise RuntimeError("abort")

        assert OperationRepository(conn).get("op-1") is None

    def test_create_connection_file_path(self, tmp_path):
        db = tmp_path / "nested" / "recon.db"

        conn = create_connection(f"sqlite:///{db}", init_schema=True)
        try:
            assert db.exists()
            conn.execute("SELECT COUNT(*) FROM recon_operations")
        finally:
            conn.close()

    @pytest.mark.parametrize("url", [None, "memory", ":memory:", "sqlite:///:memory:"])
    def test_create_connection_memory(self, url):
        conn = create_connection(url)
        try:
            assert isinstance(conn, SqliteConnection)
        finally:
            conn.close()

    def test_create_tables_is_idempotent(self, conn):
        create_tables(conn)
        for table in RECON_TABLES.values():
            conn.execute(f"SELECT COUNT(*) FROM {table}")


class TestOperationRepository:
    def test_round_trip(self, conn):
        repo = OperationRepository(conn)
        with transaction(conn):
            repo.create(_operation(baseline={"ref": "t-1"}))

        op = repo.get("op-1")

        assert op.payload == {"attributes": {"mail": "a@example.com"}}
        assert op.baseline == {"ref": "t-1"}
        assert op.next_retry_at == T0
        assert op.idempotency_key == "op-1:0:0"

    def test_compare_and_set(self, conn):
        repo = OperationRepository(conn)
        with transaction(conn):
            repo.create(_operation())
            assert repo.compare_and_set(
                "op-1",
                expected_status=OperationStatus.PENDING,
                expected_version=0,
                new_status=OperationStatus.IN_PROGRESS,
                updated_at=T0,
                started_at=T0,
            )
            assert not repo.compare_and_set(
                "op-1",
                expected_status=OperationStatus.PENDING,
                expected_version=0,
                new_status=OperationStatus.CANCELLED,
                updated_at=T0,
            )

        op = repo.get("op-1")
        assert op.status is OperationStatus.IN_PROGRESS
        assert op.version == 1
        assert op.started_at == T0

    def test_list_due_respects_time_and_exclusions(self, conn):
        repo = OperationRepository(conn)
        with transaction(conn):
            repo.create(_operation("op-1"))
            repo.create(_operation("op-2"))
            later = _operation("op-3")
            later.next_retry_at = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
            repo.create(later)

        due = repo.list_due(T0, exclude_ids={"op-2"})

        assert [op.id for op in due] == ["op-1"]


class TestAttemptRepository:
    def test_idempotency_key_is_unique(self, conn):
        with transaction(conn):
            OperationRepository(conn).create(_operation())
        attempt = Attempt(
            id="a-1",
            operation_id="op-1",
            idempotency_key="op-1:0:0",
            outcome=AttemptOutcome.SUCCESS,
            attempted_at=T0,
        )
        repo = AttemptRepository(conn)
        with transaction(conn):
            repo.add(attempt)

        with pytest.raises(sqlite3.IntegrityError):
            with transaction(conn):
                repo.add(replace(attempt, id="a-2"))

    def test_grouped_listing(self, conn):
        with transaction(conn):
            OperationRepository(conn).create(_operation("op-1"))
            OperationRepository(conn).create(_operation("op-2"))
            for i, op_id in enumerate(["op-1", "op-1", "op-2"]):
                AttemptRepository(conn).add(
                    Attempt(
                        id=f"a-{i}",
                        operation_id=op_id,
                        idempotency_key=f"{op_id}:0:{i}",
                        outcome=AttemptOutcome.FAILURE,
                        attempted_at=T0,
                        retry_count=i,
                    )
                )

        grouped = AttemptRepository(conn).list_for_operations(["op-1", "op-2"])

        assert [a.id for a in grouped["op-1"]] == ["a-0", "a-1"]
        assert [a.id for a in grouped["op-2"]] == ["a-2"]


class TestConflictRepository:
    def test_add_once(self, conn):
        with transaction(conn):
            OperationRepository(conn).create(_operation())
        repo = ConflictRepository(conn)
        record = ConflictRecord(
            id="c-1",
            operation_id="op-1",
            outcome=ConflictOutcome.MERGED,
            decided_at=T0,
            baseline_snapshot={"attributes": {"groups": ["a"]}},
        )

        with transaction(conn):
            assert repo.add_once(record)
            assert not repo.add_once(replace(record, id="c-2"))

        assert repo.get_for_operation("op-1").id == "c-1"
        assert repo.get("c-1").baseline_snapshot == {"attributes": {"groups": ["a"]}}


class TestDiscrepancyRepository:
    def _discrepancy(self, d_id: str, dtype=DiscrepancyType.MISSING, **kwargs) -> Discrepancy:
        source = entity("u-1", "alice", mail="a@example.com")
        return Discrepancy(
            id=d_id,
            connector_id=CONNECTOR,
            discrepancy_type=dtype,
            source_ref=source.ref,
            source_snapshot=source.snapshot(),
            detected_at=T0,
            **kwargs,
        )

    def test_pending_keys(self, conn):
        repo = DiscrepancyRepository(conn)
        with transaction(conn):
            repo.create_many([self._discrepancy("d-1")])

        assert repo.pending_keys(CONNECTOR) == {(CONNECTOR, "missing", "u-1", None)}

    def test_attach_release_resolve(self, conn):
        repo = DiscrepancyRepository(conn)
        with transaction(conn):
            repo.create_many([self._discrepancy("d-1")])
            assert repo.attach_operation("d-1", "op-1")
            assert repo.release("d-1", "op-1")
            assert repo.attach_operation("d-1", "op-2")
            assert repo.mark_resolved("d-1", "op-2", T0)

        d = repo.get("d-1")
        assert d.resolution_status.value == "resolved"
        assert d.resolved_operation_id == "op-2"
        assert d.active_operation_id is None

    def test_filters(self, conn):
        repo = DiscrepancyRepository(conn)
        with transaction(conn):
            repo.create_many(
                [
                    self._discrepancy("d-1"),
                    self._discrepancy("d-2", DiscrepancyType.ORPHAN),
                ]
            )

        rows, total = repo.list_discrepancies(discrepancy_type="orphan")

        assert total == 1
        assert rows[0].id == "d-2"


class TestRunRepository:
    def test_last_successful_ignores_dry_runs(self, conn):
        repo = RunRepository(conn)
        with transaction(conn):
            repo.create(
                ReconciliationRun(
                    id="r-1", connector_id=CONNECTOR, mode=RunMode.FULL,
                    status=RunStatus.COMPLETED, started_at=T0, created_at=T0,
                )
            )
            repo.create(
                ReconciliationRun(
                    id="r-2", connector_id=CONNECTOR, mode=RunMode.FULL,
                    status=RunStatus.COMPLETED, dry_run=True,
                    started_at=datetime(2026, 3, 2, 10, 0, tzinfo=UTC), created_at=T0,
                )
            )

        assert repo.last_successful(CONNECTOR).id == "r-1"


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})

    def test_values_matter(self):
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})

    def test_none_is_stable(self):
        assert fingerprint(None) == fingerprint(None)
        assert len(fingerprint(None)) == 32

    def test_snapshot_excludes_change_time(self):
        a = entity("t-1", "alice", mail="x", changed_at=T0)
        b = entity("t-1", "alice", mail="x")
        assert fingerprint(a.snapshot()) == fingerprint(b.snapshot())
