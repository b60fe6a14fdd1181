"""
Tests for ReconciliationRunner: full and delta runs, dedup, dry runs, failure and cancellation.
"""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from reconspine.core.enums import RunMode, RunStatus, RunTrigger
from reconspine.core.errors import ConfigError, InvalidTransitionError, NotFoundError
from reconspine.core.repositories import DiscrepancyRepository, RunRepository
from reconspine.reconciliation.runner import ReconciliationRunner
from tests._support.fakes import CONNECTOR, entity


@pytest.fixture()
def runner(conn, registry, clock) -> ReconciliationRunner:
    return ReconciliationRunner(conn, registry, clock=clock)


@pytest.fixture()
def populated(source, target, clock):
    """Two drifted accounts: bob is unlinked, dave is missing."""
    old = clock.now - timedelta(days=1)
    for e in [
        entity("u-1", "alice", mail="alice@example.com", changed_at=old),
        entity("u-2", "bob", mail="bob@example.com", changed_at=old),
        entity("u-4", "dave", mail="dave@example.com", changed_at=old),
    ]:
        source.entities[e.ref] = e
    for e in [
        entity("t-1", "alice", mail="alice@example.com", linked_ref="u-1", changed_at=old),
        entity("t-2", "bob", mail="bob@example.com", changed_at=old),
    ]:
        target.entities[e.ref] = e
    return old


def _stored(conn):
    rows, _ = DiscrepancyRepository(conn).list_discrepancies(connector_id=CONNECTOR, limit=100)
    return sorted((d.discrepancy_type.value, d.source_ref, d.target_ref) for d in rows)


class TestFullRun:
    def test_detects_and_persists(self, runner, conn, populated):
        report = runner.trigger_run(CONNECTOR, "full")

        run = report.run
        assert run.status is RunStatus.COMPLETED
        assert run.trigger is RunTrigger.MANUAL
        assert run.summary["effective_mode"] == "full"
        assert run.summary["scanned"] == {"source": 3, "target": 2}
        assert run.summary["new"] == 2
        assert run.summary["by_type"]["unlinked"] == 1
        assert run.summary["by_type"]["missing"] == 1
        assert run.summary["by_type"]["collision"] == 0
        assert _stored(conn) == [("missing", "u-4", None), ("unlinked", "u-2", "t-2")]
        assert all(d.run_id == run.id for d in report.discrepancies)

    def test_rerun_does_not_duplicate(self, runner, conn, populated):
        runner.trigger_run(CONNECTOR)

        again = runner.trigger_run(CONNECTOR)

        assert again.run.summary["detected"] == 2
        assert again.run.summary["new"] == 0
        assert again.run.summary["duplicates"] == 2
        assert len(_stored(conn)) == 2

    def test_dry_run_persists_no_discrepancies(self, runner, conn, populated):
        report = runner.trigger_run(CONNECTOR, dry_run=True)

        assert report.run.dry_run
        assert len(report.discrepancies) == 2
        assert _stored(conn) == []
        assert RunRepository(conn).last_successful(CONNECTOR) is None

    def test_delta_without_watermark_runs_full(self, runner, source, populated):
        report = runner.trigger_run(CONNECTOR, RunMode.DELTA)

        assert report.run.mode is RunMode.DELTA
        assert report.run.since is None
        assert report.run.summary["effective_mode"] == "full"
        assert source.scans[-1] == (RunMode.FULL, None)


class TestDeltaRun:
    def test_delta_sees_only_changed_entities(self, runner, conn, source, target, clock, populated):
        first = runner.trigger_run(CONNECTOR, "full").run
        changed = clock.now + timedelta(minutes=30)
        source.entities["u-1"] = entity("u-1", "alice", mail="alice@corp.example.com", changed_at=changed)
        source.entities["u-5"] = entity("u-5", "eve", mail="eve@example.com", changed_at=changed)
        target.entities["t-9"] = entity("t-9", "zed", changed_at=populated)
        clock.advance(3600)

        delta = runner.trigger_run(CONNECTOR, "delta")

        assert delta.run.since == first.started_at
        assert delta.run.summary["effective_mode"] == "delta"
        assert delta.run.summary["scanned"] == {"source": 2, "target": 1}
        assert source.scans[-1] == (RunMode.DELTA, first.started_at)
        assert sorted((d.discrepancy_type.value, d.source_ref, d.target_ref) for d in delta.discrepancies) == [
            ("mismatch", "u-1", "t-1"),
            ("missing", "u-5", None),
        ]

        # A full pass finds everything delta found plus the backdated orphan.
        full = runner.trigger_run(CONNECTOR, "full", dry_run=True)
        assert full.run.summary["detected"] == 5
        assert full.run.summary["duplicates"] == 4
        assert [(d.discrepancy_type.value, d.target_ref) for d in full.discrepancies] == [("orphan", "t-9")]

    def test_delta_loads_every_claimant_of_a_changed_identity(self, runner, conn, source, target, clock, populated):
        runner.trigger_run(CONNECTOR, "full")
        changed = clock.now + timedelta(minutes=30)
        source.entities["u-1"] = entity("u-1", "alice", mail="alice@corp.example.com", changed_at=changed)
        target.entities["t-3"] = entity("t-3", "alice", mail="alice@example.com", changed_at=populated)
        clock.advance(3600)

        delta = runner.trigger_run(CONNECTOR, "delta")

        assert delta.run.summary["scanned"] == {"source": 1, "target": 2}
        assert sorted((d.discrepancy_type.value, d.source_ref, d.target_ref) for d in delta.discrepancies) == [
            ("collision", "u-1", "t-1"),
            ("collision", "u-1", "t-3"),
        ]

        full = runner.trigger_run(CONNECTOR, "full", dry_run=True)
        assert full.run.summary["detected"] == 4
        assert full.discrepancies == []


class TestRunFailures:
    def test_scan_error_fails_run(self, runner, conn, source, populated):
        source.scan = MagicMock(side_effect=RuntimeError("ldap down"))

        report = runner.trigger_run(CONNECTOR)

        assert report.run.status is RunStatus.FAILED
        assert report.run.error == "RuntimeError: ldap down"
        assert report.discrepancies == []
        stored = RunRepository(conn).get(report.run.id)
        assert stored.status is RunStatus.FAILED
        assert stored.completed_at is not None

    def test_unknown_connector(self, runner):
        with pytest.raises(ConfigError, match="No connector registered"):
            runner.trigger_run("nope")

    def test_failed_run_is_not_a_watermark(self, runner, conn, source, populated):
        source.scan = MagicMock(side_effect=RuntimeError("ldap down"))
        runner.trigger_run(CONNECTOR)

        assert RunRepository(conn).last_successful(CONNECTOR) is None


class TestCancelRun:
    def test_cancel_in_flight_discards_results(self, runner, conn, source, populated):
        original_scan = source.scan

        def scan_then_cancel(mode, since=None):
            [in_flight], _ = RunRepository(conn).list_runs(status="in_progress")
            runner.cancel_run(in_flight.id)
            return original_scan(mode, since)

        source.scan = scan_then_cancel

        report = runner.trigger_run(CONNECTOR)

        assert report.run.status is RunStatus.CANCELLED
        assert report.discrepancies == []
        assert _stored(conn) == []

    def test_cancel_completed_run_rejected(self, runner, populated):
        run = runner.trigger_run(CONNECTOR).run

        with pytest.raises(InvalidTransitionError, match="completed"):
            runner.cancel_run(run.id)


class TestResumeRun:
    def test_resume_failed_run_starts_a_linked_pass(self, runner, conn, source, populated):
        healthy_scan = source.scan
        source.scan = MagicMock(side_effect=RuntimeError("ldap down"))
        failed = runner.trigger_run(CONNECTOR, dry_run=True).run
        source.scan = healthy_scan

        resumed = runner.resume_run(failed.id, connector_id=CONNECTOR)

        assert resumed.run.id != failed.id
        assert resumed.run.resumed_from == failed.id
        assert resumed.run.status is RunStatus.COMPLETED
        assert resumed.run.dry_run
        assert resumed.run.mode is RunMode.FULL
        assert len(resumed.discrepancies) == 2
        assert RunRepository(conn).get(failed.id).status is RunStatus.FAILED
        assert RunRepository(conn).get(resumed.run.id).resumed_from == failed.id

    def test_resume_keeps_the_original_watermark(self, runner, source, clock, populated):
        first = runner.trigger_run(CONNECTOR).run
        clock.advance(60)
        healthy_scan = source.scan
        source.scan = MagicMock(side_effect=RuntimeError("ldap down"))
        failed = runner.trigger_run(CONNECTOR, "delta").run
        source.scan = healthy_scan
        clock.advance(60)
        runner.trigger_run(CONNECTOR)

        resumed = runner.resume_run(failed.id)

        assert failed.since == first.started_at
        assert resumed.run.mode is RunMode.DELTA
        assert resumed.run.since == first.started_at

    def test_resume_cancelled_run(self, runner, conn, source, populated):
        original_scan = source.scan

        def scan_then_cancel(mode, since=None):
            [in_flight], _ = RunRepository(conn).list_runs(status="in_progress")
            runner.cancel_run(in_flight.id)
            return original_scan(mode, since)

        source.scan = scan_then_cancel
        cancelled = runner.trigger_run(CONNECTOR).run
        source.scan = original_scan

        resumed = runner.resume_run(cancelled.id)

        assert cancelled.status is RunStatus.CANCELLED
        assert resumed.run.status is RunStatus.COMPLETED
        assert resumed.run.summary["new"] == 2

    def test_resume_completed_run_rejected(self, runner, populated):
        run = runner.trigger_run(CONNECTOR).run

        with pytest.raises(InvalidTransitionError, match="completed"):
            runner.resume_run(run.id)

    def test_resume_under_another_connector_is_not_found(self, runner, source, populated):
        source.scan = MagicMock(side_effect=RuntimeError("ldap down"))
        failed = runner.trigger_run(CONNECTOR).run

        with pytest.raises(NotFoundError):
            runner.resume_run(failed.id, connector_id="ad-other")
