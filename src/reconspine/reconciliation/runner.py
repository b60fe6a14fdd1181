"""Reconciliation runs — scan both systems and record new discrepancies.

ARCHITECTURE
────────────
::

    ReconciliationRunner(conn, connectors)
      ├── .trigger_run(connector_id, mode, dry_run)
      │      PENDING → IN_PROGRESS
      │      scan source + target (full, or delta since the watermark)
      │      DriftClassifier.classify → drop drift already pending
      │      persist discrepancies (unless dry_run) → COMPLETED
      │      any scan error → FAILED with the error recorded
      ├── .resume_run(run_id)   FAILED | CANCELLED → a fresh pass (resumed_from)
      └── .cancel_run(run_id)   PENDING | IN_PROGRESS → CANCELLED

Delta watermark: ``started_at`` of the connector's last completed,
non-dry-run run. With no watermark a delta request runs as full. Delta
re-evaluates only entities whose ``changed_at`` is after the watermark:
a changed account pulls in the identity it claims (``observe``), and every
touched identity pulls in all of its claimants (``claimants``), so a delta
never reports drift that a full run over the same state would not.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from reconspine.core.connection import transaction
from reconspine.core.enums import DiscrepancyType, RunMode, RunStatus, RunTrigger, parse_enum
from reconspine.core.errors import InvalidTransitionError, NotFoundError, StaleVersionError
from reconspine.core.logging import get_logger
from reconspine.core.models import Discrepancy, ObservedEntity, ReconciliationRun
from reconspine.core.protocols import Connection, Connector
from reconspine.core.repositories import DiscrepancyRepository, RunRepository
from reconspine.core.timestamps import Clock, new_id, utcnow
from reconspine.execution.connectors import ConnectorRegistry
from reconspine.execution.state_machine import RESUMABLE_FROM, validate_run_transition
from reconspine.reconciliation.detection import Drift, DriftClassifier

logger = get_logger(__name__)


@dataclass
class RunReport:
    """A finished run and the discrepancies it produced (or would produce)."""

    run: ReconciliationRun
    discrepancies: list[Discrepancy] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = self.run.to_dict()
        d["discrepancies"] = [x.to_dict() for x in self.discrepancies]
        return d


def _changed_after(entity: ObservedEntity, since: datetime) -> bool:
    return entity.changed_at is None or entity.changed_at > since


class ReconciliationRunner:
    """Executes on-demand and scheduled reconciliation runs."""

    def __init__(
        self,
        conn: Connection,
        connectors: ConnectorRegistry,
        *,
        classifier: DriftClassifier | None = None,
        clock: Clock = utcnow,
    ):
        self.conn = conn
        self.connectors = connectors
        self.classifier = classifier or DriftClassifier()
        self.clock = clock
        self.runs = RunRepository(conn)
        self.discrepancies = DiscrepancyRepository(conn)

    # ------------------------------------------------------------------ #
    # Trigger
    # ------------------------------------------------------------------ #

    def trigger_run(
        self,
        connector_id: str,
        mode: RunMode | str = RunMode.FULL,
        *,
        dry_run: bool = False,
        trigger: RunTrigger = RunTrigger.MANUAL,
    ) -> RunReport:
        """Run one reconciliation pass and return its report.

        Raises:
            ConfigError: *connector_id* has no registered target or source.
        """
        mode = parse_enum(RunMode, mode, "mode")
        source = self.connectors.source(connector_id)
        target = self.connectors.target(connector_id)

        since = None
        if mode is RunMode.DELTA:
            last = self.runs.last_successful(connector_id)
            since = last.started_at if last else None

        run = ReconciliationRun(
            id=new_id(),
            connector_id=connector_id,
            mode=mode,
            status=RunStatus.PENDING,
            dry_run=dry_run,
            trigger=trigger,
            since=since,
            created_at=self.clock(),
        )
        return self._execute(run, source, target)

    def resume_run(self, run_id: str, *, connector_id: str | None = None) -> RunReport:
        """Re-run a failed or cancelled run as a fresh pass.

        The new run keeps the original's mode, watermark and dry-run flag and
        points back at it through ``resumed_from``. The original stays as it
        was; resuming it again starts another pass.

        Raises:
            NotFoundError: no such run (or it belongs to another connector).
            InvalidTransitionError: the run is pending, in progress or completed.
        """
        original = self.resumable(run_id, connector_id)
        source = self.connectors.source(original.connector_id)
        target = self.connectors.target(original.connector_id)

        run = ReconciliationRun(
            id=new_id(),
            connector_id=original.connector_id,
            mode=original.mode,
            status=RunStatus.PENDING,
            dry_run=original.dry_run,
            trigger=RunTrigger.MANUAL,
            since=original.since,
            resumed_from=original.id,
            created_at=self.clock(),
        )
        logger.info("run_resumed", run_id=run.id, resumed_from=original.id, connector_id=run.connector_id)
        return self._execute(run, source, target)

    def resumable(self, run_id: str, connector_id: str | None = None) -> ReconciliationRun:
        """The run behind *run_id*, if ``resume_run`` would accept it."""
        run = self.get(run_id, connector_id)
        if run.status not in RESUMABLE_FROM:
            raise InvalidTransitionError(run.status.value, RunStatus.IN_PROGRESS.value, "ReconciliationRun")
        return run

    def cancel_run(self, run_id: str) -> ReconciliationRun:
        """Cancel a pending or in-progress run; an in-flight scan's results are discarded."""
        with transaction(self.conn):
            run = self.get(run_id)
            cancelled = self._transition(run, RunStatus.CANCELLED, completed_at=self.clock())
        logger.info("run_cancelled", run_id=run_id)
        return cancelled

    def get(self, run_id: str, connector_id: str | None = None) -> ReconciliationRun:
        run = self.runs.get(run_id)
        if run is None or (connector_id and run.connector_id != connector_id):
            raise NotFoundError("ReconciliationRun", run_id)
        return run

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _execute(self, run: ReconciliationRun, source: Connector, target: Connector) -> RunReport:
        since, dry_run = run.since, run.dry_run
        with transaction(self.conn):
            self.runs.create(run)
            run = self._transition(run, RunStatus.IN_PROGRESS, started_at=self.clock())

        log = logger.bind(run_id=run.id, connector_id=run.connector_id)
        log.info("run_started", mode=run.mode.value, since=since.isoformat() if since else None, dry_run=dry_run)

        try:
            sources, targets = self._collect(source, target, since)
            drifts = self.classifier.classify(sources, targets)
        except Exception as exc:
            log.exception("run_failed")
            with transaction(self.conn):
                failed = self._finish(
                    run, RunStatus.FAILED, error=f"{type(exc).__name__}: {exc}", completed_at=self.clock()
                )
            return RunReport(failed)

        with transaction(self.conn):
            current = self.runs.get(run.id)
            if current is None or current.status is not RunStatus.IN_PROGRESS:
                log.info("run_discarded", status=current.status.value if current else None)
                return RunReport(current or run)

            detected_at = self.clock()
            new, duplicates = self._new_discrepancies(run, drifts, detected_at)
            if not dry_run and new:
                self.discrepancies.create_many(new)
            summary = self._summary(run, since, sources, targets, drifts, new, duplicates)
            done = self._finish(
                current, RunStatus.COMPLETED, summary=summary, completed_at=detected_at
            )

        log.info("run_completed", new=len(new), duplicates=duplicates, dry_run=dry_run)
        return RunReport(done, new)

    def _collect(
        self,
        source: Connector,
        target: Connector,
        since: datetime | None,
    ) -> tuple[list[ObservedEntity], list[ObservedEntity]]:
        if since is None:
            return list(source.scan(RunMode.FULL)), list(target.scan(RunMode.FULL))

        sources = {e.ref: e for e in source.scan(RunMode.DELTA, since) if _changed_after(e, since)}
        targets = {e.ref: e for e in target.scan(RunMode.DELTA, since) if _changed_after(e, since)}

        for account in list(targets.values()):
            key = account.linked_ref or account.correlation_key
            if key:
                counterpart = source.observe(key)
                if counterpart is not None:
                    sources.setdefault(counterpart.ref, counterpart)
        # every claimant of a touched identity, so collisions match a full scan
        for identity in list(sources.values()):
            for account in target.claimants(identity.ref, identity.correlation_key):
                targets.setdefault(account.ref, account)
        return list(sources.values()), list(targets.values())

    def _new_discrepancies(
        self,
        run: ReconciliationRun,
        drifts: list[Drift],
        detected_at: datetime,
    ) -> tuple[list[Discrepancy], int]:
        known = self.discrepancies.pending_keys(run.connector_id)
        new: list[Discrepancy] = []
        duplicates = 0
        for drift in drifts:
            discrepancy = Discrepancy(
                id=new_id(),
                connector_id=run.connector_id,
                discrepancy_type=drift.discrepancy_type,
                source_ref=drift.source_ref,
                target_ref=drift.target_ref,
                run_id=run.id,
                source_snapshot=drift.source.snapshot() if drift.source else None,
                target_snapshot=drift.target.snapshot() if drift.target else None,
                detected_at=detected_at,
            )
            if discrepancy.dedup_key in known:
                duplicates += 1
                continue
            known.add(discrepancy.dedup_key)
            new.append(discrepancy)
        return new, duplicates

    @staticmethod
    def _summary(
        run: ReconciliationRun,
        since: datetime | None,
        sources: list[ObservedEntity],
        targets: list[ObservedEntity],
        drifts: list[Drift],
        new: list[Discrepancy],
        duplicates: int,
    ) -> dict[str, Any]:
        by_type = {t.value: 0 for t in DiscrepancyType}
        for discrepancy in new:
            by_type[discrepancy.discrepancy_type.value] += 1
        return {
            "effective_mode": (RunMode.DELTA if since else RunMode.FULL).value,
            "scanned": {"source": len(sources), "target": len(targets)},
            "detected": len(drifts),
            "new": len(new),
            "duplicates": duplicates,
            "by_type": by_type,
        }

    def _transition(self, run: ReconciliationRun, target: RunStatus, **fields: Any) -> ReconciliationRun:
        validate_run_transition(run.status, target)
        if not self.runs.compare_and_set(
            run.id,
            expected_status=run.status,
            expected_version=run.version,
            new_status=target,
            **fields,
        ):
            raise StaleVersionError(run.id, run.status.value, run.version)
        return replace(run, status=target, version=run.version + 1, **fields)

    def _finish(self, run: ReconciliationRun, status: RunStatus, **fields: Any) -> ReconciliationRun:
        current = self.runs.get(run.id) or run
        if current.status is not RunStatus.IN_PROGRESS:
            return current
        return self._transition(current, status, **fields)


__all__ = ["ReconciliationRunner", "RunReport"]
