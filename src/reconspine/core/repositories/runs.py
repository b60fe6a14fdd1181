"""Reconciliation run repository — recon_runs.

Tags:
    reconspine, repository, runs

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from reconspine.core.enums import RunStatus
from reconspine.core.models import ReconciliationRun
from reconspine.core.repository import BaseRepository

from ._helpers import _build_where, _column_value, _set_clause


class RunRepository(BaseRepository):
    """CRUD and compare-and-swap for ``recon_runs``."""

    TABLE = "recon_runs"

    def get(self, run_id: str) -> ReconciliationRun | None:
        row = self.query_one(f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (run_id,))
        return ReconciliationRun.from_row(row) if row else None

    def last_successful(self, connector_id: str) -> ReconciliationRun | None:
        """Most recent completed, persisted run: the delta watermark."""
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE connector_id = {self.ph(1)} "
            f"AND status = {self.ph(1)} AND dry_run = 0 "
            f"ORDER BY started_at DESC LIMIT 1",
            (connector_id, RunStatus.COMPLETED.value),
        )
        return ReconciliationRun.from_row(row) if row else None

    def list_runs(
        self,
        *,
        connector_id: str | None = None,
        mode: str | None = None,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ReconciliationRun], int]:
        """List runs newest first.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {"connector_id": connector_id, "mode": mode, "status": status}, self.ph
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY created_at DESC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [ReconciliationRun.from_row(r) for r in rows], total

    def create(self, run: ReconciliationRun) -> None:
        self.insert(self.TABLE, run.to_row())

    def compare_and_set(
        self,
        run_id: str,
        *,
        expected_status: RunStatus,
        expected_version: int,
        new_status: RunStatus,
        **fields: Any,
    ) -> bool:
        """Transition a run only if it is still at ``(status, version)``."""
        values = {k: _column_value(v) for k, v in fields.items()}
        set_extra, extra_params = _set_clause(values, self.ph)
        assignments = f"status = {self.ph(1)}, version = version + 1"
        if set_extra:
            assignments += f", {set_extra}"
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET {assignments} "
            f"WHERE id = {self.ph(1)} AND status = {self.ph(1)} AND version = {self.ph(1)}",
            (new_status.value, *extra_params, run_id, expected_status.value, expected_version),
        )
        return getattr(cursor, "rowcount", 0) == 1

