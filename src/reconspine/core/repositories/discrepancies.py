"""Discrepancy store repository — recon_discrepancies.

Tags:
    reconspine, repository, discrepancies

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from reconspine.core.enums import ResolutionStatus
from reconspine.core.models import Discrepancy
from reconspine.core.repository import BaseRepository
from reconspine.core.timestamps import to_iso

from ._helpers import _build_where


class DiscrepancyRepository(BaseRepository):
    """Detected drift records and their resolution status."""

    TABLE = "recon_discrepancies"

    # -- reads -----------------------------------------------------------------

    def get(self, discrepancy_id: str) -> Discrepancy | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (discrepancy_id,)
        )
        return Discrepancy.from_row(row) if row else None

    def list_discrepancies(
        self,
        *,
        connector_id: str | None = None,
        run_id: str | None = None,
        discrepancy_type: str | None = None,
        resolution_status: str | None = None,
        source_ref: str | None = None,
        target_ref: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Discrepancy], int]:
        """List discrepancies with optional filters.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {
                "connector_id": connector_id,
                "run_id": run_id,
                "discrepancy_type": discrepancy_type,
                "resolution_status": resolution_status,
                "source_ref": source_ref,
                "target_ref": target_ref,
            },
            self.ph,
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY detected_at DESC, id ASC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [Discrepancy.from_row(r) for r in rows], total

    def pending_keys(self, connector_id: str) -> set[tuple[str, str, str | None, str | None]]:
        """Dedup keys of pending discrepancies, so re-detection does not duplicate them."""
        rows = self.query(
            f"SELECT connector_id, discrepancy_type, source_ref, target_ref FROM {self.TABLE} "
            f"WHERE connector_id = {self.ph(1)} AND resolution_status = {self.ph(1)}",
            (connector_id, ResolutionStatus.PENDING.value),
        )
        return {
            (r["connector_id"], r["discrepancy_type"], r["source_ref"], r["target_ref"])
            for r in rows
        }

    def counts_for_run(self, run_id: str) -> list[dict[str, Any]]:
        """``[{discrepancy_type, resolution_status, cnt}]`` for a run report."""
        return self.query(
            f"SELECT discrepancy_type, resolution_status, COUNT(*) AS cnt FROM {self.TABLE} "
            f"WHERE run_id = {self.ph(1)} GROUP BY discrepancy_type, resolution_status "
            f"ORDER BY discrepancy_type, resolution_status",
            (run_id,),
        )

    def trend(
        self,
        connector_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Daily detection counts per type: ``[{day, discrepancy_type, cnt}]``."""
        extra: list[str] = []
        extra_params: list[Any] = []
        if start is not None:
            extra.append(f"detected_at >= {self.ph(1)}")
            extra_params.append(to_iso(start))
        if end is not None:
            extra.append(f"detected_at < {self.ph(1)}")
            extra_params.append(to_iso(end))
        where, params = _build_where(
            {"connector_id": connector_id},
            self.ph,
            extra_clauses=extra,
            extra_params=tuple(extra_params),
        )
        return self.query(
            f"SELECT SUBSTR(detected_at, 1, 10) AS day, discrepancy_type, COUNT(*) AS cnt "
            f"FROM {self.TABLE} WHERE {where} "
            f"GROUP BY SUBSTR(detected_at, 1, 10), discrepancy_type ORDER BY day, discrepancy_type",
            params,
        )

    # -- writes ----------------------------------------------------------------

    def create_many(self, discrepancies: list[Discrepancy]) -> int:
        return self.insert_many(self.TABLE, [d.to_row() for d in discrepancies])

    def attach_operation(self, discrepancy_id: str, operation_id: str) -> bool:
        """Record *operation_id* as the active operation of a pending discrepancy."""
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET active_operation_id = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND resolution_status = {self.ph(1)}",
            (operation_id, discrepancy_id, ResolutionStatus.PENDING.value),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def mark_resolved(self, discrepancy_id: str, operation_id: str, resolved_at: datetime) -> bool:
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET resolution_status = {self.ph(1)}, "
            f"resolved_operation_id = {self.ph(1)}, active_operation_id = NULL, "
            f"resolved_at = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND resolution_status = {self.ph(1)}",
            (
                ResolutionStatus.RESOLVED.value,
                operation_id,
                to_iso(resolved_at),
                discrepancy_id,
                ResolutionStatus.PENDING.value,
            ),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def release(self, discrepancy_id: str, operation_id: str) -> bool:
        """Detach a cancelled operation so the discrepancy can be remediated again."""
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET active_operation_id = NULL "
            f"WHERE id = {self.ph(1)} AND active_operation_id = {self.ph(1)}",
            (discrepancy_id, operation_id),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def mark_ignored(self, discrepancy_id: str, resolved_at: datetime) -> bool:
        """Dismiss a pending discrepancy without an operation."""
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET resolution_status = {self.ph(1)}, resolved_at = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND resolution_status = {self.ph(1)} "
            f"AND active_operation_id IS NULL",
            (
                ResolutionStatus.IGNORED.value,
                to_iso(resolved_at),
                discrepancy_id,
                ResolutionStatus.PENDING.value,
            ),
        )
        return getattr(cursor, "rowcount", 0) == 1
