"""Conflict record repository — recon_conflicts.

Tags:
    reconspine, repository, conflicts

Doc-Types:
    api-reference
"""

from __future__ import annotations

from reconspine.core.models import ConflictRecord
from reconspine.core.repository import BaseRepository

from ._helpers import _build_where


class ConflictRepository(BaseRepository):
    """One immutable record per operation that met a concurrent change."""

    TABLE = "recon_conflicts"

    def add_once(self, record: ConflictRecord) -> bool:
        """Insert *record* unless the operation already has one.

        Returns ``True`` when the record was written.
        """
        row = record.to_row()
        sql = self.dialect.insert_or_ignore(self.TABLE, list(row.keys()))
        cursor = self.execute(sql, tuple(row.values()))
        return getattr(cursor, "rowcount", 0) == 1

    def get(self, conflict_id: str) -> ConflictRecord | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}", (conflict_id,)
        )
        return ConflictRecord.from_row(row) if row else None

    def get_for_operation(self, operation_id: str) -> ConflictRecord | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE operation_id = {self.ph(1)}", (operation_id,)
        )
        return ConflictRecord.from_row(row) if row else None

    def list_conflicts(
        self,
        *,
        operation_id: str | None = None,
        outcome: str | None = None,
        connector_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[ConflictRecord], int]:
        """List conflict records.  Returns ``(rows, total)``."""
        extra: list[str] = []
        extra_params: tuple = ()
        if connector_id is not None:
            extra.append(
                f"operation_id IN (SELECT id FROM recon_operations WHERE connector_id = {self.ph(1)})"
            )
            extra_params = (connector_id,)
        where, params = _build_where(
            {"operation_id": operation_id, "outcome": outcome},
            self.ph,
            extra_clauses=extra,
            extra_params=extra_params,
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY decided_at DESC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [ConflictRecord.from_row(r) for r in rows], total
