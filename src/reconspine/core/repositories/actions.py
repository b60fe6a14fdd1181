"""Remediation action log repository — recon_remediation_actions.

Tags:
    reconspine, repository, audit

Doc-Types:
    api-reference
"""

from __future__ import annotations

from reconspine.core.models import RemediationActionRecord
from reconspine.core.repository import BaseRepository

from ._helpers import _build_where


class RemediationActionRepository(BaseRepository):
    """Append-only log of remediation requests (dry runs are never logged)."""

    TABLE = "recon_remediation_actions"

    def add(self, record: RemediationActionRecord) -> None:
        self.insert(self.TABLE, record.to_row())

    def list_actions(
        self,
        *,
        connector_id: str | None = None,
        discrepancy_id: str | None = None,
        action: str | None = None,
        result: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[RemediationActionRecord], int]:
        """List logged actions.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {
                "connector_id": connector_id,
                "discrepancy_id": discrepancy_id,
                "action": action,
                "result": result,
            },
            self.ph,
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY created_at DESC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [RemediationActionRecord.from_row(r) for r in rows], total
