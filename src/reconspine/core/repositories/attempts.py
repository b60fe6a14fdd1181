"""Attempt log repository — recon_attempts (append-only).

Tags:
    reconspine, repository, attempts

Doc-Types:
    api-reference
"""

from __future__ import annotations

from reconspine.core.models import Attempt
from reconspine.core.repository import BaseRepository


class AttemptRepository(BaseRepository):
    """Append and read execution attempts.  There is no update or delete."""

    TABLE = "recon_attempts"

    def add(self, attempt: Attempt) -> None:
        """Append an attempt.  The idempotency key is unique table-wide."""
        self.insert(self.TABLE, attempt.to_row())

    def list_for_operation(
        self,
        operation_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Attempt], int]:
        """Attempts of one operation in execution order.  Returns ``(rows, total)``."""
        total = self.count(
            f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE operation_id = {self.ph(1)}",
            (operation_id,),
        )
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE operation_id = {self.ph(1)} "
            f"ORDER BY attempted_at ASC, retry_count ASC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (operation_id, limit, offset),
        )
        return [Attempt.from_row(r) for r in rows], total

    def list_for_operations(self, operation_ids: list[str]) -> dict[str, list[Attempt]]:
        """Attempt history for several operations in one query."""
        if not operation_ids:
            return {}
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE operation_id IN ({self.ph(len(operation_ids))}) "
            f"ORDER BY attempted_at ASC, retry_count ASC",
            tuple(operation_ids),
        )
        history: dict[str, list[Attempt]] = {op_id: [] for op_id in operation_ids}
        for row in rows:
            history[row["operation_id"]].append(Attempt.from_row(row))
        return history
