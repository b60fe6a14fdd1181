"""Schedule repository — recon_schedules.

Tags:
    reconspine, repository, scheduling

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime

from reconspine.core.models import Schedule
from reconspine.core.repository import BaseRepository
from reconspine.core.timestamps import to_iso

from ._helpers import _build_where


class ScheduleRepository(BaseRepository):
    """One schedule per connector; runs keep their own history."""

    TABLE = "recon_schedules"

    def get_by_connector(self, connector_id: str) -> Schedule | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE connector_id = {self.ph(1)}", (connector_id,)
        )
        return Schedule.from_row(row) if row else None

    def list_schedules(
        self,
        *,
        enabled: bool | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[Schedule], int]:
        """List schedules.  Returns ``(rows, total)``."""
        where, params = _build_where(
            {"enabled": None if enabled is None else int(enabled)}, self.ph
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY connector_id ASC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [Schedule.from_row(r) for r in rows], total

    def get_due(self, now: datetime) -> list[Schedule]:
        """Enabled schedules whose ``next_run_at`` has passed."""
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE enabled = 1 AND next_run_at IS NOT NULL "
            f"AND next_run_at <= {self.ph(1)} ORDER BY next_run_at ASC",
            (to_iso(now),),
        )
        return [Schedule.from_row(r) for r in rows]

    def upsert(self, schedule: Schedule) -> None:
        """Insert or replace the definition for ``schedule.connector_id``.

        ``id``, ``created_at`` and the run history columns survive an update.
        """
        row = schedule.to_row()
        preserved = {"id", "connector_id", "created_at", "last_run_at", "last_run_id"}
        sql = self.dialect.upsert(
            self.TABLE,
            list(row.keys()),
            ["connector_id"],
            update_columns=[c for c in row if c not in preserved],
        )
        self.execute(sql, tuple(row.values()))

    def set_enabled(
        self,
        connector_id: str,
        enabled: bool,
        *,
        next_run_at: datetime | None,
        updated_at: datetime,
    ) -> bool:
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET enabled = {self.ph(1)}, next_run_at = {self.ph(1)}, "
            f"updated_at = {self.ph(1)} WHERE connector_id = {self.ph(1)}",
            (int(enabled), to_iso(next_run_at), to_iso(updated_at), connector_id),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def delete(self, connector_id: str) -> bool:
        cursor = self.execute(
            f"DELETE FROM {self.TABLE} WHERE connector_id = {self.ph(1)}", (connector_id,)
        )
        return getattr(cursor, "rowcount", 0) == 1

    def claim(
        self,
        schedule_id: str,
        *,
        expected_next_run_at: datetime | None,
        next_run_at: datetime | None,
        fired_at: datetime,
    ) -> bool:
        """Advance ``next_run_at`` only if nobody else fired this slot."""
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET next_run_at = {self.ph(1)}, last_run_at = {self.ph(1)}, "
            f"updated_at = {self.ph(1)} "
            f"WHERE id = {self.ph(1)} AND next_run_at = {self.ph(1)} AND enabled = 1",
            (
                to_iso(next_run_at),
                to_iso(fired_at),
                to_iso(fired_at),
                schedule_id,
                to_iso(expected_next_run_at),
            ),
        )
        return getattr(cursor, "rowcount", 0) == 1

    def record_run(self, schedule_id: str, run_id: str) -> None:
        self.execute(
            f"UPDATE {self.TABLE} SET last_run_id = {self.ph(1)} WHERE id = {self.ph(1)}",
            (run_id, schedule_id),
        )
