"""Operation repository — recon_operations + recon_operation_events.

Status writes go exclusively through :meth:`OperationRepository.compare_and_set`,
which guards on ``(id, status, version)`` so a stale worker cannot overwrite
a transition made by another worker.

Tags:
    reconspine, repository, operations

Doc-Types:
    api-reference
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from reconspine.core.enums import ACTIVE_OPERATION_STATUSES, OperationStatus
from reconspine.core.models import Operation, OperationEvent, dump_json
from reconspine.core.repository import BaseRepository
from reconspine.core.timestamps import to_iso

from ._helpers import _build_where, _column_value, _set_clause


class OperationRepository(BaseRepository):
    """CRUD and compare-and-swap for ``recon_operations``."""

    TABLE = "recon_operations"
    EVENTS_TABLE = "recon_operation_events"

    # -- reads -----------------------------------------------------------------

    def get(self, operation_id: str) -> Operation | None:
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE id = {self.ph(1)}",
            (operation_id,),
        )
        return Operation.from_row(row) if row else None

    def find_active_for_discrepancy(self, discrepancy_id: str) -> Operation | None:
        """The non-terminal operation of *discrepancy_id*, if any."""
        statuses = sorted(s.value for s in ACTIVE_OPERATION_STATUSES)
        row = self.query_one(
            f"SELECT * FROM {self.TABLE} WHERE discrepancy_id = {self.ph(1)} "
            f"AND status IN ({self.ph(len(statuses))}) LIMIT 1",
            (discrepancy_id, *statuses),
        )
        return Operation.from_row(row) if row else None

    def list_due(
        self,
        now: datetime,
        *,
        limit: int = 50,
        exclude_ids: set[str] | None = None,
    ) -> list[Operation]:
        """The due index: pending operations whose ``next_retry_at`` has passed."""
        extra: list[str] = []
        params: tuple = ()
        if exclude_ids:
            extra.append(f"id NOT IN ({self.ph(len(exclude_ids))})")
            params = tuple(sorted(exclude_ids))
        where, where_params = _build_where(
            {"status": OperationStatus.PENDING.value},
            self.ph,
            extra_clauses=[f"next_retry_at <= {self.ph(1)}", *extra],
            extra_params=(to_iso(now), *params),
        )
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY next_retry_at ASC, created_at ASC LIMIT {self.ph(1)}",
            (*where_params, limit),
        )
        return [Operation.from_row(r) for r in rows]

    def list_stale(self, started_before: datetime, *, limit: int = 100) -> list[Operation]:
        """In-progress operations whose claim is older than *started_before*."""
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE status = {self.ph(1)} "
            f"AND started_at <= {self.ph(1)} ORDER BY started_at ASC LIMIT {self.ph(1)}",
            (OperationStatus.IN_PROGRESS.value, to_iso(started_before), limit),
        )
        return [Operation.from_row(r) for r in rows]

    def list_operations(
        self,
        *,
        connector_id: str | None = None,
        status: str | None = None,
        operation_type: str | None = None,
        discrepancy_id: str | None = None,
        created_after: datetime | None = None,
        created_before: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Operation], int]:
        """List operations with optional filters.  Returns ``(rows, total)``."""
        extra: list[str] = []
        extra_params: list[Any] = []
        if created_after is not None:
            extra.append(f"created_at >= {self.ph(1)}")
            extra_params.append(to_iso(created_after))
        if created_before is not None:
            extra.append(f"created_at < {self.ph(1)}")
            extra_params.append(to_iso(created_before))
        where, params = _build_where(
            {
                "connector_id": connector_id,
                "status": status,
                "operation_type": operation_type,
                "discrepancy_id": discrepancy_id,
            },
            self.ph,
            extra_clauses=extra,
            extra_params=tuple(extra_params),
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY created_at DESC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [Operation.from_row(r) for r in rows], total

    def list_dead_letters(
        self,
        *,
        connector_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Operation], int]:
        """Dead-lettered operations, most recently updated first."""
        where, params = _build_where(
            {"status": OperationStatus.DEAD_LETTER.value, "connector_id": connector_id},
            self.ph,
        )
        total = self.count(f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE {where}", params)
        rows = self.query(
            f"SELECT * FROM {self.TABLE} WHERE {where} "
            f"ORDER BY updated_at DESC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (*params, limit, offset),
        )
        return [Operation.from_row(r) for r in rows], total

    def status_counts(self, *, connector_id: str | None = None) -> list[dict[str, Any]]:
        """``[{connector_id, status, cnt}, ...]`` for queue statistics."""
        where, params = _build_where({"connector_id": connector_id}, self.ph)
        return self.query(
            f"SELECT connector_id, status, COUNT(*) AS cnt FROM {self.TABLE} "
            f"WHERE {where} GROUP BY connector_id, status ORDER BY connector_id, status",
            params,
        )

    # -- writes ----------------------------------------------------------------

    def create(self, operation: Operation) -> None:
        """Insert a new operation row."""
        self.insert(self.TABLE, operation.to_row())

    def compare_and_set(
        self,
        operation_id: str,
        *,
        expected_status: OperationStatus,
        expected_version: int,
        new_status: OperationStatus,
        updated_at: datetime,
        **fields: Any,
    ) -> bool:
        """Transition *operation_id* only if it is still at ``(status, version)``.

        Extra ``fields`` are column values written in the same statement.
        Returns ``False`` when another writer got there first.
        """
        values = {k: _column_value(v) for k, v in fields.items()}
        set_extra, extra_params = _set_clause(values, self.ph)
        assignments = f"status = {self.ph(1)}, version = version + 1, updated_at = {self.ph(1)}"
        if set_extra:
            assignments += f", {set_extra}"
        cursor = self.execute(
            f"UPDATE {self.TABLE} SET {assignments} "
            f"WHERE id = {self.ph(1)} AND status = {self.ph(1)} AND version = {self.ph(1)}",
            (
                new_status.value,
                to_iso(updated_at),
                *extra_params,
                operation_id,
                expected_status.value,
                expected_version,
            ),
        )
        return getattr(cursor, "rowcount", 0) == 1

    # -- events ----------------------------------------------------------------

    def add_event(self, event: OperationEvent) -> None:
        """Append an operation log entry."""
        seq = self.count(
            f"SELECT COUNT(*) AS cnt FROM {self.EVENTS_TABLE} WHERE operation_id = {self.ph(1)}",
            (event.operation_id,),
        )
        self.insert(
            self.EVENTS_TABLE,
            {
                "id": event.id,
                "operation_id": event.operation_id,
                "event_type": event.event_type,
                "from_status": event.from_status.value if event.from_status else None,
                "to_status": event.to_status.value if event.to_status else None,
                "message": event.message,
                "data": dump_json(event.data) if event.data else None,
                "created_at": to_iso(event.created_at),
                "seq": seq + 1,
            },
        )

    def list_events(
        self,
        operation_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[OperationEvent], int]:
        """Operation log in write order.  Returns ``(rows, total)``."""
        total = self.count(
            f"SELECT COUNT(*) AS cnt FROM {self.EVENTS_TABLE} WHERE operation_id = {self.ph(1)}",
            (operation_id,),
        )
        rows = self.query(
            f"SELECT * FROM {self.EVENTS_TABLE} WHERE operation_id = {self.ph(1)} "
            f"ORDER BY seq ASC LIMIT {self.ph(1)} OFFSET {self.ph(1)}",
            (operation_id, limit, offset),
        )
        return [OperationEvent.from_row(r) for r in rows], total

