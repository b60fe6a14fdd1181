"""
Database schema for the reconciliation engine.

Manifesto:
    The database is the queue. "Which operations are due" is a query over
    ``recon_operations`` (status = 'pending' AND next_retry_at <= now), not
    in-memory state, so any number of worker processes can dequeue safely
    and a restart loses nothing.

Architecture:
    ::

        Table Registry (RECON_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ operations       → recon_operations     (CAS on version)   │
        │ attempts         → recon_attempts       (append-only)      │
        │ operation_events → recon_operation_events (append-only)    │
        │ discrepancies    → recon_discrepancies                     │
        │ conflicts        → recon_conflicts      (1 per operation)  │
        │ actions          → recon_remediation_actions (append-only) │
        │ schedules        → recon_schedules      (1 per connector)  │
        │ runs             → recon_runs                              │
        └────────────────────────────────────────────────────────────┘

        Uniqueness guards:
        ┌────────────────────────────────────────────────────────────┐
        │ one active operation per discrepancy (partial unique idx)  │
        │ one attempt per idempotency key                            │
        │ one conflict record per operation                          │
        │ one schedule per connector                                 │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> from reconspine.core.schema import RECON_TABLES, create_tables
    >>> RECON_TABLES["operations"]
    'recon_operations'
    >>> create_tables(conn)

Guardrails:
    ❌ DON'T: Delete terminal operations or attempts from application code
    ✅ DO: Leave retention to an out-of-band policy

Tags:
    schema, ddl, sqlite, postgresql, reconspine

Doc-Types:
    - Database Schema Reference
"""

from __future__ import annotations

from reconspine.core.protocols import Connection

RECON_TABLES = {
    "operations": "recon_operations",
    "attempts": "recon_attempts",
    "operation_events": "recon_operation_events",
    "discrepancies": "recon_discrepancies",
    "conflicts": "recon_conflicts",
    "actions": "recon_remediation_actions",
    "schedules": "recon_schedules",
    "runs": "recon_runs",
}

# Statuses that count as "active" for the one-operation-per-discrepancy guard.
_ACTIVE_STATUSES_SQL = "('pending', 'in_progress', 'awaiting_system', 'failed', 'dead_letter')"


RECON_DDL = {
    "runs": """
        CREATE TABLE IF NOT EXISTS recon_runs (
            id              TEXT PRIMARY KEY,
            connector_id    TEXT NOT NULL,
            mode            TEXT NOT NULL,
            status          TEXT NOT NULL DEFAULT 'pending',
            dry_run         INTEGER NOT NULL DEFAULT 0,
            trigger         TEXT NOT NULL DEFAULT 'manual',
            since           TEXT,
            resumed_from    TEXT,
            summary         TEXT,
            error           TEXT,
            version         INTEGER NOT NULL DEFAULT 0,
            created_at      TEXT NOT NULL,
            started_at      TEXT,
            completed_at    TEXT
        )
    """,
    "discrepancies": """
        CREATE TABLE IF NOT EXISTS recon_discrepancies (
            id                      TEXT PRIMARY KEY,
            connector_id            TEXT NOT NULL,
            run_id                  TEXT,
            discrepancy_type        TEXT NOT NULL,
            source_ref              TEXT,
            target_ref              TEXT,
            source_snapshot         TEXT,
            target_snapshot         TEXT,
            resolution_status       TEXT NOT NULL DEFAULT 'pending',
            active_operation_id     TEXT,
            resolved_operation_id   TEXT,
            detected_at             TEXT NOT NULL,
            resolved_at             TEXT
        )
    """,
    "operations": """
        CREATE TABLE IF NOT EXISTS recon_operations (
            id                  TEXT PRIMARY KEY,
            connector_id        TEXT NOT NULL,
            discrepancy_id      TEXT,
            operation_type      TEXT NOT NULL,
            direction           TEXT NOT NULL,
            action              TEXT,
            status              TEXT NOT NULL DEFAULT 'pending',
            version             INTEGER NOT NULL DEFAULT 0,
            target_entity_ref   TEXT NOT NULL,
            payload             TEXT,
            baseline            TEXT,
            retry_count         INTEGER NOT NULL DEFAULT 0,
            max_retries         INTEGER NOT NULL DEFAULT 3,
            retry_series        INTEGER NOT NULL DEFAULT 0,
            next_retry_at       TEXT,
            last_error          TEXT,
            external_ref        TEXT,
            created_at          TEXT NOT NULL,
            updated_at          TEXT NOT NULL,
            started_at          TEXT,
            resolved_at         TEXT,
            resolution_notes    TEXT
        )
    """,
    "attempts": """
        CREATE TABLE IF NOT EXISTS recon_attempts (
            id                  TEXT PRIMARY KEY,
            operation_id        TEXT NOT NULL REFERENCES recon_operations(id),
            idempotency_key     TEXT NOT NULL UNIQUE,
            outcome             TEXT NOT NULL,
            attempted_at        TEXT NOT NULL,
            duration_ms         REAL NOT NULL DEFAULT 0,
            retry_count         INTEGER NOT NULL DEFAULT 0,
            error_kind          TEXT,
            error_detail        TEXT
        )
    """,
    "operation_events": """
        CREATE TABLE IF NOT EXISTS recon_operation_events (
            id              TEXT PRIMARY KEY,
            operation_id    TEXT NOT NULL REFERENCES recon_operations(id),
            event_type      TEXT NOT NULL,
            from_status     TEXT,
            to_status       TEXT,
            message         TEXT,
            data            TEXT,
            created_at      TEXT NOT NULL,
            seq             INTEGER NOT NULL DEFAULT 0
        )
    """,
    "conflicts": """
        CREATE TABLE IF NOT EXISTS recon_conflicts (
            id                          TEXT PRIMARY KEY,
            operation_id                TEXT NOT NULL UNIQUE REFERENCES recon_operations(id),
            outcome                     TEXT NOT NULL,
            baseline_snapshot           TEXT,
            detected_change_snapshot    TEXT,
            detail                      TEXT,
            decided_at                  TEXT NOT NULL
        )
    """,
    "actions": """
        CREATE TABLE IF NOT EXISTS recon_remediation_actions (
            id              TEXT PRIMARY KEY,
            connector_id    TEXT NOT NULL,
            discrepancy_id  TEXT NOT NULL,
            action          TEXT NOT NULL,
            direction       TEXT NOT NULL,
            operation_id    TEXT,
            result          TEXT NOT NULL,
            error           TEXT,
            created_at      TEXT NOT NULL
        )
    """,
    "schedules": """
        CREATE TABLE IF NOT EXISTS recon_schedules (
            id              TEXT PRIMARY KEY,
            connector_id    TEXT NOT NULL UNIQUE,
            mode            TEXT NOT NULL,
            frequency       TEXT NOT NULL,
            cron_expression TEXT,
            day_of_week     INTEGER,
            day_of_month    INTEGER,
            hour_of_day     INTEGER,
            enabled         INTEGER NOT NULL DEFAULT 1,
            next_run_at     TEXT,
            last_run_at     TEXT,
            last_run_id     TEXT,
            created_at      TEXT NOT NULL,
            updated_at      TEXT NOT NULL
        )
    """,
}


RECON_INDEXES = [
    # Due index: the work queue.
    "CREATE INDEX IF NOT EXISTS idx_recon_operations_due "
    "ON recon_operations(status, next_retry_at)",
    "CREATE INDEX IF NOT EXISTS idx_recon_operations_connector "
    "ON recon_operations(connector_id, status)",
    "CREATE UNIQUE INDEX IF NOT EXISTS uq_recon_operations_active_discrepancy "
    f"ON recon_operations(discrepancy_id) WHERE status IN {_ACTIVE_STATUSES_SQL}",
    "CREATE INDEX IF NOT EXISTS idx_recon_attempts_operation "
    "ON recon_attempts(operation_id, attempted_at)",
    "CREATE INDEX IF NOT EXISTS idx_recon_events_operation "
    "ON recon_operation_events(operation_id, seq)",
    "CREATE INDEX IF NOT EXISTS idx_recon_discrepancies_connector "
    "ON recon_discrepancies(connector_id, resolution_status, discrepancy_type)",
    "CREATE INDEX IF NOT EXISTS idx_recon_discrepancies_run "
    "ON recon_discrepancies(run_id)",
    "CREATE INDEX IF NOT EXISTS idx_recon_runs_connector "
    "ON recon_runs(connector_id, status, started_at)",
    "CREATE INDEX IF NOT EXISTS idx_recon_actions_discrepancy "
    "ON recon_remediation_actions(discrepancy_id)",
]


def create_tables(conn: Connection) -> None:
    """
    Create all engine tables and indexes.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in RECON_DDL.items():
        conn.execute(ddl)
    for ddl in RECON_INDEXES:
        conn.execute(ddl)
    conn.commit()


__all__ = ["RECON_TABLES", "RECON_DDL", "RECON_INDEXES", "create_tables"]
