"""Base repository with dialect-aware database access.

Provides :class:`BaseRepository` — a base class that pairs a
:class:`~reconspine.core.protocols.Connection` with a
:class:`~reconspine.core.dialect.Dialect` so that domain repositories can
write portable SQL without referencing any specific database driver.

Architecture::

    ┌────────────────────────────────────────────────────────────────────┐
    │                       BaseRepository                               │
    │                                                                    │
    │   conn: Connection        ← protocol from reconspine.core.protocols │
    │   dialect: Dialect        ← from reconspine.core.dialect            │
    │                                                                    │
    │   execute(sql, params)     → cursor                                │
    │   query(sql, params)       → list[dict]                            │
    │   query_one(sql, params)   → dict | None                           │
    │   count(sql, params)       → int                                   │
    │   insert(table, data)      → cursor                                │
    │   insert_many(table, rows) → int                                   │
    └────────────────────────────────────────────────────────────────────┘

Repositories never commit on their own: the caller owns the unit of work
(see :func:`reconspine.core.connection.transaction`).

Tags:
    repository, database, abstraction, portability
"""

from __future__ import annotations

from typing import Any

from reconspine.core.dialect import Dialect, SQLiteDialect
from reconspine.core.protocols import Connection


class BaseRepository:
    """Dialect-aware base class for data-access repositories.

    Parameters:
        conn: Any object satisfying the :class:`Connection` protocol.
        dialect: SQL dialect to use.  Defaults to :class:`SQLiteDialect`.
    """

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    # -- Convenience shortcuts ---------------------------------------------

    def ph(self, count: int) -> str:
        """Shortcut for ``self.dialect.placeholders(count)``.

        Embed directly in f-strings:
            f"SELECT * FROM t WHERE id = {self.ph(1)}"
        """
        return self.dialect.placeholders(count)

    # -- Query helpers -----------------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute a statement and return the raw cursor/result."""
        return self.conn.execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute a SELECT and return rows as dicts."""
        cursor = self.conn.execute(sql, params)
        rows = cursor.fetchall()
        if not rows:
            return []
        try:
            return [dict(row) for row in rows]
        except (TypeError, ValueError):
            pass
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in rows]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute a SELECT and return the first row as a dict (or None)."""
        results = self.query(sql, params)
        return results[0] if results else None

    def count(self, sql: str, params: tuple = ()) -> int:
        """Run a ``SELECT COUNT(*) AS cnt ...`` statement and return the count."""
        row = self.query_one(sql, params)
        return int((row or {}).get("cnt", 0) or 0)

    # -- Insert helpers ----------------------------------------------------

    def insert(self, table: str, data: dict[str, Any]) -> Any:
        """Insert a single row from a dict."""
        columns = list(data.keys())
        values = list(data.values())
        ph = self.dialect.placeholders(len(values))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({ph})"
        return self.conn.execute(sql, tuple(values))

    def insert_many(self, table: str, rows: list[dict[str, Any]]) -> int:
        """Insert multiple rows from a list of dicts.

        Returns the number of rows inserted.
        """
        if not rows:
            return 0
        columns = list(rows[0].keys())
        ph = self.dialect.placeholders(len(columns))
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({ph})"
        params = [tuple(row[col] for col in columns) for row in rows]
        self.conn.executemany(sql, params)
        return len(rows)


__all__ = [
    "BaseRepository",
]
