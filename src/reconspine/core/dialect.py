"""SQL dialect abstraction for database-agnostic repositories.

Repositories use ``Dialect`` methods for placeholders and upserts so the
same SQL runs on SQLite (tests, single-node deployments) and PostgreSQL.

Examples:
    >>> from reconspine.core.dialect import SQLiteDialect
    >>> SQLiteDialect().placeholders(3)
    '?, ?, ?'

Guardrails:
    ❌ DON'T: Write backend-specific SQL in repositories
    ✅ DO: Use Dialect methods for placeholders and upserts

Tags:
    dialect, sql, portability, reconspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """Protocol for SQL dialect implementations."""

    @property
    def name(self) -> str: ...

    def placeholders(self, count: int) -> str:
        """Comma-separated placeholders for *count* parameters."""
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        """INSERT that silently skips rows violating a unique constraint."""
        ...

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_columns: list[str] | None = None,
    ) -> str:
        """INSERT ... ON CONFLICT (keys) DO UPDATE for the non-key columns."""
        ...


class SQLiteDialect:
    """SQLite dialect — ``?`` placeholders."""

    @property
    def name(self) -> str:
        return "sqlite"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({ph})"

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_columns: list[str] | None = None,
    ) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        keys = ", ".join(key_columns)
        update_cols = update_columns or [c for c in columns if c not in key_columns]
        updates = ", ".join(f"{c} = excluded.{c}" for c in update_cols)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({ph}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {updates}"
        )


class PostgreSQLDialect:
    """PostgreSQL dialect — ``%s`` placeholders (psycopg)."""

    @property
    def name(self) -> str:
        return "postgresql"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        return f"INSERT INTO {table} ({cols}) VALUES ({ph}) ON CONFLICT DO NOTHING"

    def upsert(
        self,
        table: str,
        columns: list[str],
        key_columns: list[str],
        update_columns: list[str] | None = None,
    ) -> str:
        cols = ", ".join(columns)
        ph = self.placeholders(len(columns))
        keys = ", ".join(key_columns)
        update_cols = update_columns or [c for c in columns if c not in key_columns]
        updates = ", ".join(f"{c} = EXCLUDED.{c}" for c in update_cols)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({ph}) "
            f"ON CONFLICT ({keys}) DO UPDATE SET {updates}"
        )


__all__ = ["Dialect", "SQLiteDialect", "PostgreSQLDialect"]
