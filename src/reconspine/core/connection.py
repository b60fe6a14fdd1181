"""Connection factory and transaction helper.

``create_connection()`` is the single entry point for opening the engine's
database. Supported targets:

==================  ==========================================
``memory``          ``memory``, ``:memory:`` or ``None``
``sqlite``          ``sqlite:///path/to/file.db``
``(file path)``     ``./data/recon.db``
==================  ==========================================

Usage::

    from reconspine.core.connection import create_connection, transaction

    conn = create_connection("recon.db")
    with transaction(conn):
        conn.execute("UPDATE recon_operations SET ...", (...))

Workers share one connection across threads. :class:`SqliteConnection`
serializes statements with a re-entrant lock and :func:`transaction` holds
that lock for the whole unit of work, so a compare-and-swap and the rows
written alongside it commit together.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Any

from reconspine.core.logging import get_logger
from reconspine.core.protocols import Connection

logger = get_logger(__name__)


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Each ``execute`` returns its own cursor; ``fetchone`` / ``fetchall`` at the
    connection level read from the most recent one.
    """

    def __init__(self, path: str = ":memory:", *, row_factory: Any = sqlite3.Row) -> None:
        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = row_factory
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._last: sqlite3.Cursor | None = None
        self.lock = threading.RLock()

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        with self.lock:
            self._last = self._conn.execute(sql, params)
            return self._last

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        with self.lock:
            self._last = self._conn.executemany(sql, params)
            return self._last

    def executescript(self, script: str) -> None:
        with self.lock:
            self._conn.executescript(script)

    def fetchone(self) -> Any:
        return self._last.fetchone() if self._last is not None else None

    def fetchall(self) -> list:
        return self._last.fetchall() if self._last is not None else []

    def commit(self) -> None:
        with self.lock:
            self._conn.commit()

    def rollback(self) -> None:
        with self.lock:
            self._conn.rollback()

    def close(self) -> None:
        with self.lock:
            self._conn.close()

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self._conn!r})"


@contextmanager
def transaction(conn: Connection) -> Iterator[Connection]:
    """Run a unit of work: commit on success, roll back on any exception.

    Holds ``conn.lock`` when the connection exposes one.
    """
    lock = getattr(conn, "lock", None) or nullcontext()
    with lock:
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def _parse_url(db: str | None) -> tuple[str, str]:
    """Parse a database URL into ``(scheme, target)``."""
    if db is None or db in ("", "memory", ":memory:"):
        return "memory", ":memory:"
    for prefix in ("sqlite:///", "sqlite://"):
        if db.startswith(prefix):
            path = db[len(prefix):]
            if not path or path == ":memory:":
                return "memory", ":memory:"
            return "sqlite", path
    return "sqlite", db


def create_connection(db: str | None = None, *, init_schema: bool = False) -> SqliteConnection:
    """Create a database connection from a URL, path, or keyword.

    Parameters
    ----------
    db:
        ``None``/``"memory"`` for in-memory SQLite, a file path, or a
        ``sqlite:///`` URL.
    init_schema:
        Create the engine tables if they do not exist yet.
    """
    scheme, target = _parse_url(db)
    if scheme == "memory":
        conn = SqliteConnection(":memory:")
    else:
        path = Path(target)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = SqliteConnection(str(path.resolve()))

    logger.debug("connection_opened", backend="sqlite", target=target)

    if init_schema:
        from reconspine.core.schema import create_tables

        create_tables(conn)
    return conn


__all__ = ["SqliteConnection", "transaction", "create_connection"]
