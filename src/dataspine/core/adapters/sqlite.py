"""SQLite connection adapter.

Wraps a raw :class:`sqlite3.Connection` to satisfy the
:class:`~dataspine.core.protocols.Connection` protocol.

A bare ``sqlite3.Connection`` exposes ``execute()`` (returns a cursor)
but not ``fetchone()`` / ``fetchall()`` / ``rowcount`` at the connection
level. This adapter bridges the gap so the SQL store works identically on
SQLite and on a SQLAlchemy-backed connection.

Usage::

    from dataspine.core.adapters.sqlite import SqliteConnection

    conn = SqliteConnection(":memory:")
    conn.execute("CREATE TABLE t (id INTEGER)")
    conn.execute("INSERT INTO t VALUES (?)", (1,))
    conn.rowcount                  # 1
    conn.execute("SELECT * FROM t")
    row = conn.fetchone()
    conn.commit()
    conn.close()
"""

from __future__ import annotations

import sqlite3
from typing import Any

from dataspine.core.errors import StoreError


class SqliteConnection:
    """Adapter: ``sqlite3.Connection`` → ``Connection`` protocol.

    Maintains a single cursor so that ``execute`` / ``fetchone`` /
    ``fetchall`` operate on the same result set. Foreign keys are
    enforced.
    """

    def __init__(
        self,
        path: str = ":memory:",
        *,
        row_factory: Any = sqlite3.Row,
        timeout: float = 5.0,
        foreign_keys: bool = True,
    ) -> None:
        try:
            self._conn = sqlite3.connect(path, timeout=timeout, check_same_thread=False)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to connect to SQLite: {e}", cause=e) from e
        self._conn.row_factory = row_factory
        if foreign_keys:
            self._conn.execute("PRAGMA foreign_keys = ON")
        self._cursor = self._conn.cursor()
        self.path = path

    # -- Connection protocol -----------------------------------------------

    def execute(self, sql: str, params: tuple = ()) -> Any:
        self._cursor.execute(sql, tuple(params))
        return self._cursor

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        self._cursor.executemany(sql, params)
        return self._cursor

    def fetchone(self) -> Any:
        return self._cursor.fetchone()

    def fetchall(self) -> list:
        return self._cursor.fetchall()

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()

    def close(self) -> None:
        self._conn.close()

    # -- DB-API extras -----------------------------------------------------

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    @property
    def lastrowid(self) -> Any:
        return self._cursor.lastrowid

    @property
    def description(self) -> Any:
        return self._cursor.description

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    # -- convenience -------------------------------------------------------

    @property
    def raw(self) -> sqlite3.Connection:
        """Access the underlying ``sqlite3.Connection`` (e.g. for pragmas)."""
        return self._conn

    def __repr__(self) -> str:
        return f"SqliteConnection({self.path!r})"


__all__ = [
    "SqliteConnection",
]
