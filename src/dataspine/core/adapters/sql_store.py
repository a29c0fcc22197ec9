"""
SQL store: the transactional store boundary over a DB-API connection.

:class:`SqlStore` implements :class:`~dataspine.core.protocols.Store` for
anything that satisfies the ``Connection`` protocol (``SqliteConnection``
or ``SAConnectionBridge``). SQL text comes from a
:class:`~dataspine.core.dialect.Dialect`; values are always bound.

Architecture:
    ::

        SyncEngine ──► store.begin(timeout) ──► SqlTransaction
                                                 ├── query()      SELECT
                                                 ├── insert()     INSERT [RETURNING]
                                                 ├── update_row() UPDATE … WHERE key AND expected
                                                 ├── delete_row() DELETE … WHERE key
                                                 ├── savepoint()  SAVEPOINT / ROLLBACK TO / RELEASE
                                                 └── commit() / rollback()

    Driver exceptions are classified by their DB-API class name, so the
    same mapping covers ``sqlite3`` and SQLAlchemy-wrapped drivers:

    ==========================================  =======================
    ``IntegrityError``                          ``ConstraintViolation``
    message mentions interrupt/timeout/lock     ``StoreTimeout``
    anything else during ``query()``            ``QueryError``
    anything else                               ``StoreError``
    ==========================================  =======================

Timeouts:
    A transaction opened with ``timeout`` bounds each round-trip. On
    SQLite the statement is interrupted through a progress handler once
    the deadline passes; on every backend a call that returns after the
    deadline is still reported as :class:`StoreTimeout`.

Concurrency:
    One connection carries one transaction at a time, so ``begin()``
    holds the store's lock until the scope commits or rolls back. Callers
    sharing a store are serialized; give independent callers their own
    store for parallelism.

Tags:
    store, transaction, savepoint, timeout, sql, dataspine
"""

from __future__ import annotations

import itertools
import sqlite3
import threading
import time
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Callable

from dataspine.core.dialect import Dialect, get_dialect
from dataspine.core.errors import (
    ConstraintViolation,
    DataSpineError,
    QueryError,
    StoreError,
    StoreTimeout,
)
from dataspine.core.logging import get_logger
from dataspine.core.protocols import Connection
from dataspine.data.predicate import Predicate

logger = get_logger(__name__)

_TIMEOUT_MARKERS = ("interrupt", "timeout", "timed out", "locked", "canceling statement")

# Progress handler granularity (SQLite VM instructions between checks)
_PROGRESS_STEPS = 1000


def classify_driver_error(
    exc: Exception,
    *,
    operation: str,
    table: str | None = None,
) -> DataSpineError:
    """Map a driver exception onto the dataspine taxonomy."""
    kind = type(exc).__name__
    message = str(exc)
    lowered = message.lower()
    if kind == "IntegrityError":
        error: DataSpineError = ConstraintViolation(message, cause=exc)
    elif any(marker in lowered for marker in _TIMEOUT_MARKERS):
        error = StoreTimeout(f"Store call timed out: {message}", cause=exc)
    elif operation == "query":
        error = QueryError(message, cause=exc)
    else:
        error = StoreError(message, cause=exc)
    return error.with_context(table=table, operation=operation, driver_error=kind)


def _infer_dialect(conn: Any) -> Dialect:
    name = getattr(conn, "dialect_name", None)
    if name is None:
        raw = getattr(conn, "raw", conn)
        name = "sqlite" if isinstance(raw, sqlite3.Connection) else None
    if name is None:
        raise StoreError(f"Cannot infer SQL dialect for {conn!r}; pass dialect=")
    return get_dialect(name)


class SqlTransaction:
    """One open scope on a :class:`SqlStore` connection.

    Also usable as a context manager: commits on clean exit, rolls back
    when the block raises.
    """

    def __init__(self, store: SqlStore, timeout: float | None) -> None:
        self._store = store
        self._conn: Connection = store.conn
        self._dialect = store.dialect
        self.timeout = timeout
        self._open = True
        self._savepoints = itertools.count(1)

        begin = self._dialect.begin_statement()
        if (
            begin
            and not getattr(self._conn, "autobegin", False)
            and not getattr(self._conn, "in_transaction", False)
        ):
            self._run("begin", None, lambda: self._conn.execute(begin))

    # -- Call wrapper ------------------------------------------------------

    def _sqlite_raw(self) -> sqlite3.Connection | None:
        try:
            raw = getattr(self._conn, "raw", None)
        except Exception:  # noqa: BLE001 - bridge without a live connection
            return None
        return raw if isinstance(raw, sqlite3.Connection) else None

    def _run(self, operation: str, table: str | None, fn: Callable[[], Any]) -> Any:
        if not self._open:
            raise StoreError("Transaction is closed").with_context(operation=operation, table=table)

        started = time.monotonic()
        raw = self._sqlite_raw() if self.timeout is not None else None
        if raw is not None:
            deadline = started + self.timeout
            raw.set_progress_handler(lambda: int(time.monotonic() > deadline), _PROGRESS_STEPS)
        try:
            result = fn()
        except DataSpineError:
            raise
        except Exception as exc:
            error = classify_driver_error(exc, operation=operation, table=table)
            if (
                self.timeout is not None
                and not isinstance(error, StoreTimeout | ConstraintViolation)
                and time.monotonic() - started >= self.timeout
            ):
                error = StoreTimeout(
                    f"{operation} on {table!r} exceeded {self.timeout}s", cause=exc
                ).with_context(table=table, operation=operation)
            raise error from exc
        finally:
            if raw is not None:
                raw.set_progress_handler(None, 0)

        elapsed = time.monotonic() - started
        if self.timeout is not None and elapsed > self.timeout:
            raise StoreTimeout(
                f"{operation} on {table!r} took {elapsed:.3f}s (limit {self.timeout}s)"
            ).with_context(table=table, operation=operation, elapsed_seconds=round(elapsed, 3))
        return result

    # -- Store operations --------------------------------------------------

    def query(
        self,
        table: str,
        columns: Sequence[str],
        predicate: Predicate,
    ) -> list[dict[str, Any]]:
        sql, params = self._dialect.select(table, columns, predicate)

        def _fetch() -> list[dict[str, Any]]:
            self._conn.execute(sql, tuple(params))
            rows = self._conn.fetchall()
            return [dict(zip(columns, row)) for row in rows]

        return self._run("query", table, _fetch)

    def insert(
        self,
        table: str,
        values: Mapping[str, Any],
        generated_key: str | None = None,
    ) -> Any:
        """Insert a row; return the store-assigned key when *generated_key* is set.

        The row's own value for *generated_key* is a placeholder and is
        never sent.
        """
        row = {k: v for k, v in values.items() if k != generated_key}
        sql, params = self._dialect.insert(table, row, generated_key)

        def _insert() -> Any:
            self._conn.execute(sql, tuple(params))
            if generated_key is None:
                return None
            if self._dialect.returning(generated_key):
                fetched = self._conn.fetchone()
                return fetched[0] if fetched is not None else None
            return getattr(self._conn, "lastrowid", None)

        return self._run("insert", table, _insert)

    def update_row(
        self,
        table: str,
        key: Mapping[str, Any],
        changed: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> int:
        if not changed:
            raise QueryError(f"UPDATE on {table!r} without changed fields")
        match = Predicate.from_values(key) & Predicate.from_values(expected or {})
        sql, params = self._dialect.update(table, changed, match)

        def _update() -> int:
            self._conn.execute(sql, tuple(params))
            return self._conn.rowcount

        return self._run("update", table, _update)

    def delete_row(self, table: str, key: Mapping[str, Any]) -> int:
        sql, params = self._dialect.delete(table, Predicate.from_values(key))

        def _delete() -> int:
            self._conn.execute(sql, tuple(params))
            return self._conn.rowcount

        return self._run("delete", table, _delete)

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Nested scope: everything in the block is undone if it raises."""
        native = getattr(self._conn, "savepoint", None)
        if native is not None:
            with native():
                yield
            return

        name = f"dataspine_sp{next(self._savepoints)}"
        self._run("savepoint", None, lambda: self._conn.execute(self._dialect.savepoint(name)))
        try:
            yield
        except BaseException:
            self._run(
                "savepoint",
                None,
                lambda: self._conn.execute(self._dialect.rollback_to_savepoint(name)),
            )
            self._release(name)
            raise
        else:
            self._release(name)

    def _release(self, name: str) -> None:
        release = self._dialect.release_savepoint(name)
        if release is not None:
            self._run("savepoint", None, lambda: self._conn.execute(release))

    # -- Scope end ---------------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self._open

    def commit(self) -> None:
        try:
            self._run("commit", None, self._conn.commit)
        except DataSpineError:
            self._finish_rollback()
            raise
        self._open = False
        self._store._release(self)

    def rollback(self) -> None:
        if not self._open:
            return
        self._finish_rollback()

    def _finish_rollback(self) -> None:
        try:
            self._conn.rollback()
        except Exception as exc:
            raise StoreError(f"Rollback failed: {exc}", cause=exc) from exc
        finally:
            self._open = False
            self._store._release(self)

    def __enter__(self) -> SqlTransaction:
        return self

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if not self._open:
            return
        if exc_type is None:
            self.commit()
        else:
            self.rollback()


class SqlStore:
    """:class:`~dataspine.core.protocols.Store` over a ``Connection``.

    Parameters:
        conn: ``SqliteConnection``, ``SAConnectionBridge`` or any object
            with the ``Connection`` protocol plus ``rowcount``.
        dialect: Dialect instance or name; inferred from *conn* when omitted
        info: Optional :class:`~dataspine.core.connection.ConnectionInfo`
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | str | None = None,
        *,
        info: Any = None,
    ) -> None:
        self.conn = conn
        if isinstance(dialect, str):
            dialect = get_dialect(dialect)
        self.dialect: Dialect = dialect or _infer_dialect(conn)
        self.info = info
        self._lock = threading.Lock()
        self._active: SqlTransaction | None = None

    def begin(self, timeout: float | None = None) -> SqlTransaction:
        self._lock.acquire()
        try:
            self._active = SqlTransaction(self, timeout)
        except BaseException:
            self._lock.release()
            raise
        logger.debug("transaction_begun", dialect=self.dialect.name, timeout=timeout)
        return self._active

    def _release(self, tx: SqlTransaction) -> None:
        if self._active is tx:
            self._active = None
            self._lock.release()

    def close(self) -> None:
        active = self._active
        if active is not None and active.is_open:
            active.rollback()
        close = getattr(self.conn, "close", None)
        if close is not None:
            close()

    def __repr__(self) -> str:
        return f"SqlStore(dialect={self.dialect.name!r}, info={self.info!r})"


__all__ = [
    "SqlStore",
    "SqlTransaction",
    "classify_driver_error",
]
