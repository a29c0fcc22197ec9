"""SQLAlchemy engine factory, session, and Connection bridge.

Manifesto:
    The SQL store speaks the ``dataspine.core.protocols.Connection``
    protocol. ``SAConnectionBridge`` wraps a SA Session to satisfy it, so
    every database SQLAlchemy can reach becomes a synchronization target
    without a second store implementation.

This module provides:

* ``create_dataspine_engine`` -- Create a SA engine from a URL.
* ``DataSpineSession``        -- A pre-configured ``Session`` subclass.
* ``SAConnectionBridge``      -- Wraps a SA ``Session`` to satisfy the
  ``Connection`` protocol, including ``rowcount``/``lastrowid`` and
  savepoints through ``Session.begin_nested()``.

Tags:
    dataspine, orm, sqlalchemy, session, engine, bridge, connection
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any

from sqlalchemy import create_engine as _sa_create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

# ?, %s and :1-style positional markers
_POSITIONAL = re.compile(r"\?|%s|:\d+")


def create_dataspine_engine(
    url: str = "sqlite:///dataspine.db",
    *,
    echo: bool = False,
    pool_size: int | None = None,
    max_overflow: int | None = None,
    pool_timeout: int | None = None,
    **kwargs: Any,
) -> Engine:
    """Create a SQLAlchemy engine with sane defaults.

    Parameters
    ----------
    url:
        Database URL (``sqlite:///…``, ``postgresql://…``, etc.)
    echo:
        If ``True``, log all SQL to stdout.
    pool_size, max_overflow, pool_timeout:
        Connection pool parameters (ignored for SQLite).
    **kwargs:
        Extra arguments forwarded to ``sqlalchemy.create_engine``.
    """

    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = _sa_create_engine(url, echo=echo, **kwargs)

        # pysqlite defers BEGIN until the first DML statement, which breaks
        # savepoints; hand transaction control to SQLAlchemy instead.
        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection: Any, _rec: Any) -> None:
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _begin(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN")

        return engine

    pool_kwargs: dict[str, Any] = {}
    if pool_size is not None:
        pool_kwargs["pool_size"] = pool_size
    if max_overflow is not None:
        pool_kwargs["max_overflow"] = max_overflow
    if pool_timeout is not None:
        pool_kwargs["pool_timeout"] = pool_timeout

    return _sa_create_engine(url, echo=echo, **pool_kwargs, **kwargs)


class DataSpineSession(Session):
    """Pre-configured session with ``expire_on_commit=False``."""

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def dataspine_session_factory(engine: Engine) -> sessionmaker[DataSpineSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``DataSpineSession`` instances."""
    return sessionmaker(bind=engine, class_=DataSpineSession)


def to_named(sql: str, parameters: Sequence[Any]) -> tuple[str, dict[str, Any]]:
    """Rewrite positional placeholders to ``:p0, :p1 …`` for ``text()``."""
    counter = iter(range(len(parameters) + 1))
    rewritten = _POSITIONAL.sub(lambda _m: f":p{next(counter)}", sql)
    return rewritten, {f"p{i}": v for i, v in enumerate(parameters)}


class SAConnectionBridge:
    """Adapter that makes a SQLAlchemy ``Session`` look like ``Connection``.

    Implements: ``execute``, ``executemany``, ``fetchone``, ``fetchall``,
    ``commit``, ``rollback``, plus ``rowcount``, ``lastrowid``,
    ``description`` and a ``savepoint()`` context manager. The session
    begins transactions on its own (``autobegin``).
    """

    autobegin = True

    def __init__(self, session: Session) -> None:
        self._session = session
        self._last_result: Any = None

    # --- execute / executemany ---

    def execute(self, sql: str, parameters: Sequence[Any] | None = None) -> SAConnectionBridge:
        if parameters:
            rewritten, mapping = to_named(sql, parameters)
            self._last_result = self._session.execute(text(rewritten), mapping)
        else:
            self._last_result = self._session.execute(text(sql))
        return self

    def executemany(self, sql: str, seq_of_parameters: Sequence[Sequence[Any]]) -> None:
        for params in seq_of_parameters:
            self.execute(sql, params)

    # --- fetch ---

    def fetchone(self) -> tuple[Any, ...] | None:
        if self._last_result is None:
            return None
        row = self._last_result.fetchone()
        return tuple(row) if row is not None else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        if self._last_result is None:
            return []
        return [tuple(r) for r in self._last_result.fetchall()]

    # --- transaction ---

    def commit(self) -> None:
        self._session.commit()

    def rollback(self) -> None:
        self._session.rollback()

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """Nested transaction; rolled back alone when the block raises."""
        nested = self._session.begin_nested()
        try:
            yield
        except BaseException:
            nested.rollback()
            raise
        else:
            nested.commit()

    def close(self) -> None:
        self._session.close()

    # --- properties ---

    @property
    def rowcount(self) -> int:
        if self._last_result is None:
            return -1
        return self._last_result.rowcount

    @property
    def lastrowid(self) -> Any:
        if self._last_result is None:
            return None
        return self._last_result.lastrowid

    @property
    def description(self) -> list[tuple[str, ...]] | None:
        """DB-API 2.0 compatible description from the last result."""
        if self._last_result is None or not self._last_result.returns_rows:
            return None
        keys = list(self._last_result.keys())
        return [(k, None, None, None, None, None, None) for k in keys]

    @property
    def dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    @property
    def raw(self) -> Any:
        """Driver-level connection of the current transaction."""
        return self._session.connection().connection.driver_connection

    @property
    def session(self) -> Session:
        """Access the underlying SA session."""
        return self._session


__all__ = [
    "DataSpineSession",
    "SAConnectionBridge",
    "create_dataspine_engine",
    "dataspine_session_factory",
    "to_named",
]
