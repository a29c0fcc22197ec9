"""SQL dialect abstraction for storage-agnostic synchronization.

Provides a ``Dialect`` protocol and concrete implementations for every
supported database backend. The SQL store uses ``Dialect`` methods to
build the four statement shapes the engine needs (select, insert,
update, delete), translate a typed :class:`~dataspine.data.predicate.Predicate`
into a WHERE clause, and manage savepoints, without importing or
referencing any specific database driver.

Manifesto:
    The synchronization engine must be portable across SQLite, PostgreSQL,
    DB2, MySQL, and Oracle. Without a dialect layer, placeholder styles and
    savepoint syntax leak into the store and break when switching backends.

    - **One interface:** Dialect protocol for all SQL generation
    - **Values are always bound:** predicates become placeholders + params,
      never text
    - **Identifiers are validated:** table and column names must match
      ``[A-Za-z_][A-Za-z0-9_]*`` before they reach a statement

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │                     Dialect Abstraction Layer                     │
    └──────────────────────────────────────────────────────────────────┘

    SqlStore:
    ┌────────────────────────────────────────────────────────────────┐
    │  sql, params = d.update("orders", {"status": "x"}, match)      │
    │  conn.execute(sql, params)                                     │
    └────────────────────────────────────────────────────────────────┘
                              │
                              ▼
    ┌──────────┐ ┌──────────────┐ ┌────────┐ ┌────────┐ ┌──────────┐
    │ SQLite   │ │ PostgreSQL   │ │  DB2   │ │ MySQL  │ │  Oracle  │
    │ ?, ?, ?  │ │ %s, %s, %s   │ │ ?, ?, ?│ │ %s,%s  │ │ :1, :2   │
    │ lastrowid│ │ RETURNING    │ │lastrow │ │lastrow │ │ no RELEASE│
    └──────────┘ └──────────────┘ └────────┘ └────────┘ └──────────┘

Examples:
    >>> from dataspine.core.dialect import get_dialect
    >>> from dataspine.data.predicate import where
    >>> d = get_dialect("sqlite")
    >>> d.select("orders", ["order_no", "status"], where("status").eq("open"))
    ('SELECT order_no, status FROM orders WHERE status = ?', ['open'])
    >>> get_dialect("oracle").placeholders(3)
    ':1, :2, :3'

Guardrails:
    ❌ DON'T: Format a value into SQL text
    ✅ DO: Return ``(sql, params)`` and let the driver bind

Tags:
    dialect, sql, abstraction, portability, database, dataspine,
    multi-backend, predicate
"""

from __future__ import annotations

import datetime as _dt
from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from dataspine.core.errors import ConfigError
from dataspine.data.fields import check_identifier
from dataspine.data.predicate import Op

if TYPE_CHECKING:
    from dataspine.data.predicate import Predicate


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract.

    Statement builders return ``(sql, params)``; ``params`` is a list in
    placeholder order.
    """

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    # -- Placeholder generation --------------------------------------------

    def placeholder(self, index: int) -> str:
        """Single positional placeholder (0-based index).

        ``index`` is ignored by dialects that use anonymous placeholders
        (SQLite ``?``, MySQL ``%s``) but required by numbered styles
        (Oracle ``:1``).
        """
        ...

    def placeholders(self, count: int, start: int = 0) -> str:
        """Comma-separated placeholder list."""
        ...

    # -- Statements --------------------------------------------------------

    def where(self, predicate: Predicate, start: int = 0) -> tuple[str, list[Any]]:
        """Condition text (no ``WHERE`` keyword; empty for the empty predicate)."""
        ...

    def select(
        self, table: str, columns: Sequence[str], predicate: Predicate
    ) -> tuple[str, list[Any]]:
        ...

    def insert(
        self, table: str, values: Mapping[str, Any], generated_key: str | None = None
    ) -> tuple[str, list[Any]]:
        ...

    def update(
        self, table: str, values: Mapping[str, Any], match: Predicate
    ) -> tuple[str, list[Any]]:
        ...

    def delete(self, table: str, match: Predicate) -> tuple[str, list[Any]]:
        ...

    def returning(self, column: str) -> str:
        """``RETURNING`` clause for generated keys; empty when unsupported."""
        ...

    # -- Transactions ------------------------------------------------------

    def begin_statement(self) -> str | None:
        """Explicit statement that opens a scope, or ``None`` if implicit."""
        ...

    def savepoint(self, name: str) -> str:
        ...

    def release_savepoint(self, name: str) -> str | None:
        """``None`` when the backend has no RELEASE."""
        ...

    def rollback_to_savepoint(self, name: str) -> str:
        ...

    # -- Values ------------------------------------------------------------

    def adapt(self, value: Any) -> Any:
        """Convert a coerced field value into something the driver binds."""
        ...


# =========================================================================
# Shared statement construction
# =========================================================================


class _StandardSQL:
    """ANSI statement shapes shared by every concrete dialect."""

    name = "standard"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int, start: int = 0) -> str:
        return ", ".join(self.placeholder(start + i) for i in range(count))

    def adapt(self, value: Any) -> Any:
        return value

    def _column(self, name: str) -> str:
        return check_identifier(name, "column name")

    def where(self, predicate: Predicate, start: int = 0) -> tuple[str, list[Any]]:
        parts: list[str] = []
        params: list[Any] = []
        for cond in predicate:
            column = self._column(cond.field)
            op = Op(cond.op)
            if op.unary:
                parts.append(f"{column} {op.value}")
            elif op is Op.IN:
                values = list(cond.value)
                ph = self.placeholders(len(values), start + len(params))
                parts.append(f"{column} IN ({ph})")
                params.extend(self.adapt(v) for v in values)
            else:
                parts.append(f"{column} {op.value} {self.placeholder(start + len(params))}")
                params.append(self.adapt(cond.value))
        return " AND ".join(parts), params

    def _with_where(self, sql: str, predicate: Predicate, start: int) -> tuple[str, list[Any]]:
        clause, params = self.where(predicate, start)
        if clause:
            sql = f"{sql} WHERE {clause}"
        return sql, params

    def select(
        self, table: str, columns: Sequence[str], predicate: Predicate
    ) -> tuple[str, list[Any]]:
        check_identifier(table, "table name")
        cols = ", ".join(self._column(c) for c in columns)
        return self._with_where(f"SELECT {cols} FROM {table}", predicate, 0)

    def insert(
        self, table: str, values: Mapping[str, Any], generated_key: str | None = None
    ) -> tuple[str, list[Any]]:
        check_identifier(table, "table name")
        columns = [self._column(c) for c in values]
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({self.placeholders(len(columns))})"
        if generated_key is not None:
            sql += self.returning(self._column(generated_key))
        return sql, [self.adapt(v) for v in values.values()]

    def update(
        self, table: str, values: Mapping[str, Any], match: Predicate
    ) -> tuple[str, list[Any]]:
        check_identifier(table, "table name")
        assignments = ", ".join(
            f"{self._column(c)} = {self.placeholder(i)}" for i, c in enumerate(values)
        )
        params = [self.adapt(v) for v in values.values()]
        sql, where_params = self._with_where(
            f"UPDATE {table} SET {assignments}", match, len(params)
        )
        return sql, params + where_params

    def delete(self, table: str, match: Predicate) -> tuple[str, list[Any]]:
        check_identifier(table, "table name")
        return self._with_where(f"DELETE FROM {table}", match, 0)

    def returning(self, column: str) -> str:  # noqa: ARG002
        return ""

    def begin_statement(self) -> str | None:
        return None

    def savepoint(self, name: str) -> str:
        return f"SAVEPOINT {check_identifier(name, 'savepoint name')}"

    def release_savepoint(self, name: str) -> str | None:
        return f"RELEASE SAVEPOINT {check_identifier(name, 'savepoint name')}"

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {check_identifier(name, 'savepoint name')}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect(_StandardSQL):
    """SQLite dialect: ``?`` placeholders, explicit ``BEGIN``.

    ``sqlite3`` only opens a transaction implicitly before DML, so a
    savepoint released outside one would commit on its own. The store
    therefore issues ``BEGIN`` itself.
    """

    name = "sqlite"

    def begin_statement(self) -> str | None:
        return "BEGIN"

    def adapt(self, value: Any) -> Any:
        # sqlite3 has no Decimal binding and its datetime adapters are deprecated
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (_dt.datetime, _dt.date)):
            return value.isoformat()
        return value


class PostgreSQLDialect(_StandardSQL):
    """PostgreSQL dialect: ``%s`` placeholders (psycopg), ``RETURNING``."""

    name = "postgresql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def returning(self, column: str) -> str:
        return f" RETURNING {column}"


class DB2Dialect(_StandardSQL):
    """IBM DB2 dialect: ``?`` (qmark) placeholders.

    Compatible with ``ibm_db_dbi``. Savepoints must be declared
    ``ON ROLLBACK RETAIN CURSORS``.
    """

    name = "db2"

    def savepoint(self, name: str) -> str:
        return f"{super().savepoint(name)} ON ROLLBACK RETAIN CURSORS"


class MySQLDialect(_StandardSQL):
    """MySQL dialect: ``%s`` placeholders.

    Compatible with ``mysql.connector`` and ``PyMySQL``.
    """

    name = "mysql"

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"


class OracleDialect(_StandardSQL):
    """Oracle dialect: ``:1, :2`` numbered placeholders.

    Compatible with ``oracledb``. Oracle has no ``RELEASE SAVEPOINT``;
    savepoints lapse when the transaction ends.
    """

    name = "oracle"

    def placeholder(self, index: int) -> str:
        return f":{index + 1}"

    def release_savepoint(self, name: str) -> str | None:  # noqa: ARG002
        return None

    def rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO {check_identifier(name, 'savepoint name')}"


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[str, Dialect] = {
    "sqlite": SQLiteDialect(),
    "postgresql": PostgreSQLDialect(),
    "postgres": PostgreSQLDialect(),  # alias
    "db2": DB2Dialect(),
    "ibm_db_sa": DB2Dialect(),  # SQLAlchemy dialect name
    "mysql": MySQLDialect(),
    "mariadb": MySQLDialect(),
    "oracle": OracleDialect(),
}


def get_dialect(db_type: str) -> Dialect:
    """Get a dialect by database type name.

    Args:
        db_type: One of ``'sqlite'``, ``'postgresql'``, ``'postgres'``,
                 ``'db2'``, ``'mysql'``, ``'oracle'`` or a registered name.

    Raises:
        ConfigError: If ``db_type`` is not recognised.

    Example:
        >>> get_dialect("postgresql").placeholders(2)
        '%s, %s'
    """
    key = db_type.lower()
    if key not in _DIALECTS:
        raise ConfigError(
            f"Unknown dialect '{db_type}'. "
            f"Supported: {sorted(set(_DIALECTS) - {'postgres', 'ibm_db_sa', 'mariadb'})}"
        )
    return _DIALECTS[key]


def register_dialect(name: str, dialect: Dialect) -> None:
    """Register a custom dialect implementation.

    Useful for third-party database drivers or test doubles.
    """
    _DIALECTS[name.lower()] = dialect


__all__ = [
    # Protocol
    "Dialect",
    # Implementations
    "SQLiteDialect",
    "PostgreSQLDialect",
    "DB2Dialect",
    "MySQLDialect",
    "OracleDialect",
    # Factory
    "get_dialect",
    "register_dialect",
]
