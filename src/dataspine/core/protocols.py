"""
Canonical protocol definitions for dataspine.

This module is the SINGLE SOURCE OF TRUTH for the structural protocols
used across dataspine. Anything that needs a Connection, a Store or one of
the entity capability interfaces imports it from here.

Manifesto:
    Protocols define contracts without inheritance:
    - **Decoupling:** The engine depends on shape, not on a database driver
    - **Testability:** A recording fake satisfies ``Store`` as well as
      :class:`~dataspine.core.adapters.sql_store.SqlStore` does

Architecture:
    ::

        protocols.py (YOU ARE HERE)
        ├── Connection        — DB-API style sync connection (sqlite3, SA bridge)
        ├── Store             — transactional store the engine synchronizes against
        ├── StoreTransaction  — one scope: query / insert / update_row / delete_row
        ├── Fetchable         — entity capability: fetch_by_key, fetch
        ├── Savable           — entity capability: save
        └── Removable         — entity capability: remove

    Consumers:
        core/adapters/sql_store.py, sync/engine.py, sync/entity.py,
        sync/registry.py

Guardrails:
    ❌ DON'T: Let the engine build SQL or touch a driver directly
    ✅ DO: Go through StoreTransaction; SQL lives in the store + dialect

    ❌ DON'T: Add implementation logic to protocol classes
    ✅ DO: Keep protocols pure contracts; implementations go in adapters

Tags:
    protocol, connection, store, transaction, capability, dataspine
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dataspine.data.predicate import Predicate

# ---------------------------------------------------------------------------
# Database Connection Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class Connection(Protocol):
    """
    Minimal SYNCHRONOUS connection interface for database operations.

    Architecture:
        ::

            Connection Protocol:
            ┌────────────────────────────────────────────────────────┐
            │ execute(sql, params)   → Execute single statement      │
            │ executemany(sql, list) → Execute for multiple params   │
            │ fetchone()             → Get one result row            │
            │ fetchall()             → Get all result rows           │
            │ commit()               → Commit transaction            │
            │ rollback()             → Rollback transaction          │
            └────────────────────────────────────────────────────────┘

            Implementations:
            ┌────────────────────────────────────────────────────────┐
            │ SqliteConnection   → sqlite3 (native sync)             │
            │ SAConnectionBridge → any SQLAlchemy URL                │
            └────────────────────────────────────────────────────────┘

    Implementations also expose ``rowcount`` and ``lastrowid`` for the
    last statement and ``description`` for the last query, with DB-API
    meaning.
    """

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters."""
        ...

    def executemany(self, sql: str, params: list[tuple]) -> Any:
        """Execute SQL statement for multiple parameter sets."""
        ...

    def fetchone(self) -> Any:
        """Fetch one row from last query."""
        ...

    def fetchall(self) -> list:
        """Fetch all rows from last query."""
        ...

    def commit(self) -> None:
        """Commit current transaction."""
        ...

    def rollback(self) -> None:
        """Rollback current transaction."""
        ...


# ---------------------------------------------------------------------------
# Store Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class StoreTransaction(Protocol):
    """
    One transactional scope against the backing store.

    Every operation runs inside the scope; nothing is visible to other
    callers until :meth:`commit`. Rows are plain ``dict`` objects keyed by
    column name.

    Architecture:
        ::

            ┌──────────────────────────────────────────────────────────────┐
            │ query(table, columns, predicate)     → list of row dicts     │
            │ insert(table, values, generated_key) → generated key or None │
            │ update_row(table, key, changed, expected) → rows affected    │
            │ delete_row(table, key)               → rows affected         │
            │ savepoint()                          → context manager       │
            │ commit() / rollback()                                        │
            └──────────────────────────────────────────────────────────────┘

    ``key`` and ``expected`` are column → value mappings. ``expected``
    holds before-image values that must still match for the update to
    apply (optimistic concurrency); a zero count means they didn't.
    """

    def query(
        self,
        table: str,
        columns: Sequence[str],
        predicate: Predicate,
    ) -> list[dict[str, Any]]:
        ...

    def insert(
        self,
        table: str,
        values: Mapping[str, Any],
        generated_key: str | None = None,
    ) -> Any:
        ...

    def update_row(
        self,
        table: str,
        key: Mapping[str, Any],
        changed: Mapping[str, Any],
        expected: Mapping[str, Any] | None = None,
    ) -> int:
        ...

    def delete_row(self, table: str, key: Mapping[str, Any]) -> int:
        ...

    def savepoint(self) -> AbstractContextManager[Any]:
        """Nested scope: rolled back alone if the block raises."""
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@runtime_checkable
class Store(Protocol):
    """A backing store that hands out transactional scopes."""

    def begin(self, timeout: float | None = None) -> StoreTransaction:
        """Open a scope. *timeout* bounds each store round-trip, in seconds."""
        ...

    def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Entity Capability Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class Fetchable(Protocol):
    """Entity that can populate its dataset from the store."""

    def fetch_by_key(self, key: Any, container: str | None = None) -> Any:
        ...

    def fetch(self, predicate: Predicate, container: str | None = None) -> Any:
        ...


@runtime_checkable
class Savable(Protocol):
    """Entity that can synchronize pending changes."""

    def save(self, dataset: Any = None, *, atomic: bool = False) -> Any:
        ...


@runtime_checkable
class Removable(Protocol):
    """Entity that can delete what it holds."""

    def remove(self, dataset: Any = None) -> bool:
        ...


__all__ = [
    "Connection",
    "Fetchable",
    "Removable",
    "Savable",
    "Store",
    "StoreTransaction",
]
