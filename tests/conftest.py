"""
Shared pytest fixtures for dataspine tests.

This module provides:
- An in-memory SQLite store with an ``orders`` / ``order_lines`` schema
- A recording store wrapper that counts every store round-trip
- Container, binding, dataset and entity factories for the schema
- Settings cache isolation

Usage:
    Fixtures are auto-discovered by pytest:

    def test_something(engine, orders, orders_binding):
        ...
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import pytest

from dataspine.core import settings as settings_module
from dataspine.core.adapters.sql_store import SqlStore
from dataspine.core.adapters.sqlite import SqliteConnection
from dataspine.data import (
    ChangeTrackedContainer,
    DataSourceBinding,
    Dataset,
    FieldDef,
    FieldType,
    Relation,
)
from dataspine.sync import BusinessEntity, SyncEngine

SCHEMA = """
CREATE TABLE orders (
    order_no  INTEGER PRIMARY KEY,
    customer  TEXT NOT NULL,
    status    TEXT NOT NULL,
    total     TEXT,
    note      TEXT,
    version   INTEGER
);
CREATE TABLE order_lines (
    line_id   INTEGER PRIMARY KEY,
    order_no  INTEGER NOT NULL REFERENCES orders(order_no),
    sku       TEXT NOT NULL,
    qty       INTEGER NOT NULL CHECK (qty > 0),
    UNIQUE (order_no, sku)
);
"""

SEED = """
INSERT INTO orders VALUES (1, 'alice', 'open', '10.00', NULL, 1);
INSERT INTO orders VALUES (2, 'bob', 'open', '25.50', 'rush', 1);
INSERT INTO order_lines VALUES (10, 1, 'SKU-A', 2);
INSERT INTO order_lines VALUES (11, 1, 'SKU-B', 1);
INSERT INTO order_lines VALUES (20, 2, 'SKU-A', 5);
"""


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Tests that touch a store are integration tests; everything else is unit."""
    for item in items:
        fixtures = set(getattr(item, "fixturenames", ()))
        markers = {mark.name for mark in item.iter_markers()}
        if markers & {"unit", "integration"}:
            continue
        if fixtures & {"conn", "store", "recording", "engine", "entity"}:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Settings isolation
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Each test sees fresh settings and no DATASPINE_* leakage."""
    monkeypatch.setattr(settings_module, "_settings_cache", None)
    for name in list(os.environ):
        if name.startswith("DATASPINE_"):
            monkeypatch.delenv(name)
    yield


# =============================================================================
# Store fixtures
# =============================================================================


class RecordingTransaction:
    """Delegating transaction that logs every store call on its store."""

    def __init__(self, store: RecordingStore, inner: Any) -> None:
        self._store = store
        self._inner = inner

    def _log(self, op: str, table: str | None = None) -> None:
        self._store.calls.append((op, table))

    def query(self, table, columns, predicate):
        self._log("query", table)
        return self._inner.query(table, columns, predicate)

    def insert(self, table, values, generated_key=None):
        self._log("insert", table)
        return self._inner.insert(table, values, generated_key)

    def update_row(self, table, key, changed, expected=None):
        self._log("update", table)
        return self._inner.update_row(table, key, changed, expected)

    def delete_row(self, table, key):
        self._log("delete", table)
        return self._inner.delete_row(table, key)

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        with self._inner.savepoint():
            yield

    def commit(self) -> None:
        self._log("commit")
        self._inner.commit()

    def rollback(self) -> None:
        self._log("rollback")
        self._inner.rollback()


class RecordingStore:
    """Store wrapper recording ``(operation, table)`` for every call."""

    def __init__(self, inner: Any) -> None:
        self.inner = inner
        self.calls: list[tuple[str, str | None]] = []

    def begin(self, timeout: float | None = None) -> RecordingTransaction:
        self.calls.append(("begin", None))
        return RecordingTransaction(self, self.inner.begin(timeout))

    def close(self) -> None:
        self.inner.close()

    def ops(self, *names: str) -> list[tuple[str, str | None]]:
        return [c for c in self.calls if c[0] in names]

    @property
    def writes(self) -> list[tuple[str, str | None]]:
        return self.ops("insert", "update", "delete")

    def reset(self) -> None:
        self.calls.clear()


@pytest.fixture
def conn() -> Iterator[SqliteConnection]:
    """In-memory SQLite connection with the orders schema and seed rows."""
    connection = SqliteConnection(":memory:")
    connection.raw.executescript(SCHEMA)
    connection.raw.executescript(SEED)
    connection.commit()
    yield connection
    connection.close()


@pytest.fixture
def store(conn: SqliteConnection) -> SqlStore:
    return SqlStore(conn)


@pytest.fixture
def recording(store: SqlStore) -> RecordingStore:
    return RecordingStore(store)


@pytest.fixture
def engine(recording: RecordingStore) -> SyncEngine:
    return SyncEngine(recording)


def fetch_rows(conn: SqliteConnection, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
    """Read straight from the database, bypassing the engine."""
    cursor = conn.raw.execute(sql, params)
    names = [d[0] for d in cursor.description]
    return [dict(zip(names, row)) for row in cursor.fetchall()]


# =============================================================================
# Containers, bindings, datasets
# =============================================================================


def make_orders(name: str = "orders") -> ChangeTrackedContainer:
    return ChangeTrackedContainer(
        name,
        [
            FieldDef("order_no", FieldType.INTEGER),
            FieldDef("customer"),
            FieldDef("status", default="open", label="Status"),
            FieldDef("total", FieldType.DECIMAL),
            FieldDef("note"),
            FieldDef("version", FieldType.INTEGER),
        ],
        key=["order_no"],
    )


def make_lines(name: str = "order_lines") -> ChangeTrackedContainer:
    return ChangeTrackedContainer(
        name,
        [
            FieldDef("line_id", FieldType.INTEGER),
            FieldDef("order_no", FieldType.INTEGER),
            FieldDef("sku"),
            FieldDef("qty", FieldType.INTEGER, default=1),
        ],
        key=["line_id"],
    )


@pytest.fixture
def orders() -> ChangeTrackedContainer:
    return make_orders()


@pytest.fixture
def lines() -> ChangeTrackedContainer:
    return make_lines()


@pytest.fixture
def orders_binding() -> DataSourceBinding:
    return DataSourceBinding("orders", "orders", generated_key="order_no")


@pytest.fixture
def lines_binding() -> DataSourceBinding:
    return DataSourceBinding("order_lines", "order_lines", generated_key="line_id")


ORDER_LINES = Relation("order_has_lines", "orders", ("order_no",), "order_lines", ("order_no",))


@pytest.fixture
def dataset(orders: ChangeTrackedContainer, lines: ChangeTrackedContainer) -> Dataset:
    return Dataset("order_book", [orders, lines], [ORDER_LINES])


@pytest.fixture
def bindings(
    orders_binding: DataSourceBinding, lines_binding: DataSourceBinding
) -> list[DataSourceBinding]:
    return [orders_binding, lines_binding]


def customer_required(container: ChangeTrackedContainer) -> tuple[bool, str]:
    row = container.current
    if not row["customer"]:
        return False, "customer is required"
    return True, ""


@pytest.fixture
def entity(
    dataset: Dataset, bindings: list[DataSourceBinding], engine: SyncEngine
) -> BusinessEntity:
    return BusinessEntity(
        "orders", dataset, bindings, engine, validators={"orders": [customer_required]}
    )


@pytest.fixture
def fetch(conn: SqliteConnection) -> Callable[..., list[dict[str, Any]]]:
    """``fetch(sql, params)`` straight from the database."""
    return lambda sql, params=(): fetch_rows(conn, sql, params)


@pytest.fixture
def new_orders() -> Callable[..., ChangeTrackedContainer]:
    """Factory for extra ``orders`` containers (e.g. a second caller)."""
    return make_orders
