"""Tests for the SQLAlchemy engine factory and SAConnectionBridge.

The bridge must behave like ``SqliteConnection`` under ``SqlStore``:
same generated keys, rowcounts, savepoints and error classification.
"""

from __future__ import annotations

from collections.abc import Iterator

import pytest

from dataspine.core.adapters.sql_store import SqlStore
from dataspine.core.errors import ConstraintViolation
from dataspine.core.orm.session import (
    DataSpineSession,
    SAConnectionBridge,
    create_dataspine_engine,
    dataspine_session_factory,
    to_named,
)
from dataspine.data.predicate import Predicate, where

DDL = [
    "CREATE TABLE parents (id INTEGER PRIMARY KEY, name TEXT NOT NULL UNIQUE)",
    "CREATE TABLE kids (id INTEGER PRIMARY KEY, parent_id INTEGER NOT NULL REFERENCES parents(id))",
]


@pytest.fixture
def sa_store() -> Iterator[SqlStore]:
    engine = create_dataspine_engine("sqlite://")
    with engine.begin() as conn:
        for statement in DDL:
            conn.exec_driver_sql(statement)
    store = SqlStore(SAConnectionBridge(DataSpineSession(bind=engine)))
    yield store
    store.close()
    engine.dispose()


class TestToNamed:
    @pytest.mark.parametrize(
        "sql",
        [
            "UPDATE t SET a = ? WHERE b = ?",
            "UPDATE t SET a = %s WHERE b = %s",
            "UPDATE t SET a = :1 WHERE b = :2",
        ],
    )
    def test_positional_styles(self, sql):
        assert to_named(sql, [1, 2]) == (
            "UPDATE t SET a = :p0 WHERE b = :p1",
            {"p0": 1, "p1": 2},
        )


class TestEngine:
    def test_session_factory(self):
        engine = create_dataspine_engine("sqlite://")
        try:
            session = dataspine_session_factory(engine)()
            assert isinstance(session, DataSpineSession)
            session.close()
        finally:
            engine.dispose()

    def test_foreign_keys_enabled(self):
        engine = create_dataspine_engine("sqlite://")
        try:
            with engine.connect() as conn:
                assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1
        finally:
            engine.dispose()


class TestBridgeUnderStore:
    def test_dialect_inferred(self, sa_store):
        assert sa_store.dialect.name == "sqlite"

    def test_round_trip(self, sa_store):
        with sa_store.begin() as tx:
            parent = tx.insert("parents", {"id": None, "name": "p"}, generated_key="id")
            tx.insert("kids", {"id": 7, "parent_id": parent})
            assert tx.update_row("parents", {"id": parent}, {"name": "q"}, {"name": "p"}) == 1
        with sa_store.begin() as tx:
            assert tx.query("parents", ["id", "name"], Predicate()) == [{"id": parent, "name": "q"}]
            assert tx.query("kids", ["parent_id"], where("id").eq(7)) == [{"parent_id": parent}]

    def test_savepoint_rolls_back_alone(self, sa_store):
        with sa_store.begin() as tx:
            tx.insert("parents", {"id": 1, "name": "kept"})
            with pytest.raises(ConstraintViolation):
                with tx.savepoint():
                    tx.insert("parents", {"id": 2, "name": "dropped"})
                    tx.insert("parents", {"id": 3, "name": "kept"})
        with sa_store.begin() as tx:
            rows = tx.query("parents", ["name"], Predicate())
        assert rows == [{"name": "kept"}]

    def test_rollback(self, sa_store):
        tx = sa_store.begin()
        tx.insert("parents", {"id": 1, "name": "gone"})
        tx.rollback()
        with sa_store.begin() as tx:
            assert tx.query("parents", ["id"], Predicate()) == []

    def test_foreign_key_violation(self, sa_store):
        tx = sa_store.begin()
        with pytest.raises(ConstraintViolation):
            tx.insert("kids", {"id": 1, "parent_id": 404})
        tx.rollback()
