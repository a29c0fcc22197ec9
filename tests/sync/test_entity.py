"""Tests for the BusinessEntity facade.

Covers:
- fetch_by_key (with children) and predicate fetch
- Non-atomic save with partial success and structured row errors
- Atomic save and remove (cascading)
- Capability protocols and a domain-specific query built on fetch()
"""

from __future__ import annotations

import pytest

from dataspine.core.errors import ShapeMismatch
from dataspine.core.protocols import Fetchable, Removable, Savable
from dataspine.data import RowState, where
from dataspine.sync import BusinessEntity, FetchResult


class OrderBook(BusinessEntity):
    """Orders entity with a domain query built on fetch()."""

    def open_orders_for(self, customer: str) -> FetchResult:
        return self.fetch(where("customer").eq(customer) & where("status").eq("open"))


class TestConstruction:
    def test_primary_is_first_in_sync_order(self, entity):
        assert entity.primary == "orders"

    def test_capabilities(self, entity):
        assert isinstance(entity, Fetchable)
        assert isinstance(entity, Savable)
        assert isinstance(entity, Removable)

    def test_missing_binding(self, dataset, orders_binding, engine):
        with pytest.raises(ShapeMismatch):
            BusinessEntity("orders", dataset, [orders_binding], engine)


class TestFetch:
    def test_fetch_by_key_loads_children(self, entity):
        found, ds = entity.fetch_by_key(1)
        assert found
        assert [r["order_no"] for r in ds["orders"]] == [1]
        assert sorted(r["line_id"] for r in ds["order_lines"]) == [10, 11]
        assert not ds.has_changes()

    def test_not_found(self, entity):
        entity.fetch_by_key(1)
        result = entity.fetch_by_key(99)
        assert not result.found
        assert result.error is None
        assert len(result.dataset["orders"]) == 0
        assert len(result.dataset["order_lines"]) == 0

    def test_fetch_single_container(self, entity):
        found, ds = entity.fetch_by_key(20, container="order_lines")
        assert found
        assert len(ds["order_lines"]) == 1

    def test_fetch_by_predicate(self, entity):
        found, ds = entity.fetch(where("status").eq("open"))
        assert found
        assert len(ds["orders"]) == 2

    def test_bad_predicate_is_a_value(self, entity, recording):
        result = entity.fetch(where("colour").eq("red"))
        assert not result.found
        assert result.error.kind == "QueryError"
        assert recording.calls == []

    def test_domain_query(self, dataset, bindings, engine):
        book = OrderBook("orders", dataset, bindings, engine)
        found, ds = book.open_orders_for("bob")
        assert found
        assert [r["order_no"] for r in ds["orders"]] == [2]


class TestSave:
    def test_partial_success_reports_rejected_row(self, entity, fetch):
        entity.new_row(order_no=-1, customer="ann", total="1")
        entity.new_row(order_no=-2, customer="", total="2")
        entity.new_row(order_no=-3, customer="cat", total="3")

        success, errors = entity.save()

        assert not success
        assert len(errors) == 1
        assert (errors[0].index, errors[0].key) == (1, -2)
        assert errors[0].message == "customer is required"
        assert len(fetch("SELECT * FROM orders")) == 4

    def test_save_updates_and_children(self, entity, fetch):
        _, ds = entity.fetch_by_key(2)
        ds["orders"].find(2)["status"] = "shipped"
        entity.new_row("order_lines", line_id=-1, order_no=2, sku="SKU-Q", qty=4)

        result = entity.save()

        assert result.success
        assert (result.sync.updated, result.sync.inserted) == (1, 1)
        assert len(fetch("SELECT * FROM order_lines WHERE order_no = 2")) == 2

    def test_conflict_is_a_row_error(self, conn, entity):
        _, ds = entity.fetch_by_key(1)
        conn.raw.execute("UPDATE orders SET note = 'other writer' WHERE order_no = 1")
        conn.raw.commit()
        ds["orders"].find(1)["status"] = "shipped"

        success, errors = entity.save()

        assert not success
        assert errors[0].kind == "OptimisticConflict"
        assert ds["orders"].classify(1) is RowState.PENDING_UPDATE

    def test_atomic_validation_failure_makes_no_store_call(self, entity, recording):
        entity.fetch_by_key(1)
        recording.reset()
        entity.dataset["orders"].find(1)["status"] = "held"
        entity.new_row(customer="", total="5")

        result = entity.save(atomic=True)

        assert not result.success
        assert [e.kind for e in result.errors] == ["ValidationFailed"]
        assert recording.calls == []

    def test_atomic_save_with_new_parent_and_children(self, entity, fetch):
        order = entity.new_row(order_no=-1, customer="dee")
        entity.new_row("order_lines", order_no=-1, sku="SKU-A")

        assert entity.save(atomic=True).success
        assert fetch("SELECT order_no FROM order_lines WHERE sku = 'SKU-A' ORDER BY order_no")[-1] == {
            "order_no": order["order_no"]
        }

    def test_nothing_pending(self, entity, recording):
        result = entity.save()
        assert result.success
        assert recording.calls == []


class TestRemove:
    def test_remove_cascades_to_children(self, entity, fetch):
        entity.fetch_by_key(1)
        assert entity.remove() is True
        assert fetch("SELECT * FROM orders WHERE order_no = 1") == []
        assert fetch("SELECT * FROM order_lines WHERE order_no = 1") == []
        assert len(entity.dataset["orders"]) == 0

    def test_remove_failure_returns_false(self, conn, entity, fetch):
        entity.fetch_by_key(2)
        conn.raw.execute("INSERT INTO order_lines VALUES (21, 2, 'SKU-Z', 1)")
        conn.raw.commit()

        assert entity.remove() is False
        assert len(fetch("SELECT * FROM orders WHERE order_no = 2")) == 1
