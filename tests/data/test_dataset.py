"""Tests for Dataset ordering, cascade delete and key propagation."""

from __future__ import annotations

import pytest

from dataspine.core.errors import NotFound, ShapeMismatch
from dataspine.data import ChangeTrackedContainer, Dataset, FieldDef, FieldType, Relation, RowState

ORDER_ROWS = [
    {"order_no": 1, "customer": "alice", "status": "open", "total": "10", "note": None, "version": 1},
    {"order_no": 2, "customer": "bob", "status": "open", "total": "25", "note": None, "version": 1},
]
LINE_ROWS = [
    {"line_id": 10, "order_no": 1, "sku": "SKU-A", "qty": 2},
    {"line_id": 11, "order_no": 1, "sku": "SKU-B", "qty": 1},
    {"line_id": 20, "order_no": 2, "sku": "SKU-A", "qty": 5},
]


@pytest.fixture
def loaded(dataset: Dataset) -> Dataset:
    dataset["orders"].load(ORDER_ROWS)
    dataset["order_lines"].load(LINE_ROWS)
    return dataset


def _simple(name: str) -> ChangeTrackedContainer:
    return ChangeTrackedContainer(
        name, [FieldDef("id", FieldType.INTEGER), FieldDef("ref", FieldType.INTEGER)], key=["id"]
    )


class TestContainers:
    def test_lookup(self, dataset, orders):
        assert dataset["orders"] is orders
        assert "order_lines" in dataset
        assert dataset.names == ("orders", "order_lines")

    def test_unknown_container(self, dataset):
        with pytest.raises(ShapeMismatch):
            dataset.container("customers")

    def test_duplicate_container(self, dataset, new_orders):
        with pytest.raises(ShapeMismatch):
            dataset.add(new_orders())


class TestSyncOrder:
    def test_parents_first_regardless_of_registration(self, orders, lines):
        ds = Dataset("book", [lines, orders])
        ds.add_relation(Relation("has_lines", "orders", ("order_no",), "order_lines", ("order_no",)))
        assert [c.name for c in ds.sync_order()] == ["orders", "order_lines"]

    def test_registration_order_without_relations(self):
        ds = Dataset("plain", [_simple("b"), _simple("a")])
        assert [c.name for c in ds.sync_order()] == ["b", "a"]

    def test_three_levels(self):
        ds = Dataset("tree", [_simple("c"), _simple("b"), _simple("a")])
        ds.add_relation(Relation("a_b", "a", ("id",), "b", ("ref",)))
        ds.add_relation(Relation("b_c", "b", ("id",), "c", ("ref",)))
        assert [c.name for c in ds.sync_order()] == ["a", "b", "c"]

    def test_cycle_is_rejected_and_not_kept(self):
        ds = Dataset("loop", [_simple("a"), _simple("b")])
        ds.add_relation(Relation("a_b", "a", ("id",), "b", ("ref",)))
        with pytest.raises(ShapeMismatch, match="cycle"):
            ds.add_relation(Relation("b_a", "b", ("id",), "a", ("ref",)))
        assert [r.name for r in ds.relations] == ["a_b"]

    def test_self_reference_is_allowed(self):
        ds = Dataset("self", [_simple("node")])
        ds.add_relation(Relation("parent_of", "node", ("id",), "node", ("ref",)))
        assert [c.name for c in ds.sync_order()] == ["node"]

    def test_unknown_relation_field(self, orders, lines):
        ds = Dataset("book", [orders, lines])
        with pytest.raises(ShapeMismatch):
            ds.add_relation(Relation("bad", "orders", ("order_id",), "order_lines", ("order_no",)))

    def test_relation_field_lists_must_match(self):
        with pytest.raises(ShapeMismatch):
            Relation("bad", "a", ("id",), "b", ())


class TestCascadeDelete:
    def test_children_are_tombstoned(self, loaded):
        loaded.mark_deleted("orders", 1)
        lines = loaded["order_lines"]
        assert lines.classify(10) is RowState.PENDING_DELETE
        assert lines.classify(11) is RowState.PENDING_DELETE
        assert lines.classify(20) is RowState.UNCHANGED

    def test_children_found_through_before_image(self, loaded):
        loaded["orders"].find(1)["order_no"] = 99
        loaded.mark_deleted("orders", loaded["orders"].find(99))
        assert loaded["order_lines"].classify(10) is RowState.PENDING_DELETE

    def test_non_cascading_relation(self, orders, lines):
        ds = Dataset(
            "book",
            [orders, lines],
            [Relation("has_lines", "orders", ("order_no",), "order_lines", ("order_no",), False)],
        )
        orders.load(ORDER_ROWS)
        lines.load(LINE_ROWS)
        ds.mark_deleted("orders", 1)
        assert not lines.has_changes()
        assert [r["line_id"] for r in ds.orphans(ds.relations[0])] == [10, 11]

    def test_unknown_row(self, loaded):
        with pytest.raises(NotFound):
            loaded.mark_deleted("orders", 42)

    def test_pending_insert_child_is_cancelled(self, loaded):
        line = loaded["order_lines"].add_new(order_no=2, sku="SKU-Z")
        loaded.mark_deleted("orders", 2)
        assert line not in loaded["order_lines"]


class TestPropagateKey:
    def test_rewrites_children_of_placeholder_key(self, dataset):
        orders, lines = dataset["orders"], dataset["order_lines"]
        parent = orders.add_new(order_no=-1, customer="carol")
        child = lines.add_new(order_no=-1, sku="SKU-A")
        other = lines.add_new(order_no=-2, sku="SKU-B")

        parent["order_no"] = 500
        changes = dataset.propagate_key("orders", parent, {"order_no": -1})

        assert child["order_no"] == 500
        assert other["order_no"] == -2
        assert changes == [(child, "order_no", -1)]

    def test_none_placeholder_is_left_alone(self, dataset):
        parent = dataset["orders"].add_new(customer="dan")
        child = dataset["order_lines"].add_new(sku="SKU-A")
        parent["order_no"] = 7
        assert dataset.propagate_key("orders", parent, {"order_no": None}) == []
        assert child["order_no"] is None


class TestOrphans:
    def test_orphans_lists_unmatched_children(self, loaded):
        loaded["order_lines"].add_new(order_no=77, sku="SKU-X")
        orphans = loaded.orphans(loaded.relations[0])
        assert [r["order_no"] for r in orphans] == [77]

    def test_pending_orphans(self, loaded):
        relation = loaded.relations[0]
        lines = loaded["order_lines"]
        loaded.mark_deleted("orders", 1)
        doomed = lines.add_new(order_no=1, sku="SKU-N")
        assert loaded.pending_orphans() == [(relation, doomed)]

    def test_no_pending_orphans_without_deletes(self, loaded):
        loaded["order_lines"].add_new(order_no=1, sku="SKU-N")
        assert loaded.pending_orphans() == []


class TestBulk:
    def test_reject_changes_everywhere(self, loaded):
        loaded.mark_deleted("orders", 1)
        assert loaded.has_changes()
        loaded.reject_changes()
        assert not loaded.has_changes()
        assert len(loaded["order_lines"]) == 3

    def test_clear(self, loaded):
        loaded.clear()
        assert len(loaded["orders"]) == 0
