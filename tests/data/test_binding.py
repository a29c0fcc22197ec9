"""Tests for DataSourceBinding validation and update guards."""

from __future__ import annotations

import pytest

from dataspine.core.errors import ShapeMismatch
from dataspine.core.settings import ConcurrencyMode
from dataspine.data.binding import DataSourceBinding, index_bindings
from dataspine.data.container import ChangeTrackedContainer
from dataspine.data.fields import FieldDef


class TestValidate:
    def test_valid_binding(self, orders):
        DataSourceBinding("orders", "orders", generated_key="order_no").validate(orders)

    def test_wrong_container(self, orders):
        with pytest.raises(ShapeMismatch):
            DataSourceBinding("order_lines", "order_lines").validate(orders)

    def test_key_must_be_container_fields(self, orders):
        with pytest.raises(ShapeMismatch, match="Primary-key"):
            DataSourceBinding("orders", "orders", key=("order_id",)).validate(orders)

    def test_skip_must_be_container_fields(self, orders):
        with pytest.raises(ShapeMismatch, match="Skip-list"):
            DataSourceBinding("orders", "orders", skip={"colour"}).validate(orders)

    def test_key_cannot_be_skipped(self, orders):
        with pytest.raises(ShapeMismatch, match="skip-listed"):
            DataSourceBinding("orders", "orders", skip={"order_no"}).validate(orders)

    def test_generated_key_must_exist(self, orders):
        with pytest.raises(ShapeMismatch, match="Generated-key"):
            DataSourceBinding("orders", "orders", generated_key="id").validate(orders)

    def test_version_field_must_be_integer(self, orders):
        with pytest.raises(ShapeMismatch, match="integer"):
            DataSourceBinding("orders", "orders", version_field="status").validate(orders)

    def test_table_must_be_identifier(self):
        with pytest.raises(ShapeMismatch):
            DataSourceBinding("orders", "orders; DROP TABLE orders")

    def test_key_defaults_to_container_key(self, orders):
        assert DataSourceBinding("orders", "orders").key_fields(orders) == ("order_no",)


class TestGuardFields:
    def test_all_fields_excludes_key_and_skip(self, orders):
        binding = DataSourceBinding("orders", "orders", skip={"note"})
        assert binding.guard_fields(orders, {"status"}, ConcurrencyMode.ALL_FIELDS) == (
            "customer",
            "status",
            "total",
            "version",
        )

    def test_all_fields_excludes_container_skip(self):
        notes = ChangeTrackedContainer(
            "notes", [FieldDef("id"), FieldDef("body"), FieldDef("label")], key=["id"], skip=["label"]
        )
        binding = DataSourceBinding("notes", "notes")
        assert binding.guard_fields(notes, {"body"}, ConcurrencyMode.ALL_FIELDS) == ("body",)

    def test_changed_fields(self, orders):
        binding = DataSourceBinding("orders", "orders")
        guard = binding.guard_fields(orders, {"status", "order_no"}, ConcurrencyMode.CHANGED_FIELDS)
        assert guard == ("status",)

    def test_key_only(self, orders):
        binding = DataSourceBinding("orders", "orders")
        assert binding.guard_fields(orders, {"status"}, ConcurrencyMode.KEY_ONLY) == ()

    def test_binding_mode_overrides_engine_default(self, orders):
        binding = DataSourceBinding("orders", "orders", concurrency="key_only")
        assert binding.guard_fields(orders, {"status"}, ConcurrencyMode.ALL_FIELDS) == ()

    def test_version_field_wins(self, orders):
        binding = DataSourceBinding("orders", "orders", version_field="version")
        assert binding.guard_fields(orders, {"status"}, ConcurrencyMode.ALL_FIELDS) == ("version",)


class TestIndexBindings:
    def test_from_iterable(self, orders_binding, lines_binding):
        assert set(index_bindings([orders_binding, lines_binding])) == {"orders", "order_lines"}

    def test_single_binding(self, orders_binding):
        assert index_bindings(orders_binding) == {"orders": orders_binding}

    def test_duplicate_container(self, orders_binding):
        with pytest.raises(ShapeMismatch):
            index_bindings([orders_binding, orders_binding])
