#!/usr/bin/env python3
"""Order Book — load, edit, and synchronize a two-table dataset.

WHAT IT SHOWS
─────────────
A ``Dataset`` holds two change-tracked containers (orders and their
lines) joined by a ``Relation``. Rows are loaded through a
``BusinessEntity``, edited in memory, and written back with one
``save()``: inserts parent-first, deletes child-first, generated keys
propagated from new orders to their new lines.

ARCHITECTURE
────────────
    ┌──────────────────────────────────────┐
    │ EntityRegistry (settings, store)     │
    │   .get("orders") → BusinessEntity    │
    └─────────────────┬────────────────────┘
                      │
                      ▼
    ┌──────────────────────────────────────┐
    │ BusinessEntity                       │
    │   fetch_by_key / fetch / save        │
    └─────────────────┬────────────────────┘
                      │
                      ▼
    ┌──────────────────────────────────────┐
    │ SyncEngine → SqlStore → SQLite       │
    └──────────────────────────────────────┘

Run: python examples/01_order_book.py
"""

from dataspine import (
    BusinessEntity,
    ChangeTrackedContainer,
    DataSourceBinding,
    DataSpineSettings,
    Dataset,
    EntityRegistry,
    FieldDef,
    FieldType,
    Relation,
    create_store,
    where,
)
from dataspine.core.logging import configure_from_settings

SCHEMA = """
CREATE TABLE orders (
    order_no  INTEGER PRIMARY KEY,
    customer  TEXT NOT NULL,
    status    TEXT NOT NULL
);
CREATE TABLE order_lines (
    line_id   INTEGER PRIMARY KEY,
    order_no  INTEGER NOT NULL REFERENCES orders(order_no),
    sku       TEXT NOT NULL,
    qty       INTEGER NOT NULL CHECK (qty > 0)
);
INSERT INTO orders VALUES (1, 'alice', 'open');
INSERT INTO order_lines VALUES (10, 1, 'SKU-A', 2);
"""


def customer_required(container):
    return bool(container.current["customer"]), "customer is required"


def build_orders(registry: EntityRegistry) -> BusinessEntity:
    orders = ChangeTrackedContainer(
        "orders",
        [
            FieldDef("order_no", FieldType.INTEGER),
            FieldDef("customer"),
            FieldDef("status", default="open"),
        ],
        key=["order_no"],
    )
    lines = ChangeTrackedContainer(
        "order_lines",
        [
            FieldDef("line_id", FieldType.INTEGER),
            FieldDef("order_no", FieldType.INTEGER),
            FieldDef("sku"),
            FieldDef("qty", FieldType.INTEGER, default=1),
        ],
        key=["line_id"],
    )
    dataset = Dataset(
        "order_book",
        [orders, lines],
        [Relation("order_has_lines", "orders", ("order_no",), "order_lines", ("order_no",))],
    )
    bindings = [
        DataSourceBinding("orders", "orders", generated_key="order_no"),
        DataSourceBinding("order_lines", "order_lines", generated_key="line_id"),
    ]
    return BusinessEntity(
        "orders", dataset, bindings, registry.engine, validators={"orders": [customer_required]}
    )


def main():
    print("=" * 60)
    print("Order Book")
    print("=" * 60)

    settings = DataSpineSettings(log_format="console", log_level="WARNING")
    configure_from_settings(settings)

    store = create_store("memory")
    store.conn.raw.executescript(SCHEMA)

    with EntityRegistry(settings, store=store) as registry:
        registry.register("orders", build_orders)
        book = registry.get("orders")

        # ── 1. Load an order with its lines ─────────────────────
        print("\n--- 1. fetch_by_key(1) ---")
        found, ds = book.fetch_by_key(1)
        print(f"  Found:   {found}")
        print(f"  Lines:   {[dict(r) for r in ds['order_lines']]}")

        # ── 2. Edit, add a new order with a line ────────────────
        print("\n--- 2. Edit and add ---")
        ds["orders"].find(1)["status"] = "shipped"
        new_order = book.new_row(order_no=-1, customer="bob")
        book.new_row("order_lines", order_no=-1, sku="SKU-B", qty=3)
        print(f"  Pending: {ds.has_changes()}")

        # ── 3. Save atomically ──────────────────────────────────
        print("\n--- 3. save(atomic=True) ---")
        result = book.save(atomic=True)
        print(f"  Success: {result.success}")
        print(f"  Counts:  {result.sync.to_dict() if result.sync else None}")
        print(f"  New key: {new_order['order_no']}")

        # ── 4. A rejected row is reported, not raised ───────────
        print("\n--- 4. Validation error as a value ---")
        book.new_row(order_no=-2, customer="")
        success, errors = book.save()
        print(f"  Success: {success}")
        for error in errors:
            print(f"  Error:   {error.container}[{error.index}] {error.kind}: {error.message}")
        ds.reject_changes()

        # ── 5. Query by predicate ───────────────────────────────
        print("\n--- 5. fetch(where status = 'open') ---")
        found, ds = book.fetch(where("status").eq("open"))
        print(f"  Open orders: {[r['order_no'] for r in ds['orders']]}")

    print("\n" + "=" * 60)
    print("[OK] Order book example complete")


if __name__ == "__main__":
    main()
