"""
Dataset: containers that load and synchronize as one transactional unit.

A :class:`Dataset` groups one container per backing table and owns the
parent/child relations between them. Relations drive three things:

- **Ordering:** ``sync_order()`` returns containers parents-first (Kahn's
  algorithm). The engine deletes children before parents and inserts
  parents before children.
- **Cascade delete:** ``mark_deleted()`` on a parent row tombstones the
  child rows that reference it (when the relation cascades).
- **Key propagation:** when the store assigns a generated key to a parent
  row, ``propagate_key()`` rewrites the foreign keys of child rows that
  referenced the parent's pre-insert (placeholder) key.

Examples:
    >>> ds = Dataset("order_book", [orders, lines])
    >>> ds.add_relation(Relation("order_lines", "orders", ("order_no",),
    ...                          "lines", ("order_no",)))
    >>> [c.name for c in ds.sync_order()]
    ['orders', 'lines']

Tags:
    dataset, relations, referential-integrity, ordering, dataspine
"""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from dataspine.core.errors import ShapeMismatch
from dataspine.core.logging import get_logger
from dataspine.data.container import ChangeTrackedContainer, RowState
from dataspine.data.fields import check_identifier
from dataspine.data.record import Record

logger = get_logger(__name__)


@dataclass(frozen=True)
class Relation:
    """Parent/child key relationship between two containers."""

    name: str
    parent: str
    parent_fields: tuple[str, ...]
    child: str
    child_fields: tuple[str, ...]
    cascade_delete: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "parent_fields", tuple(self.parent_fields))
        object.__setattr__(self, "child_fields", tuple(self.child_fields))
        if len(self.parent_fields) != len(self.child_fields) or not self.parent_fields:
            raise ShapeMismatch(
                f"Relation {self.name!r}: parent and child field lists must be non-empty "
                "and the same length"
            )

    def parent_value(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(row[f] for f in self.parent_fields)

    def child_value(self, row: Mapping[str, Any]) -> tuple[Any, ...]:
        return tuple(row[f] for f in self.child_fields)


class Dataset:
    """Named group of change-tracked containers plus their relations."""

    def __init__(
        self,
        name: str,
        containers: Iterable[ChangeTrackedContainer] = (),
        relations: Iterable[Relation] = (),
    ) -> None:
        self.name = name
        self._containers: dict[str, ChangeTrackedContainer] = {}
        self._relations: list[Relation] = []
        for container in containers:
            self.add(container)
        for relation in relations:
            self.add_relation(relation)

    # -- Containers --------------------------------------------------------

    def add(self, container: ChangeTrackedContainer) -> ChangeTrackedContainer:
        if container.name in self._containers:
            raise ShapeMismatch(f"Dataset {self.name!r} already has container {container.name!r}")
        self._containers[container.name] = container
        return container

    def container(self, name: str) -> ChangeTrackedContainer:
        try:
            return self._containers[name]
        except KeyError:
            raise ShapeMismatch(f"Dataset {self.name!r} has no container {name!r}") from None

    __getitem__ = container

    def __contains__(self, name: object) -> bool:
        return name in self._containers

    def __iter__(self) -> Iterator[ChangeTrackedContainer]:
        return iter(self._containers.values())

    def __len__(self) -> int:
        return len(self._containers)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._containers)

    # -- Relations ---------------------------------------------------------

    @property
    def relations(self) -> tuple[Relation, ...]:
        return tuple(self._relations)

    def add_relation(self, relation: Relation) -> Relation:
        """Declare a parent/child relation.

        Raises:
            ShapeMismatch: Unknown container or field, duplicate name, or
                the relation would create a cycle.
        """
        check_identifier(relation.name, "relation name")
        if any(r.name == relation.name for r in self._relations):
            raise ShapeMismatch(f"Duplicate relation {relation.name!r}")
        parent = self.container(relation.parent)
        child = self.container(relation.child)
        for container, names in ((parent, relation.parent_fields), (child, relation.child_fields)):
            for name in names:
                container.field(name)
        self._relations.append(relation)
        try:
            self.sync_order()
        except ShapeMismatch:
            self._relations.remove(relation)
            raise
        return relation

    def child_relations(self, parent: str) -> list[Relation]:
        return [r for r in self._relations if r.parent == parent]

    def parent_relations(self, child: str) -> list[Relation]:
        return [r for r in self._relations if r.child == child]

    def sync_order(self) -> list[ChangeTrackedContainer]:
        """Containers parents-first; registration order among independents.

        Raises:
            ShapeMismatch: The relations form a cycle.
        """
        if not self._relations:
            return list(self._containers.values())

        adjacency: dict[str, list[str]] = defaultdict(list)
        in_degree: dict[str, int] = {name: 0 for name in self._containers}
        for relation in self._relations:
            if relation.parent == relation.child:
                continue  # self-reference: ordering within one table
            adjacency[relation.parent].append(relation.child)
            in_degree[relation.child] += 1

        queue: deque[str] = deque(name for name, deg in in_degree.items() if deg == 0)
        result: list[str] = []
        while queue:
            node = queue.popleft()
            result.append(node)
            for neighbor in adjacency[node]:
                in_degree[neighbor] -= 1
                if in_degree[neighbor] == 0:
                    queue.append(neighbor)

        if len(result) != len(self._containers):
            cycle = [name for name, deg in in_degree.items() if deg > 0]
            raise ShapeMismatch(f"Relation cycle among containers: {cycle}")
        return [self._containers[name] for name in result]

    # -- Integrity ---------------------------------------------------------

    def children_of(self, relation: Relation, parent_row: Mapping[str, Any]) -> list[Record]:
        """Live child rows referencing *parent_row* through *relation*."""
        value = relation.parent_value(parent_row)
        child = self.container(relation.child)
        return [r for r in child.rows() if relation.child_value(r) == value]

    def mark_deleted(self, container: str, target: Record | Any) -> None:
        """Tombstone a row and, for cascading relations, its child rows."""
        source = self.container(container)
        with source._lock:
            row = target if isinstance(target, Record) else source.find(target)
            if row is None or source.is_deleted(row):
                source.mark_deleted(target)  # raises NotFound when absent
                return
            # the before-image identifies children of persisted parents
            parent_view = source.before_image(row) or row.snapshot()
        for relation in self.child_relations(container):
            if not relation.cascade_delete:
                continue
            for child_row in self.children_of(relation, parent_view):
                if child_row is row:
                    continue
                self.mark_deleted(relation.child, child_row)
        source.mark_deleted(row)

    def propagate_key(
        self,
        container: str,
        row: Mapping[str, Any],
        old_values: Mapping[str, Any],
    ) -> list[tuple[Record, str, Any]]:
        """Rewrite child foreign keys after *row*'s key changed on insert.

        *old_values* holds the pre-insert values of the changed fields.
        Children referencing an all-``None`` placeholder are left alone.

        Returns:
            ``(child_row, field, previous_value)`` for every rewrite, so the
            caller can undo them if the transaction rolls back.
        """
        changes: list[tuple[Record, str, Any]] = []
        for relation in self.child_relations(container):
            if not set(relation.parent_fields) & set(old_values):
                continue
            old = tuple(old_values.get(f, row[f]) for f in relation.parent_fields)
            new = relation.parent_value(row)
            if old == new or all(v is None for v in old):
                continue
            child = self.container(relation.child)
            for child_row in child.all_rows():
                if relation.child_value(child_row) != old:
                    continue
                for cf, value in zip(relation.child_fields, new):
                    changes.append((child_row, cf, child_row[cf]))
                    child_row[cf] = value
        if changes:
            logger.debug(
                "keys_propagated", dataset=self.name, container=container, rows=len(changes)
            )
        return changes

    def orphans(self, relation: Relation) -> list[Record]:
        """Live child rows whose (non-null) foreign key matches no live parent."""
        parent = self.container(relation.parent)
        child = self.container(relation.child)
        parents = {relation.parent_value(r) for r in parent.rows()}
        out = []
        for row in child.rows():
            value = relation.child_value(row)
            if all(v is None for v in value):
                continue
            if value not in parents:
                out.append(row)
        return out

    def pending_orphans(self) -> list[tuple[Relation, Record]]:
        """Child rows about to be inserted under a parent that is being deleted."""
        found = []
        for relation in self._relations:
            parent = self.container(relation.parent)
            child = self.container(relation.child)
            doomed = {
                relation.parent_value(parent.before_image(r) or r)
                for r in parent.all_rows()
                if parent.is_deleted(r)
            }
            if not doomed:
                continue
            live = {relation.parent_value(r) for r in parent.rows()}
            for row in child.changes(RowState.PENDING_INSERT):
                value = relation.child_value(row)
                if value in doomed and value not in live:
                    found.append((relation, row))
        return found

    # -- Bulk --------------------------------------------------------------

    def has_changes(self) -> bool:
        return any(c.has_changes() for c in self._containers.values())

    def clear(self) -> None:
        for container in self._containers.values():
            container.clear()

    def reject_changes(self) -> None:
        for container in self._containers.values():
            container.reject_changes()

    def __repr__(self) -> str:
        return f"Dataset({self.name!r}, containers={list(self._containers)})"


__all__ = [
    "Dataset",
    "Relation",
]
