"""
Business entity facade.

A :class:`BusinessEntity` owns one :class:`~dataspine.data.dataset.Dataset`
and its data source bindings, and exposes named operations that compose
the shared :class:`~dataspine.sync.engine.SyncEngine` primitives. The
engine is composed, not inherited; domain-specific queries are plain
methods (or functions) built on :meth:`BusinessEntity.fetch`.

Expected conditions come back as values:

====================================  ===================================
``fetch_by_key`` on a missing key     ``FetchResult(found=False, ...)``
row rejected by a validator           ``SaveResult(False, [RowError])``
optimistic conflict / constraint      ``SaveResult(False, [RowError])``
rolled-back transaction               ``SaveResult(False, row_errors)``
====================================  ===================================

Programming errors (``ShapeMismatch``: unknown fields, bad bindings) are
still raised.

Examples:
    >>> orders = BusinessEntity("orders", dataset, bindings, engine)
    >>> found, ds = orders.fetch_by_key(42)
    >>> ds["orders"].find(42)["status"] = "shipped"
    >>> ok, errors = orders.save()
"""

from __future__ import annotations

from typing import Any

from dataspine.core.errors import DataSpineError, ShapeMismatch, TransactionAborted
from dataspine.core.logging import get_logger
from dataspine.data.binding import DataSourceBinding, index_bindings
from dataspine.data.container import ChangeTrackedContainer
from dataspine.data.dataset import Dataset
from dataspine.data.predicate import Predicate
from dataspine.data.record import Record
from dataspine.sync.engine import SyncEngine, Validators
from dataspine.sync.results import FetchResult, RowError, SaveResult, SyncResult

logger = get_logger(__name__)


class BusinessEntity:
    """Dataset + bindings + shared engine, behind a small facade.

    Implements the ``Fetchable``, ``Savable`` and ``Removable`` capability
    protocols.

    Parameters:
        name: Entity name (registry key, log context)
        dataset: The dataset this entity owns for its lifetime
        bindings: One binding per container (mapping or iterable)
        engine: Shared synchronization engine
        validators: Validators for every container, or a mapping of
            container name to validators
        primary: Root container; defaults to the first in sync order
    """

    def __init__(
        self,
        name: str,
        dataset: Dataset,
        bindings: Any,
        engine: SyncEngine,
        validators: Validators = (),
        *,
        primary: str | None = None,
    ) -> None:
        self.name = name
        self.dataset = dataset
        self.bindings: dict[str, DataSourceBinding] = index_bindings(bindings)
        self.engine = engine
        self.validators = validators
        for container in dataset:
            self.binding_for(container.name).validate(container)
        self.primary = primary or dataset.sync_order()[0].name
        dataset.container(self.primary)

    def binding_for(self, container: str) -> DataSourceBinding:
        try:
            return self.bindings[container]
        except KeyError:
            raise ShapeMismatch(
                f"Entity {self.name!r} has no binding for container {container!r}"
            ) from None

    def _target(self, dataset: Dataset | None) -> Dataset:
        return self.dataset if dataset is None else dataset

    # -- Fetchable ---------------------------------------------------------

    def fetch_by_key(self, key: Any, container: str | None = None) -> FetchResult:
        """Load the row with *key*; for the primary container, also its children."""
        name = container or self.primary
        target = self.dataset.container(name)
        binding = self.binding_for(name)
        predicate = Predicate.by_key(binding.key_fields(target), key)
        result = self._read(target, predicate)
        if result.error is None and container is None:
            try:
                self._read_children(name, target.rows() if result.found else [])
            except ShapeMismatch:
                raise
            except DataSpineError as exc:
                error = RowError(
                    exc.context.container or name, None, key, type(exc).__name__, exc.message
                )
                return FetchResult(False, self.dataset, error)
        return result

    def fetch(self, predicate: Predicate, container: str | None = None) -> FetchResult:
        """Load every row of one container matching *predicate*."""
        target = self.dataset.container(container or self.primary)
        return self._read(target, predicate)

    def _read(self, target: ChangeTrackedContainer, predicate: Predicate) -> FetchResult:
        try:
            found = self.engine.read(target, self.binding_for(target.name), predicate)
        except ShapeMismatch:
            raise
        except DataSpineError as exc:
            error = RowError(target.name, None, None, type(exc).__name__, exc.message)
            logger.warning("fetch_failed", entity=self.name, **error.to_dict())
            return FetchResult(False, self.dataset, error)
        return FetchResult(found, self.dataset)

    def _read_children(self, parent: str, rows: list[Record]) -> None:
        for relation in self.dataset.child_relations(parent):
            child = self.dataset.container(relation.child)
            if len(rows) != 1:
                child.clear()
                self._read_children(relation.child, [])
                continue
            values = dict(zip(relation.child_fields, relation.parent_value(rows[0])))
            self.engine.read(child, self.binding_for(child.name), Predicate.from_values(values))
            self._read_children(relation.child, child.rows())

    # -- Savable -----------------------------------------------------------

    def save(self, dataset: Dataset | None = None, *, atomic: bool = False) -> SaveResult:
        """Synchronize pending changes.

        ``atomic=True`` validates everything first and runs one
        all-or-nothing ``sync_all``. Otherwise each container is deleted,
        updated and created in its own scope, so rows that pass commit
        even when siblings are rejected.
        """
        target = self._target(dataset)
        if atomic:
            return self._save_atomic(target)

        order = target.sync_order()
        total = SyncResult()
        try:
            for container in reversed(order):
                total.merge(self.engine.delete(container, self.binding_for(container.name)))
            for container in order:
                total.merge(
                    self.engine.update(
                        container,
                        self.binding_for(container.name),
                        validators=self.validators,
                    )
                )
            for container in order:
                total.merge(
                    self.engine.create(
                        container,
                        self.binding_for(container.name),
                        dataset=target,
                        validators=self.validators,
                    )
                )
        except TransactionAborted as exc:
            errors = list(total.errors) + self._abort_errors(target, exc)
            return SaveResult(False, errors, total)
        return SaveResult(total.ok, list(total.errors), total)

    def _save_atomic(self, target: Dataset) -> SaveResult:
        try:
            result = self.engine.sync_all(
                target, self.bindings, validators=self.validators
            )
        except TransactionAborted as exc:
            return SaveResult(False, self._abort_errors(target, exc))
        return SaveResult(True, [], result)

    def _abort_errors(self, target: Dataset, exc: TransactionAborted) -> list[RowError]:
        if exc.row_errors:
            return list(exc.row_errors)
        cause = exc.cause if isinstance(exc.cause, DataSpineError) else exc
        container = cause.context.container or target.name
        return [RowError(container, None, None, type(cause).__name__, cause.message)]

    # -- Removable ---------------------------------------------------------

    def remove(self, dataset: Dataset | None = None) -> bool:
        """Delete every live row of the primary container (cascading) and sync."""
        target = self._target(dataset)
        primary = target.container(self.primary)
        for row in primary.rows():
            target.mark_deleted(self.primary, row)
        return self._save_atomic(target).success

    # -- Convenience -------------------------------------------------------

    def new_row(self, container: str | None = None, **values: Any) -> Record:
        """Append a PENDING_INSERT row to *container* (default: primary)."""
        return self.dataset.container(container or self.primary).add_new(**values)

    def __repr__(self) -> str:
        return f"BusinessEntity({self.name!r}, dataset={self.dataset.name!r})"


__all__ = ["BusinessEntity"]
