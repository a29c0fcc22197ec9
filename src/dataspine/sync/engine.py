"""
Synchronization engine: reconcile change-tracked containers with a store.

The engine turns the tracked state of a container (or of a whole
dataset) into the minimal, correctly ordered set of store calls, and
advances before-images only once the store has committed.

Manifesto:
    Business entities should never build SQL or reason about row state.
    They compose one shared engine whose primitives (``read``, ``create``,
    ``update``, ``delete``, ``sync_all``) are driven purely by
    ``classify()``/``dirty_fields()`` and by the data source binding.

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────────┐
        │ read(container, binding, predicate)                            │
        │   validate predicate → tx.query → container.load (all-or-none) │
        ├────────────────────────────────────────────────────────────────┤
        │ create / update / delete   (standalone, partial success)       │
        │   one scope, one savepoint per row                              │
        │   row-level failure → rollback to savepoint, RowError           │
        │   ConstraintViolation on create → stop, rest = not_attempted    │
        ├────────────────────────────────────────────────────────────────┤
        │ sync_all(dataset, bindings)   (all-or-nothing)                 │
        │   validate all → delete (children first) → update → create     │
        │   (parents first, generated keys propagated to children)        │
        │   any error → rollback + undo in-memory writes                  │
        │             → TransactionAborted(cause, row_errors)             │
        └────────────────────────────────────────────────────────────────┘

    In-memory effects follow the store:
    - Generated keys, propagated foreign keys and version increments are
      written into rows only after the store call that produced them
      succeeded, and are undone if the scope rolls back.
    - ``commit()`` (new before-image) and ``remove()`` (deleted rows) run
      only after the scope committed.
    - Nothing pending means no transaction and no store call.

Validation:
    Validators are callables ``(container) -> (valid, message)``. For each
    row about to be inserted or updated the engine sets
    ``container.current`` to the row and calls every validator.

Examples:
    >>> engine = SyncEngine(store)
    >>> engine.read(orders, binding, where("order_no").eq(42))
    True
    >>> orders.find(42)["status"] = "shipped"
    >>> engine.update(orders, binding).updated
    1

Tags:
    synchronization, change-tracking, transaction, savepoint,
    optimistic-concurrency, dataspine
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from dataspine.core.errors import (
    ConstraintViolation,
    DataSpineError,
    NotFound,
    OptimisticConflict,
    ROW_LEVEL_ERRORS,
    ShapeMismatch,
    TransactionAborted,
    ValidationFailed,
)
from dataspine.core.logging import LogContext, get_logger
from dataspine.core.protocols import Store, StoreTransaction
from dataspine.core.settings import ConcurrencyMode, DataSpineSettings, DeletePolicy, get_settings
from dataspine.data.binding import DataSourceBinding, index_bindings
from dataspine.data.container import ChangeTrackedContainer, RowState
from dataspine.data.dataset import Dataset
from dataspine.data.predicate import Predicate
from dataspine.data.record import Record
from dataspine.sync.results import RowError, SyncResult

logger = get_logger(__name__)

Validator = Callable[[ChangeTrackedContainer], tuple[bool, str]]
Validators = Sequence[Validator] | Mapping[str, Sequence[Validator]]


class _Scope:
    """Open transaction plus the in-memory effects riding on it."""

    def __init__(self, tx: StoreTransaction) -> None:
        self.tx = tx
        self._undo: list[Callable[[], None]] = []
        self._after_commit: list[Callable[[], None]] = []

    def write(self, row: Record, field: str, value: Any) -> None:
        """Set a row value now; restore it if the scope rolls back."""
        self.remember(row, field, row[field])
        row[field] = value

    def remember(self, row: Record, field: str, previous: Any) -> None:
        self._undo.append(lambda: row.__setitem__(field, previous))

    def on_commit(self, action: Callable[[], None]) -> None:
        self._after_commit.append(action)

    def mark(self) -> tuple[int, int]:
        return len(self._undo), len(self._after_commit)

    def undo_to(self, mark: tuple[int, int]) -> None:
        undo_len, commit_len = mark
        while len(self._undo) > undo_len:
            self._undo.pop()()
        del self._after_commit[commit_len:]

    def undo_all(self) -> None:
        self.undo_to((0, 0))

    def apply(self) -> None:
        for action in self._after_commit:
            action()
        self._after_commit.clear()
        self._undo.clear()


def _validators_for(validators: Validators | None, container: str) -> Sequence[Validator]:
    if not validators:
        return ()
    if isinstance(validators, Mapping):
        return tuple(validators.get(container, ()))
    return tuple(validators)


class SyncEngine:
    """Shared synchronization engine composed into business entities.

    Parameters:
        store: Backing store (see :class:`~dataspine.core.protocols.Store`)
        delete_policy: Meaning of a delete that affects zero store rows
        concurrency: Default UPDATE guard for bindings that don't set one
        timeout: Default per-call store timeout in seconds (``None`` = unbounded)
    """

    def __init__(
        self,
        store: Store,
        *,
        delete_policy: DeletePolicy = DeletePolicy.IDEMPOTENT,
        concurrency: ConcurrencyMode = ConcurrencyMode.ALL_FIELDS,
        timeout: float | None = None,
    ) -> None:
        self.store = store
        self.delete_policy = DeletePolicy(delete_policy)
        self.concurrency = ConcurrencyMode(concurrency)
        self.timeout = timeout

    @classmethod
    def from_settings(
        cls,
        store: Store,
        settings: DataSpineSettings | None = None,
    ) -> SyncEngine:
        settings = settings or get_settings()
        return cls(
            store,
            delete_policy=settings.delete_policy,
            concurrency=settings.concurrency_mode,
            timeout=settings.statement_timeout_seconds,
        )

    # -- Scope handling ----------------------------------------------------

    @contextmanager
    def _scope(self, timeout: float | None) -> Iterator[_Scope]:
        tx = self.store.begin(timeout if timeout is not None else self.timeout)
        scope = _Scope(tx)
        try:
            yield scope
            tx.commit()
        except BaseException:
            try:
                tx.rollback()
            finally:
                scope.undo_all()
            raise
        scope.apply()

    def _aborted(
        self,
        operation: str,
        exc: DataSpineError,
        row_errors: list[RowError],
        **context: Any,
    ) -> TransactionAborted:
        logger.error(
            "transaction_aborted",
            cause=type(exc).__name__,
            message=exc.message,
            row_errors=len(row_errors),
        )
        return TransactionAborted(
            f"{operation} rolled back: {exc.message}",
            cause=exc,
            row_errors=row_errors,
        ).with_context(operation=operation, **context)

    # -- Validation --------------------------------------------------------

    def validate(
        self,
        container: ChangeTrackedContainer,
        rows: Sequence[Record],
        validators: Validators | None,
    ) -> tuple[list[Record], list[RowError]]:
        """Split *rows* into those every validator accepts and rejections."""
        checks = _validators_for(validators, container.name)
        if not checks:
            return list(rows), []
        passed: list[Record] = []
        errors: list[RowError] = []
        for row in rows:
            message = None
            container.current = row
            try:
                for check in checks:
                    valid, text = check(container)
                    if not valid:
                        message = text or "validation failed"
                        break
            finally:
                container.current = None
            if message is None:
                passed.append(row)
                continue
            error = ValidationFailed(message, row=row)
            errors.append(self._row_error(container, row, error))
        return passed, errors

    def _row_error(
        self,
        container: ChangeTrackedContainer,
        row: Record,
        error: DataSpineError,
    ) -> RowError:
        index = container.index_of(row) if row in container else None
        key = row.key(container.key_fields)
        logger.warning(
            "row_rejected",
            container=container.name,
            index=index,
            key=key,
            kind=type(error).__name__,
            message=error.message,
        )
        return RowError.from_error(error, container=container.name, index=index, key=key)

    # -- Row operations ----------------------------------------------------

    def _skip(self, container: ChangeTrackedContainer, binding: DataSourceBinding) -> frozenset[str]:
        return container.skip_fields | binding.skip

    def _split_updates(
        self, container: ChangeTrackedContainer, binding: DataSourceBinding
    ) -> tuple[list[Record], list[Record]]:
        """PENDING_UPDATE rows split into (store-bound, skip-list-only edits)."""
        skip = self._skip(container, binding)
        dirty: list[Record] = []
        settled: list[Record] = []
        for row in container.changes(RowState.PENDING_UPDATE):
            if container.dirty_fields(row, skip=skip):
                dirty.append(row)
            else:
                settled.append(row)
        return dirty, settled

    @staticmethod
    def _settle(settled: list[tuple[ChangeTrackedContainer, Record]], result: SyncResult) -> None:
        for container, row in settled:
            container.commit(row)
        result.skipped_noop += len(settled)

    def _insert_row(
        self,
        scope: _Scope,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        row: Record,
        dataset: Dataset | None,
    ) -> None:
        values = row.snapshot()
        version = binding.version_field
        if version is not None and values[version] is None:
            values[version] = 1
        generated = scope.tx.insert(binding.table, values, binding.generated_key)

        if version is not None and row[version] != values[version]:
            scope.write(row, version, values[version])
        gen = binding.generated_key
        if gen is not None and generated is not None:
            old = row[gen]
            scope.write(row, gen, generated)
            if dataset is not None and old != row[gen]:
                for child, field, previous in dataset.propagate_key(
                    container.name, row, {gen: old}
                ):
                    scope.remember(child, field, previous)
        scope.on_commit(lambda: container.commit(row))

    def _update_row(
        self,
        scope: _Scope,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        row: Record,
    ) -> bool:
        """Issue the UPDATE for *row*. ``False`` means nothing was dirty."""
        dirty = container.dirty_fields(row, skip=self._skip(container, binding))
        if not dirty:
            return False
        before = container.before_image(row)
        key_fields = binding.key_fields(container)
        key = {f: before[f] for f in key_fields}
        changed = {f: row[f] for f in container.field_names if f in dirty}
        guard = binding.guard_fields(container, dirty, self.concurrency)
        expected = {f: before[f] for f in guard}

        version = binding.version_field
        if version is not None:
            changed[version] = (before[version] or 0) + 1

        count = scope.tx.update_row(binding.table, key, changed, expected)
        if count == 0:
            raise OptimisticConflict(
                f"Row {row.key(key_fields)!r} in {binding.table!r} was changed or "
                "removed by someone else"
            ).with_context(container=container.name, table=binding.table)
        if version is not None:
            scope.write(row, version, changed[version])
        scope.on_commit(lambda: container.commit(row))
        return True

    def _delete_row(
        self,
        scope: _Scope,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        row: Record,
    ) -> None:
        before = container.before_image(row) or row.snapshot()
        key = {f: before[f] for f in binding.key_fields(container)}
        count = scope.tx.delete_row(binding.table, key)
        if count == 0 and self.delete_policy is DeletePolicy.STRICT:
            raise NotFound(
                f"No row with key {tuple(key.values())!r} in {binding.table!r}"
            ).with_context(container=container.name, table=binding.table)
        scope.on_commit(lambda: container.remove(row))

    # -- Read --------------------------------------------------------------

    def read(
        self,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        predicate: Predicate | None = None,
        *,
        timeout: float | None = None,
    ) -> bool:
        """Replace *container*'s rows with those matching *predicate*.

        Returns:
            True if at least one row was found.

        Raises:
            QueryError: Malformed predicate or store rejection.
            StoreTimeout: The query exceeded its bound.
            ShapeMismatch: Returned rows don't fit the container.
        """
        binding.validate(container)
        predicate = (predicate or Predicate()).validate(container.field_names)
        with LogContext(container=container.name, operation="read"):
            with self._scope(timeout) as scope:
                rows = scope.tx.query(binding.table, container.field_names, predicate)
            container.load(rows)
            logger.info("read_completed", table=binding.table, rows=len(rows))
        return bool(rows)

    # -- Standalone primitives ---------------------------------------------

    def create(
        self,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        *,
        dataset: Dataset | None = None,
        validators: Validators | None = None,
        timeout: float | None = None,
    ) -> SyncResult:
        """Insert every PENDING_INSERT row, in insertion order.

        A ``ConstraintViolation`` stops the batch; rows after it are listed
        in ``not_attempted``. Rows inserted before it are still committed.
        Passing *dataset* propagates generated keys to child containers.
        """
        binding.validate(container)
        result = SyncResult()
        with LogContext(container=container.name, operation="create"):
            rows = []
            for row in container.changes(RowState.PENDING_INSERT):
                if row.is_blank():
                    result.skipped_blank += 1
                else:
                    rows.append(row)
            rows, rejected = self.validate(container, rows, validators)
            result.errors.extend(rejected)
            if rows:
                self._run_rows(
                    "create",
                    container,
                    rows,
                    result,
                    timeout,
                    lambda scope, row: self._insert_row(scope, container, binding, row, dataset),
                )
            logger.info("sync_completed", **result.to_dict())
        return result

    def update(
        self,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        *,
        validators: Validators | None = None,
        timeout: float | None = None,
    ) -> SyncResult:
        """Update every PENDING_UPDATE row with only its dirty fields.

        Rows whose edits are all skip-listed (container or binding) never
        reach the store: they are committed locally and counted in
        ``skipped_noop``.
        """
        binding.validate(container)
        result = SyncResult()
        with LogContext(container=container.name, operation="update"):
            rows, settled = self._split_updates(container, binding)
            for row in settled:
                container.commit(row)
            result.skipped_noop += len(settled)
            rows, rejected = self.validate(container, rows, validators)
            result.errors.extend(rejected)
            if rows:
                self._run_rows(
                    "update",
                    container,
                    rows,
                    result,
                    timeout,
                    lambda scope, row: self._update_row(scope, container, binding, row),
                )
            logger.info("sync_completed", **result.to_dict())
        return result

    def delete(
        self,
        container: ChangeTrackedContainer,
        binding: DataSourceBinding,
        *,
        timeout: float | None = None,
    ) -> SyncResult:
        """Delete every PENDING_DELETE row; committed rows leave the container."""
        binding.validate(container)
        result = SyncResult()
        with LogContext(container=container.name, operation="delete"):
            rows = container.changes(RowState.PENDING_DELETE)
            if rows:
                self._run_rows(
                    "delete",
                    container,
                    rows,
                    result,
                    timeout,
                    lambda scope, row: self._delete_row(scope, container, binding, row),
                )
            logger.info("sync_completed", **result.to_dict())
        return result

    def _run_rows(
        self,
        operation: str,
        container: ChangeTrackedContainer,
        rows: list[Record],
        result: SyncResult,
        timeout: float | None,
        apply: Callable[[_Scope, Record], Any],
    ) -> None:
        done = 0
        noop = 0
        try:
            with self._scope(timeout) as scope:
                for position, row in enumerate(rows):
                    mark = scope.mark()
                    try:
                        with scope.tx.savepoint():
                            outcome = apply(scope, row)
                    except ROW_LEVEL_ERRORS as exc:
                        scope.undo_to(mark)
                        result.errors.append(self._row_error(container, row, exc))
                        if operation == "create" and isinstance(exc, ConstraintViolation):
                            result.not_attempted.extend(
                                r.key(container.key_fields) for r in rows[position + 1:]
                            )
                            break
                        continue
                    if outcome is False:
                        noop += 1
                    else:
                        done += 1
        except DataSpineError as exc:
            raise self._aborted(
                operation, exc, list(result.errors), container=container.name
            ) from exc

        result.skipped_noop += noop
        if operation == "create":
            result.inserted += done
        elif operation == "update":
            result.updated += done
        else:
            result.deleted += done

    # -- Dataset-wide ------------------------------------------------------

    def sync_all(
        self,
        dataset: Dataset,
        bindings: Any,
        *,
        validators: Validators | None = None,
        timeout: float | None = None,
    ) -> SyncResult:
        """Delete → update → create across the dataset in one scope.

        All-or-nothing: any failure rolls the scope back, restores
        in-memory writes (generated keys, propagated foreign keys,
        versions) and raises :class:`TransactionAborted` carrying the cause
        and the row errors. No before-image advances on failure.

        Raises:
            TransactionAborted: Validation failed, or any store error.
            ShapeMismatch: Missing bindings or rows orphaned by a delete.
        """
        index = index_bindings(bindings)
        for container in dataset:
            binding = index.get(container.name)
            if binding is None:
                raise ShapeMismatch(
                    f"No data source binding for container {container.name!r}"
                ).with_context(dataset=dataset.name, container=container.name)
            binding.validate(container)
        order = dataset.sync_order()

        with LogContext(dataset=dataset.name, operation="sync_all"):
            orphans = dataset.pending_orphans()
            if orphans:
                relation, row = orphans[0]
                raise ShapeMismatch(
                    f"{len(orphans)} new row(s) in {relation.child!r} reference a "
                    f"{relation.parent!r} row that is being deleted"
                ).with_context(dataset=dataset.name, container=relation.child)

            result = SyncResult()
            plan: list[tuple[str, ChangeTrackedContainer, Record]] = []
            settled: list[tuple[ChangeTrackedContainer, Record]] = []
            rejected: list[RowError] = []
            for container in reversed(order):
                for row in container.changes(RowState.PENDING_DELETE):
                    plan.append(("delete", container, row))
            for container in order:
                updates, noop = self._split_updates(container, index[container.name])
                settled.extend((container, row) for row in noop)
                updates, errors = self.validate(container, updates, validators)
                rejected.extend(errors)
                plan.extend(("update", container, row) for row in updates)
            for container in order:
                inserts = []
                for row in container.changes(RowState.PENDING_INSERT):
                    if row.is_blank():
                        result.skipped_blank += 1
                    else:
                        inserts.append(row)
                inserts, errors = self.validate(container, inserts, validators)
                rejected.extend(errors)
                plan.extend(("create", container, row) for row in inserts)

            if rejected:
                first = rejected[0]
                cause = ValidationFailed(first.message).with_context(
                    container=first.container, row_index=first.index, key=first.key
                )
                raise self._aborted("sync_all", cause, rejected, dataset=dataset.name)

            if not plan:
                self._settle(settled, result)
                logger.info("sync_completed", **result.to_dict())
                return result

            current: tuple[ChangeTrackedContainer, Record] | None = None
            try:
                with self._scope(timeout) as scope:
                    for operation, container, row in plan:
                        current = (container, row)
                        binding = index[container.name]
                        if operation == "delete":
                            self._delete_row(scope, container, binding, row)
                            result.deleted += 1
                        elif operation == "update":
                            if self._update_row(scope, container, binding, row):
                                result.updated += 1
                            else:
                                result.skipped_noop += 1
                        else:
                            self._insert_row(scope, container, binding, row, dataset)
                            result.inserted += 1
                    current = None
            except DataSpineError as exc:
                row_errors = []
                if current is not None and isinstance(exc, ROW_LEVEL_ERRORS):
                    row_errors.append(self._row_error(current[0], current[1], exc))
                raise self._aborted("sync_all", exc, row_errors, dataset=dataset.name) from exc

            self._settle(settled, result)
            logger.info("sync_completed", **result.to_dict())
        return result


__all__ = [
    "SyncEngine",
    "Validator",
    "Validators",
]
