"""
Change-tracked container: an ordered set of records plus before-images.

The container is a detached, queryable copy of persistent rows. Every row
carries an optional **before-image** (its values as last known to be
persisted) and a **tombstone** flag. A row's state is never stored; it is
computed on demand from those three inputs:

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │  classify(row)                                               │
        ├──────────────────────────────────────────────────────────────┤
        │  tombstoned                         → PENDING_DELETE         │
        │  no before-image                    → PENDING_INSERT         │
        │  differs from before-image          → PENDING_UPDATE         │
        │    (skip-list fields ignored)                                │
        │  otherwise                          → UNCHANGED              │
        └──────────────────────────────────────────────────────────────┘

        Row lifecycle:
        add_new() ──► PENDING_INSERT ──[commit]──► UNCHANGED
        load()    ──► UNCHANGED ──[edit]──► PENDING_UPDATE ──[commit]──► UNCHANGED
        any state ──[mark_deleted]──► PENDING_DELETE ──[remove]──► gone
        PENDING_INSERT ──[mark_deleted]──► gone (no store round-trip)

Editing a field back to its before-image value makes the row UNCHANGED
again, so only real differences ever reach the store.

Rows are addressed either by their :class:`Record` handle or by key
(a scalar for single-field keys, a tuple for composite keys). Structural
changes (load, add, delete, commit, remove) hold an internal re-entrant
lock so concurrent edits to distinct rows keep the container consistent.
A single container is still not meant for concurrent writers; serialize
them externally or give each caller its own container.

Examples:
    >>> orders = ChangeTrackedContainer(
    ...     "orders",
    ...     [FieldDef("order_no", FieldType.INTEGER), FieldDef("status")],
    ...     key=["order_no"],
    ... )
    >>> orders.load([{"order_no": 1, "status": "open"}])
    >>> row = orders.find(1)
    >>> row["status"] = "shipped"
    >>> orders.classify(row)
    <RowState.PENDING_UPDATE: 'pending_update'>
    >>> orders.dirty_fields(row)
    frozenset({'status'})

Tags:
    change-tracking, before-image, dirty-fields, container, dataspine
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dataspine.core.errors import NotFound, ShapeMismatch
from dataspine.core.logging import get_logger
from dataspine.data.fields import FieldDef, check_identifier
from dataspine.data.predicate import Predicate
from dataspine.data.record import Record

logger = get_logger(__name__)


class RowState(str, Enum):
    """Synchronization state of a row. Exactly one applies at any time."""

    UNCHANGED = "unchanged"
    PENDING_INSERT = "pending_insert"
    PENDING_UPDATE = "pending_update"
    PENDING_DELETE = "pending_delete"


@dataclass
class _Entry:
    record: Record
    before: dict[str, Any] | None = None
    deleted: bool = False


class ChangeTrackedContainer:
    """Ordered records with before-images and tombstones.

    Parameters:
        name: Container name (unique within a dataset)
        fields: Field definitions, in column order
        key: Names of the fields forming the unique key
        skip: Fields excluded from dirty comparison by default
    """

    def __init__(
        self,
        name: str,
        fields: Sequence[FieldDef],
        key: Sequence[str],
        skip: Iterable[str] = (),
    ) -> None:
        self.name = check_identifier(name, "container name")
        if not fields:
            raise ShapeMismatch(f"Container {name!r} has no fields")
        self._fields: dict[str, FieldDef] = {}
        for f in fields:
            if f.name in self._fields:
                raise ShapeMismatch(f"Duplicate field {f.name!r} in container {name!r}")
            self._fields[f.name] = f
        self.key_fields: tuple[str, ...] = tuple(key)
        if not self.key_fields:
            raise ShapeMismatch(f"Container {name!r} needs at least one key field")
        self._check_known(self.key_fields, "key")
        self.skip_fields: frozenset[str] = frozenset(skip)
        self._check_known(self.skip_fields, "skip")

        self._entries: list[_Entry] = []
        self._by_id: dict[int, _Entry] = {}
        self._lock = threading.RLock()
        self.current: Record | None = None

    # -- Schema ------------------------------------------------------------

    @property
    def fields(self) -> tuple[FieldDef, ...]:
        return tuple(self._fields.values())

    @property
    def field_names(self) -> tuple[str, ...]:
        return tuple(self._fields)

    def field(self, name: str) -> FieldDef:
        try:
            return self._fields[name]
        except KeyError:
            raise ShapeMismatch(f"Unknown field {name!r} in container {self.name!r}") from None

    def _check_known(self, names: Iterable[str], what: str) -> None:
        unknown = sorted(set(names) - set(self._fields))
        if unknown:
            raise ShapeMismatch(
                f"{what} fields {unknown} are not fields of container {self.name!r}"
            )

    # -- Loading and adding ------------------------------------------------

    def load(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Replace the contents with *rows*, each UNCHANGED.

        All-or-nothing: if any row fails, the container is left as it was.

        Raises:
            ShapeMismatch: A row's fields don't match, a value can't be
                coerced, or two rows share a key.
        """
        entries: list[_Entry] = []
        seen: set[Any] = set()
        for index, raw in enumerate(rows):
            try:
                record = Record.from_row(self._fields, raw)
            except ShapeMismatch as exc:
                raise exc.with_context(container=self.name, row_index=index)
            key = record.key(self.key_fields)
            if key in seen:
                raise ShapeMismatch(
                    f"Duplicate key {key!r} in container {self.name!r}"
                ).with_context(container=self.name, row_index=index, key=key)
            seen.add(key)
            entries.append(_Entry(record, before=record.snapshot()))

        with self._lock:
            self._entries = entries
            self._by_id = {id(e.record): e for e in entries}
            self.current = None
        logger.debug("container_loaded", container=self.name, rows=len(entries))

    def add_new(self, **values: Any) -> Record:
        """Append a row with default values (plus *values*) and no before-image."""
        record = Record(self._fields, values)
        entry = _Entry(record)
        with self._lock:
            self._entries.append(entry)
            self._by_id[id(record)] = entry
        return record

    def start_tracking(self, target: Record | Any) -> None:
        """Give a row a before-image equal to its current values (UNCHANGED)."""
        with self._lock:
            entry = self._entry(target)
            entry.before = entry.record.snapshot()
            entry.deleted = False

    # -- Lookup ------------------------------------------------------------

    def _normalize_key(self, key: Any) -> Any:
        if len(self.key_fields) == 1:
            return key[0] if isinstance(key, tuple) and len(key) == 1 else key
        if not isinstance(key, tuple) or len(key) != len(self.key_fields):
            raise ShapeMismatch(
                f"Key {key!r} does not match key fields {self.key_fields!r}"
            ).with_context(container=self.name)
        return key

    def _entry(self, target: Record | Any) -> _Entry:
        if isinstance(target, Record):
            entry = self._by_id.get(id(target))
            if entry is None or entry.record is not target:
                raise NotFound(
                    f"Row is not part of container {self.name!r}"
                ).with_context(container=self.name)
            return entry
        key = self._normalize_key(target)
        for entry in self._entries:
            if entry.record.key(self.key_fields) == key:
                return entry
        raise NotFound(
            f"No row with key {key!r} in container {self.name!r}"
        ).with_context(container=self.name, key=key)

    def find(self, key: Any) -> Record | None:
        """Return the row with *key* (tombstoned rows included), or ``None``."""
        with self._lock:
            try:
                return self._entry(key).record
            except NotFound:
                return None

    def __contains__(self, target: object) -> bool:
        if isinstance(target, Record):
            entry = self._by_id.get(id(target))
            return entry is not None and entry.record is target
        return self.find(target) is not None

    def index_of(self, target: Record | Any) -> int:
        """Position of the row among all rows (tombstones included)."""
        with self._lock:
            entry = self._entry(target)
            return next(i for i, e in enumerate(self._entries) if e is entry)

    def key_of(self, target: Record | Any) -> Any:
        with self._lock:
            return self._entry(target).record.key(self.key_fields)

    def rows(self) -> list[Record]:
        """Live rows (not tombstoned), in insertion order."""
        with self._lock:
            return [e.record for e in self._entries if not e.deleted]

    def all_rows(self) -> list[Record]:
        """Every row including tombstones, in insertion order."""
        with self._lock:
            return [e.record for e in self._entries]

    def select(self, predicate: Predicate) -> list[Record]:
        """Live rows matching *predicate*, evaluated in memory."""
        predicate.validate(self.field_names)
        return [r for r in self.rows() if predicate.matches(r)]

    def __iter__(self) -> Iterator[Record]:
        return iter(self.rows())

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for e in self._entries if not e.deleted)

    # -- Change tracking ---------------------------------------------------

    def _diff(self, entry: _Entry, skip: frozenset[str]) -> frozenset[str]:
        if entry.before is None:
            return frozenset()
        current = entry.record
        return frozenset(
            name
            for name in self._fields
            if name not in skip and current[name] != entry.before[name]
        )

    def _skip(self, skip: Iterable[str] | None) -> frozenset[str]:
        return self.skip_fields if skip is None else frozenset(skip)

    def classify(self, target: Record | Any, skip: Iterable[str] | None = None) -> RowState:
        """Compute the row's :class:`RowState` (skip-list aware)."""
        with self._lock:
            entry = self._entry(target)
            if entry.deleted:
                return RowState.PENDING_DELETE
            if entry.before is None:
                return RowState.PENDING_INSERT
            if self._diff(entry, self._skip(skip)):
                return RowState.PENDING_UPDATE
            return RowState.UNCHANGED

    def dirty_fields(self, target: Record | Any, skip: Iterable[str] | None = None) -> frozenset[str]:
        """Fields whose value differs from the before-image, excluding *skip*.

        Empty for rows without a before-image and for unchanged rows.
        """
        with self._lock:
            return self._diff(self._entry(target), self._skip(skip))

    def before_image(self, target: Record | Any) -> dict[str, Any] | None:
        """Copy of the row's before-image, or ``None`` for new rows."""
        with self._lock:
            before = self._entry(target).before
            return dict(before) if before is not None else None

    def is_deleted(self, target: Record | Any) -> bool:
        with self._lock:
            return self._entry(target).deleted

    def changes(
        self,
        state: RowState | None = None,
        skip: Iterable[str] | None = None,
    ) -> list[Record]:
        """Rows whose state is *state*, or every row that isn't UNCHANGED."""
        with self._lock:
            entries = list(self._entries)
        out = []
        for entry in entries:
            row_state = self.classify(entry.record, skip)
            if state is None and row_state is not RowState.UNCHANGED:
                out.append(entry.record)
            elif row_state is state:
                out.append(entry.record)
        return out

    def has_changes(self, skip: Iterable[str] | None = None) -> bool:
        return bool(self.changes(skip=skip))

    # -- Deletion ----------------------------------------------------------

    def mark_deleted(self, target: Record | Any) -> RowState:
        """Tombstone a row.

        A row that was never persisted (no before-image) is removed
        immediately: cancelling an insert needs no store round-trip.

        Returns:
            The row's state before the call.

        Raises:
            NotFound: *target* is not in the container.
        """
        with self._lock:
            entry = self._entry(target)
            if entry.before is None:
                self._drop(entry)
                logger.debug("insert_cancelled", container=self.name)
                return RowState.PENDING_INSERT
            previous = self.classify(entry.record)
            entry.deleted = True
            return previous

    # -- Engine-facing -----------------------------------------------------

    def commit(self, target: Record | Any) -> None:
        """Make the current values the new before-image and clear the tombstone.

        Called by the synchronization engine after the store accepted the row.
        """
        with self._lock:
            entry = self._entry(target)
            entry.before = entry.record.snapshot()
            entry.deleted = False

    def remove(self, target: Record | Any) -> None:
        """Physically drop a row (after its delete was committed)."""
        with self._lock:
            self._drop(self._entry(target))

    def _drop(self, entry: _Entry) -> None:
        self._entries = [e for e in self._entries if e is not entry]
        self._by_id.pop(id(entry.record), None)
        if self.current is entry.record:
            self.current = None

    # -- Bulk --------------------------------------------------------------

    def clear(self) -> None:
        with self._lock:
            self._entries = []
            self._by_id = {}
            self.current = None

    def reject_changes(self, target: Record | Any | None = None) -> None:
        """Undo local edits: restore before-images, un-tombstone, drop new rows."""
        with self._lock:
            entries = [self._entry(target)] if target is not None else list(self._entries)
            for entry in entries:
                if entry.before is None:
                    self._drop(entry)
                    continue
                for name, value in entry.before.items():
                    entry.record[name] = value
                entry.deleted = False

    def __repr__(self) -> str:
        return f"ChangeTrackedContainer({self.name!r}, rows={len(self)})"


__all__ = [
    "ChangeTrackedContainer",
    "RowState",
]
