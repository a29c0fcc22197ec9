"""Data source binding: container → physical table.

A :class:`DataSourceBinding` tells the engine where a container's rows
live and how to address them:

==================  ==========================================================
``table``           Physical table identifier
``key``             Primary-key fields (defaults to the container's key)
``skip``            Fields excluded from dirty comparison (computed or
                    display-only columns); still sent on insert
``generated_key``   Field the store fills on insert (identity/serial column)
``version_field``   Integer row-version token; when set, updates are guarded
                    by it and the engine increments it
``concurrency``     Which before-image values guard an UPDATE (``None``
                    means the engine's default)
==================  ==========================================================
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from dataspine.core.errors import ShapeMismatch
from dataspine.core.settings import ConcurrencyMode
from dataspine.data.container import ChangeTrackedContainer
from dataspine.data.fields import FieldType, check_identifier


@dataclass(frozen=True)
class DataSourceBinding:
    """Association between a container and a storage table."""

    container: str
    table: str
    key: tuple[str, ...] = ()
    skip: frozenset[str] = field(default_factory=frozenset)
    generated_key: str | None = None
    version_field: str | None = None
    concurrency: ConcurrencyMode | None = None

    def __post_init__(self) -> None:
        check_identifier(self.container, "container name")
        check_identifier(self.table, "table name")
        object.__setattr__(self, "key", tuple(self.key))
        object.__setattr__(self, "skip", frozenset(self.skip))
        for name in (*self.key, *self.skip):
            check_identifier(name, "field name")
        if self.concurrency is not None:
            object.__setattr__(self, "concurrency", ConcurrencyMode(self.concurrency))

    def key_fields(self, container: ChangeTrackedContainer) -> tuple[str, ...]:
        return self.key or container.key_fields

    def validate(self, container: ChangeTrackedContainer) -> None:
        """Check this binding against *container*'s field definitions.

        Raises:
            ShapeMismatch: Wrong container, key not a subset of the
                fields, or skip/generated/version fields unknown.
        """
        if container.name != self.container:
            raise ShapeMismatch(
                f"Binding for {self.container!r} used with container {container.name!r}"
            )
        names = set(container.field_names)
        key = self.key_fields(container)

        def _unknown(fields: Iterable[str], what: str) -> None:
            missing = sorted(set(fields) - names)
            if missing:
                raise ShapeMismatch(
                    f"{what} fields {missing} are not fields of container {container.name!r}"
                ).with_context(container=container.name, table=self.table)

        _unknown(key, "Primary-key")
        _unknown(self.skip, "Skip-list")
        if self.generated_key is not None:
            _unknown([self.generated_key], "Generated-key")
        if self.version_field is not None:
            _unknown([self.version_field], "Version")
            if container.field(self.version_field).type is not FieldType.INTEGER:
                raise ShapeMismatch(
                    f"Version field {self.version_field!r} must be an integer field"
                ).with_context(container=container.name, table=self.table)
        overlap = sorted(set(key) & self.skip)
        if overlap:
            raise ShapeMismatch(
                f"Key fields {overlap} cannot be skip-listed"
            ).with_context(container=container.name, table=self.table)

    def guard_fields(
        self,
        container: ChangeTrackedContainer,
        dirty: Iterable[str],
        mode: ConcurrencyMode,
    ) -> tuple[str, ...]:
        """Non-key fields whose before-image values guard an UPDATE.

        Skip-listed fields, from the binding or the container, never guard.
        """
        if self.version_field is not None:
            return (self.version_field,)
        mode = self.concurrency or mode
        key = set(self.key_fields(container))
        if mode is ConcurrencyMode.KEY_ONLY:
            return ()
        if mode is ConcurrencyMode.CHANGED_FIELDS:
            dirty = set(dirty)
            return tuple(f for f in container.field_names if f in dirty and f not in key)
        skip = self.skip | container.skip_fields
        return tuple(f for f in container.field_names if f not in key and f not in skip)

    def key_values(self, container: ChangeTrackedContainer, values: dict[str, Any]) -> dict[str, Any]:
        return {f: values[f] for f in self.key_fields(container)}


def index_bindings(bindings: Any) -> dict[str, DataSourceBinding]:
    """Accept a mapping or an iterable of bindings; return name → binding."""
    if isinstance(bindings, DataSourceBinding):
        return {bindings.container: bindings}
    if isinstance(bindings, dict):
        return dict(bindings)
    out: dict[str, DataSourceBinding] = {}
    for binding in bindings:
        if binding.container in out:
            raise ShapeMismatch(f"Two bindings for container {binding.container!r}")
        out[binding.container] = binding
    return out


__all__ = [
    "DataSourceBinding",
    "index_bindings",
]
