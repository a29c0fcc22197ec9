"""Record snapshot: one mutable, schema-checked row.

A :class:`Record` is an ordered mapping of field name to value. Its shape
is fixed by the container that owns it: assigning an unknown field or
deleting a field raises :class:`~dataspine.core.errors.ShapeMismatch`,
and every assigned value is coerced to the field's semantic type.

Records compare equal to any mapping with the same items, so a row read
back from the store can be compared field-for-field with what was
written.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, MutableMapping
from typing import Any

from dataspine.core.errors import ShapeMismatch
from dataspine.data.fields import FieldDef


class Record(MutableMapping[str, Any]):
    """Mutable handle on one row of a change-tracked container."""

    __slots__ = ("_fields", "_values")

    def __init__(self, fields: Mapping[str, FieldDef], values: Mapping[str, Any] | None = None):
        self._fields = fields
        self._values: dict[str, Any] = {name: f.default for name, f in fields.items()}
        if values:
            for name, value in values.items():
                self[name] = value

    @classmethod
    def from_row(cls, fields: Mapping[str, FieldDef], row: Mapping[str, Any]) -> Record:
        """Build a record from a complete row; the field sets must match exactly."""
        names = set(row.keys())
        expected = set(fields)
        if names != expected:
            missing = sorted(expected - names)
            extra = sorted(names - expected)
            raise ShapeMismatch(
                f"Row fields do not match container fields (missing={missing}, extra={extra})"
            )
        return cls(fields, row)

    # -- Mapping protocol --------------------------------------------------

    def __getitem__(self, name: str) -> Any:
        try:
            return self._values[name]
        except KeyError:
            raise KeyError(name) from None

    def __setitem__(self, name: str, value: Any) -> None:
        field = self._fields.get(name)
        if field is None:
            raise ShapeMismatch(f"Unknown field: {name!r}").with_context(field=name)
        self._values[name] = field.coerce(value)

    def __delitem__(self, name: str) -> None:
        raise ShapeMismatch(f"Fields cannot be removed from a record: {name!r}")

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    # -- Helpers -----------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Detached copy of the current values."""
        return dict(self._values)

    def key(self, key_fields: tuple[str, ...]) -> Any:
        """Key value: scalar for one key field, tuple otherwise."""
        if len(key_fields) == 1:
            return self._values[key_fields[0]]
        return tuple(self._values[f] for f in key_fields)

    def is_blank(self) -> bool:
        """True while every field still holds its default."""
        return all(self._values[name] == f.default for name, f in self._fields.items())

    def __repr__(self) -> str:
        return f"Record({self._values!r})"


__all__ = ["Record"]
