"""Field definitions and semantic types.

A :class:`FieldDef` describes one column of a change-tracked container:
its name, semantic type, default value and an optional display label.
Labels are presentation metadata only; nothing in the synchronization
logic reads them.

Values are coerced to the field's semantic type whenever they enter a
record (on load from the store and on assignment), so a value read back
from SQLite as ``'12.50'`` or ``1`` compares equal to the ``Decimal`` or
``bool`` that was written.

Examples:
    >>> amount = FieldDef("amount", FieldType.DECIMAL, default=Decimal("0"))
    >>> amount.coerce("12.50")
    Decimal('12.50')
    >>> FieldType.BOOLEAN.coerce(1)
    True

Tags:
    fields, schema, types, coercion, dataspine
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any

from dataspine.core.errors import ShapeMismatch

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_TRUE_TEXT = frozenset({"1", "true", "t", "yes", "y"})
_FALSE_TEXT = frozenset({"0", "false", "f", "no", "n"})


def check_identifier(name: str, what: str = "identifier") -> str:
    """Return *name* if it is a plain SQL identifier, else raise ``ShapeMismatch``."""
    if not isinstance(name, str) or not IDENTIFIER.match(name):
        raise ShapeMismatch(f"Invalid {what}: {name!r}")
    return name


class FieldType(str, Enum):
    """Semantic type of a field."""

    TEXT = "text"
    INTEGER = "integer"
    DECIMAL = "decimal"
    BOOLEAN = "boolean"
    HANDLE = "handle"  # opaque, passed through untouched
    TIMESTAMP = "timestamp"

    def coerce(self, value: Any) -> Any:
        """Convert *value* to this type. ``None`` stays ``None``.

        Raises:
            ShapeMismatch: If the value cannot represent this type.
        """
        if value is None or self is FieldType.HANDLE:
            return value
        try:
            return _COERCERS[self](value)
        except (TypeError, ValueError, InvalidOperation) as exc:
            raise ShapeMismatch(
                f"Cannot coerce {value!r} to {self.value}", cause=exc
            ) from exc


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value if isinstance(value, str) else str(value)


def _to_integer(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value.strip())
    if isinstance(value, (float, Decimal)) and value == int(value):
        return int(value)
    raise TypeError(f"not an integer: {value!r}")


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a decimal")
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, (int, str)):
        return Decimal(value.strip() if isinstance(value, str) else value)
    raise TypeError(f"not a decimal: {value!r}")


def _to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
    raise ValueError(f"not a boolean: {value!r}")


def _to_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip())
    raise TypeError(f"not a timestamp: {value!r}")


_COERCERS = {
    FieldType.TEXT: _to_text,
    FieldType.INTEGER: _to_integer,
    FieldType.DECIMAL: _to_decimal,
    FieldType.BOOLEAN: _to_boolean,
    FieldType.TIMESTAMP: _to_timestamp,
}


@dataclass(frozen=True)
class FieldDef:
    """One field of a record.

    Attributes:
        name: Field (and column) name; must be a plain identifier
        type: Semantic type used for coercion
        default: Initial value for rows created with ``add_new()``
        label: Display label (presentation only)
    """

    name: str
    type: FieldType = FieldType.TEXT
    default: Any = None
    label: str | None = None

    def __post_init__(self) -> None:
        check_identifier(self.name, "field name")
        object.__setattr__(self, "type", FieldType(self.type))
        object.__setattr__(self, "default", self.type.coerce(self.default))

    def coerce(self, value: Any) -> Any:
        """Coerce *value* to this field's type, naming the field on failure."""
        try:
            return self.type.coerce(value)
        except ShapeMismatch as exc:
            raise exc.with_context(field=self.name)


__all__ = [
    "FieldDef",
    "FieldType",
    "IDENTIFIER",
    "check_identifier",
]
