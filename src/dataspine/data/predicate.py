"""Typed query predicates.

A :class:`Predicate` is a conjunction (AND) of :class:`Condition` triples
``(field, operator, value)``. Predicates are plain data: they are
validated against a container's fields before use and translated to SQL
by a :class:`~dataspine.core.dialect.Dialect`, which binds every value as
a parameter. Nothing here ever concatenates a value into SQL text.

Examples:
    >>> p = where("status").eq("open") & where("total").ge(100)
    >>> [c.op.name for c in p]
    ['EQ', 'GE']
    >>> Predicate.by_key(("order_no",), 42)
    Predicate(conditions=(Condition(field='order_no', op=<Op.EQ: '='>, value=42),))

The same predicate can filter rows already in memory with
:meth:`Predicate.matches`, using SQL NULL semantics (a comparison with
``None`` is never true).

Tags:
    predicate, query, expression-tree, dataspine
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dataspine.core.errors import QueryError


class Op(str, Enum):
    """Comparison operators. Values are the SQL spelling."""

    EQ = "="
    NE = "<>"
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    LIKE = "LIKE"
    IN = "IN"
    IS_NULL = "IS NULL"
    IS_NOT_NULL = "IS NOT NULL"

    @property
    def unary(self) -> bool:
        return self in (Op.IS_NULL, Op.IS_NOT_NULL)


_COMPARE = {
    Op.EQ: lambda a, b: a == b,
    Op.NE: lambda a, b: a != b,
    Op.LT: lambda a, b: a < b,
    Op.LE: lambda a, b: a <= b,
    Op.GT: lambda a, b: a > b,
    Op.GE: lambda a, b: a >= b,
}


def _like_pattern(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class Condition:
    """A single ``field <op> value`` test."""

    field: str
    op: Op
    value: Any = None

    def validate(self, field_names: Iterable[str]) -> None:
        """Raise :class:`QueryError` if this condition can't be evaluated."""
        if self.field not in set(field_names):
            raise QueryError(f"Unknown field in predicate: {self.field!r}")
        if not isinstance(self.op, Op):
            raise QueryError(f"Unknown operator: {self.op!r}")
        if self.op.unary:
            return
        if self.op is Op.IN:
            if isinstance(self.value, (str, bytes)) or not isinstance(self.value, Sequence | frozenset | set):
                raise QueryError(f"IN on {self.field!r} needs a sequence of values")
            if not self.value:
                raise QueryError(f"IN on {self.field!r} needs at least one value")
            return
        if self.value is None:
            raise QueryError(
                f"Comparison {self.op.value} with None on {self.field!r}; "
                "use is_null()/is_not_null()"
            )
        if self.op is Op.LIKE and not isinstance(self.value, str):
            raise QueryError(f"LIKE on {self.field!r} needs a text pattern")

    def matches(self, row: Mapping[str, Any]) -> bool:
        value = row[self.field]
        if self.op is Op.IS_NULL:
            return value is None
        if self.op is Op.IS_NOT_NULL:
            return value is not None
        if value is None:
            return False
        if self.op is Op.IN:
            return value in self.value
        if self.op is Op.LIKE:
            return bool(_like_pattern(self.value).match(str(value)))
        return bool(_COMPARE[self.op](value, self.value))


@dataclass(frozen=True)
class Predicate:
    """AND of conditions. The empty predicate selects every row."""

    conditions: tuple[Condition, ...] = ()

    @classmethod
    def of(cls, *conditions: Condition | tuple[str, Op | str, Any]) -> Predicate:
        """Build from conditions or ``(field, op, value)`` triples."""
        built = []
        for cond in conditions:
            if isinstance(cond, Condition):
                built.append(cond)
            else:
                field, op, value = cond
                try:
                    built.append(Condition(field, Op(op), value))
                except ValueError as exc:
                    raise QueryError(f"Unknown operator: {op!r}", cause=exc) from exc
        return cls(tuple(built))

    @classmethod
    def by_key(cls, key_fields: Sequence[str], key: Any) -> Predicate:
        """Equality on every key field. *key* is a scalar for one-field keys."""
        values = key if isinstance(key, tuple) else (key,)
        if len(values) != len(key_fields):
            raise QueryError(
                f"Key {key!r} does not match key fields {tuple(key_fields)!r}"
            )
        return cls(tuple(
            Condition(f, Op.IS_NULL) if v is None else Condition(f, Op.EQ, v)
            for f, v in zip(key_fields, values)
        ))

    @classmethod
    def from_values(cls, values: Mapping[str, Any]) -> Predicate:
        """NULL-safe equality on every item of *values*."""
        return cls(tuple(
            Condition(f, Op.IS_NULL) if v is None else Condition(f, Op.EQ, v)
            for f, v in values.items()
        ))

    def __and__(self, other: Predicate | Condition) -> Predicate:
        if isinstance(other, Condition):
            return Predicate(self.conditions + (other,))
        if isinstance(other, Predicate):
            return Predicate(self.conditions + other.conditions)
        return NotImplemented

    def __iter__(self) -> Iterator[Condition]:
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(c.field for c in self.conditions)

    def validate(self, field_names: Iterable[str]) -> Predicate:
        names = tuple(field_names)
        for cond in self.conditions:
            cond.validate(names)
        return self

    def matches(self, row: Mapping[str, Any]) -> bool:
        return all(cond.matches(row) for cond in self.conditions)


class FieldRef:
    """Fluent builder returned by :func:`where`."""

    def __init__(self, field: str):
        self.field = field

    def _one(self, op: Op, value: Any = None) -> Predicate:
        return Predicate((Condition(self.field, op, value),))

    def eq(self, value: Any) -> Predicate:
        return self._one(Op.EQ, value)

    def ne(self, value: Any) -> Predicate:
        return self._one(Op.NE, value)

    def lt(self, value: Any) -> Predicate:
        return self._one(Op.LT, value)

    def le(self, value: Any) -> Predicate:
        return self._one(Op.LE, value)

    def gt(self, value: Any) -> Predicate:
        return self._one(Op.GT, value)

    def ge(self, value: Any) -> Predicate:
        return self._one(Op.GE, value)

    def like(self, pattern: str) -> Predicate:
        return self._one(Op.LIKE, pattern)

    def in_(self, values: Iterable[Any]) -> Predicate:
        return self._one(Op.IN, tuple(values))

    def is_null(self) -> Predicate:
        return self._one(Op.IS_NULL)

    def is_not_null(self) -> Predicate:
        return self._one(Op.IS_NOT_NULL)


def where(field: str) -> FieldRef:
    """Start a predicate on *field*: ``where("status").eq("open")``."""
    return FieldRef(field)


__all__ = [
    "Condition",
    "FieldRef",
    "Op",
    "Predicate",
    "where",
]
