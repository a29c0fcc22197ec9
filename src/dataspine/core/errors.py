"""
Structured error types for dataspine.

Every failure the synchronization engine can hit is a typed
``DataSpineError`` carrying a category, a retry hint, and an
``ErrorContext`` naming the dataset, container, table and row involved.
Callers of the business-entity facade never see these raised for
expected conditions; the facade converts them into structured
``RowError`` entries. They surface as exceptions only from the lower
level engine and store APIs.

Manifesto:
    - **Typed taxonomy:** One class per failure kind the engine reports
    - **Row context:** Errors name the row (index + key) that caused them
    - **Error chaining:** Driver exceptions are preserved as ``cause``
    - **No silent retries:** ``retryable`` is a hint for the caller only

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       DataSpineError                            │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                 │
        │  ShapeMismatch      QueryError        StoreError                │
        │  (SCHEMA)           (QUERY)           (STORE)                   │
        │                                           │                     │
        │  ValidationFailed   NotFound          ConstraintViolation       │
        │  (VALIDATION)       (NOT_FOUND)       OptimisticConflict        │
        │                                       StoreTimeout              │
        │                                                                 │
        │  TransactionAborted (TRANSACTION)     ConfigError (CONFIG)      │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = OptimisticConflict("order 7 changed underneath us")
    >>> error.with_context(container="orders", key=7).context.container
    'orders'
    >>> error.to_dict()["category"]
    'CONFLICT'

Tags:
    error-handling, exception-hierarchy, synchronization, dataspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories for classification and routing.

    Categories group the taxonomy by what the caller can do about it:
    programming errors (SCHEMA, CONFIG), data errors (VALIDATION,
    CONSTRAINT, CONFLICT, NOT_FOUND), and store errors (QUERY, STORE,
    TIMEOUT, TRANSACTION).
    """

    # Programming errors
    SCHEMA = "SCHEMA"             # Row/container shape mismatch
    CONFIG = "CONFIG"             # Missing or invalid settings

    # Data errors
    VALIDATION = "VALIDATION"     # Business rule rejection
    CONSTRAINT = "CONSTRAINT"     # Uniqueness / referential failure
    CONFLICT = "CONFLICT"         # Optimistic concurrency failure
    NOT_FOUND = "NOT_FOUND"       # Fetch / delete target absent

    # Store errors
    QUERY = "QUERY"               # Malformed or rejected query
    STORE = "STORE"               # Any other backing store failure
    TIMEOUT = "TIMEOUT"           # Store round-trip exceeded its bound
    TRANSACTION = "TRANSACTION"   # Scope rolled back

    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that are set appear in ``to_dict()``. Anything without a
    dedicated field goes into ``metadata``.

    Attributes:
        dataset: Name of the dataset being synchronized
        container: Name of the change-tracked container
        table: Physical table the container is bound to
        operation: Engine primitive (read, create, update, delete, sync_all)
        row_index: Position of the row in its container
        key: Primary key value of the row
        metadata: Additional key-value pairs
    """

    dataset: str | None = None
    container: str | None = None
    table: str | None = None
    operation: str | None = None
    row_index: int | None = None
    key: Any = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["dataset", "container", "table", "operation", "row_index", "key"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DataSpineError(Exception):
    """
    Base exception for all dataspine errors.

    Subclasses set ``default_category`` and ``default_retryable``; both can
    be overridden per instance.

    Examples:
        >>> error = DataSpineError("unexpected state")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DataSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueryError("bad operator").with_context(
                container="orders", table="orders"
            )
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PROGRAMMING ERRORS
# =============================================================================


class ShapeMismatch(DataSpineError):
    """Row fields don't match the container's field definitions.

    Raised for unknown field names, missing fields on load, duplicate keys,
    invalid bindings and cyclic relations. Fatal to the call.
    """

    default_category = ErrorCategory.SCHEMA


class ConfigError(DataSpineError):
    """Configuration is missing or invalid."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# DATA ERRORS
# =============================================================================


class ValidationFailed(DataSpineError):
    """
    A business rule rejected a row.

    Carries the rejected row and the validator's message.
    """

    default_category = ErrorCategory.VALIDATION

    def __init__(self, message: str, *, row: Any = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.row = row


class NotFound(DataSpineError):
    """Fetch or delete target is absent."""

    default_category = ErrorCategory.NOT_FOUND


# =============================================================================
# STORE ERRORS
# =============================================================================


class QueryError(DataSpineError):
    """Predicate is malformed or the store rejected the query."""

    default_category = ErrorCategory.QUERY


class StoreError(DataSpineError):
    """Backing store failure that has no more specific class."""

    default_category = ErrorCategory.STORE


class ConstraintViolation(StoreError):
    """Store-side uniqueness or referential failure."""

    default_category = ErrorCategory.CONSTRAINT


class OptimisticConflict(StoreError):
    """Update affected zero rows: the row changed (or vanished) concurrently."""

    default_category = ErrorCategory.CONFLICT


class StoreTimeout(StoreError):
    """Store call exceeded its time bound.

    Retryable as a hint to the caller; the engine itself never retries.
    """

    default_category = ErrorCategory.TIMEOUT
    default_retryable = True


class TransactionAborted(DataSpineError):
    """
    The transactional scope was rolled back.

    ``cause`` is the error that forced the rollback. ``row_errors`` holds
    the row-level errors collected before the decision was made.
    """

    default_category = ErrorCategory.TRANSACTION

    def __init__(
        self,
        message: str,
        *,
        row_errors: list[Any] | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.row_errors = list(row_errors or [])
        if kwargs.get("retryable") is None and self.cause is not None:
            self.retryable = is_retryable(self.cause)


# Row-level errors are collected per row instead of aborting siblings.
ROW_LEVEL_ERRORS: tuple[type[DataSpineError], ...] = (
    ConstraintViolation,
    OptimisticConflict,
    NotFound,
    ValidationFailed,
)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DataSpineError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DataSpineError",
    "ShapeMismatch",
    "ConfigError",
    "ValidationFailed",
    "NotFound",
    "QueryError",
    "StoreError",
    "ConstraintViolation",
    "OptimisticConflict",
    "StoreTimeout",
    "TransactionAborted",
    "ROW_LEVEL_ERRORS",
    "is_retryable",
]
