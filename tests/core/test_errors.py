"""Tests for dataspine.core.errors module."""

import pytest

from dataspine.core.errors import (
    ROW_LEVEL_ERRORS,
    ConfigError,
    ConstraintViolation,
    DataSpineError,
    ErrorCategory,
    ErrorContext,
    NotFound,
    OptimisticConflict,
    QueryError,
    ShapeMismatch,
    StoreError,
    StoreTimeout,
    TransactionAborted,
    ValidationFailed,
    is_retryable,
)


class TestErrorContext:
    """Test ErrorContext dataclass."""

    def test_empty_context_serializes_empty(self):
        assert ErrorContext().to_dict() == {}

    def test_only_set_fields_appear(self):
        ctx = ErrorContext(container="orders", row_index=0, key=7)
        assert ctx.to_dict() == {"container": "orders", "row_index": 0, "key": 7}

    def test_metadata_is_merged(self):
        ctx = ErrorContext(table="orders", metadata={"driver_error": "boom"})
        assert ctx.to_dict() == {"table": "orders", "driver_error": "boom"}


class TestDataSpineError:
    """Test the base error and its fluent context API."""

    def test_defaults(self):
        error = DataSpineError("unexpected")
        assert error.category is ErrorCategory.INTERNAL
        assert error.retryable is False
        assert str(error) == "unexpected"

    def test_with_context_sets_known_fields_and_metadata(self):
        error = QueryError("bad").with_context(container="orders", sql="SELECT")
        assert error.context.container == "orders"
        assert error.context.metadata == {"sql": "SELECT"}

    def test_cause_is_chained(self):
        root = ValueError("driver said no")
        error = StoreError("failed", cause=root)
        assert error.__cause__ is root
        assert error.to_dict()["cause"] == "driver said no"

    def test_to_dict(self):
        error = OptimisticConflict("changed").with_context(container="orders", key=1)
        assert error.to_dict() == {
            "error_type": "OptimisticConflict",
            "message": "changed",
            "category": "CONFLICT",
            "retryable": False,
            "context": {"container": "orders", "key": 1},
        }

    def test_overrides(self):
        error = StoreError("x", category=ErrorCategory.TIMEOUT, retryable=True)
        assert error.category is ErrorCategory.TIMEOUT
        assert error.retryable


class TestTaxonomy:
    @pytest.mark.parametrize(
        "cls, category",
        [
            (ShapeMismatch, ErrorCategory.SCHEMA),
            (ConfigError, ErrorCategory.CONFIG),
            (ValidationFailed, ErrorCategory.VALIDATION),
            (NotFound, ErrorCategory.NOT_FOUND),
            (QueryError, ErrorCategory.QUERY),
            (StoreError, ErrorCategory.STORE),
            (ConstraintViolation, ErrorCategory.CONSTRAINT),
            (OptimisticConflict, ErrorCategory.CONFLICT),
            (StoreTimeout, ErrorCategory.TIMEOUT),
            (TransactionAborted, ErrorCategory.TRANSACTION),
        ],
    )
    def test_category(self, cls, category):
        assert cls("x").category is category

    def test_store_errors_share_a_base(self):
        for cls in (ConstraintViolation, OptimisticConflict, StoreTimeout):
            assert issubclass(cls, StoreError)

    def test_row_level_errors(self):
        assert set(ROW_LEVEL_ERRORS) == {
            ConstraintViolation,
            OptimisticConflict,
            NotFound,
            ValidationFailed,
        }

    def test_validation_failed_carries_row(self):
        row = {"customer": ""}
        assert ValidationFailed("customer is required", row=row).row is row


class TestRetryable:
    def test_timeout_is_retryable(self):
        assert is_retryable(StoreTimeout("slow"))

    def test_non_dataspine_error_is_not(self):
        assert not is_retryable(RuntimeError("x"))

    def test_aborted_inherits_cause_retryability(self):
        aborted = TransactionAborted("rolled back", cause=StoreTimeout("slow"))
        assert aborted.retryable
        assert not TransactionAborted("rolled back", cause=ConstraintViolation("dup")).retryable

    def test_aborted_keeps_row_errors(self):
        aborted = TransactionAborted("rolled back", row_errors=["e1"])
        assert aborted.row_errors == ["e1"]
        assert TransactionAborted("x").row_errors == []
