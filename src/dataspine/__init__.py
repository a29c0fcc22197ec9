"""
dataspine - change-tracked datasets synchronized with a transactional store.

Subpackages:
- dataspine.core: errors, logging, settings, protocols, dialects, stores
- dataspine.data: fields, records, change-tracked containers, datasets,
  bindings, predicates
- dataspine.sync: synchronization engine, business entity facade, registry
"""

__version__ = "0.1.0"

from dataspine.core.errors import (
    ConstraintViolation,
    DataSpineError,
    NotFound,
    OptimisticConflict,
    QueryError,
    ShapeMismatch,
    StoreError,
    StoreTimeout,
    TransactionAborted,
    ValidationFailed,
)
from dataspine.core.settings import ConcurrencyMode, DataSpineSettings, DeletePolicy, get_settings
from dataspine.data import (
    ChangeTrackedContainer,
    DataSourceBinding,
    Dataset,
    FieldDef,
    FieldType,
    Op,
    Predicate,
    Record,
    Relation,
    RowState,
    where,
)
from dataspine.core.connection import create_store
from dataspine.sync import (
    BusinessEntity,
    EntityRegistry,
    FetchResult,
    RowError,
    SaveResult,
    SyncEngine,
    SyncResult,
)

__all__ = [
    "__version__",
    # Errors
    "ConstraintViolation",
    "DataSpineError",
    "NotFound",
    "OptimisticConflict",
    "QueryError",
    "ShapeMismatch",
    "StoreError",
    "StoreTimeout",
    "TransactionAborted",
    "ValidationFailed",
    # Settings
    "ConcurrencyMode",
    "DataSpineSettings",
    "DeletePolicy",
    "get_settings",
    # Data
    "ChangeTrackedContainer",
    "DataSourceBinding",
    "Dataset",
    "FieldDef",
    "FieldType",
    "Op",
    "Predicate",
    "Record",
    "Relation",
    "RowState",
    "where",
    # Store
    "create_store",
    # Sync
    "BusinessEntity",
    "EntityRegistry",
    "FetchResult",
    "RowError",
    "SaveResult",
    "SyncEngine",
    "SyncResult",
]
