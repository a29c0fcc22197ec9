"""
dataspine.core - ambient stack and store boundary.

Modules
-------
errors      Error taxonomy (ShapeMismatch, QueryError, ConstraintViolation, ...)
logging     structlog configuration and context helpers
settings    pydantic-settings configuration (DATASPINE_* environment)
protocols   Connection, Store, StoreTransaction, entity capabilities
dialect     SQL generation for SQLite, PostgreSQL, MySQL, Oracle, DB2
connection  URL → connection / store factory
adapters    SqliteConnection and the SqlStore implementation
orm         SQLAlchemy engine, session and Connection bridge
"""

from dataspine.core.errors import DataSpineError, ErrorCategory, ErrorContext
from dataspine.core.logging import LogContext, configure_logging, get_logger
from dataspine.core.settings import DataSpineSettings, get_settings

__all__ = [
    "DataSpineError",
    "DataSpineSettings",
    "ErrorCategory",
    "ErrorContext",
    "LogContext",
    "configure_logging",
    "get_logger",
    "get_settings",
]
