"""Store adapters.

Architecture::

    SqliteConnection (sqlite.py)   sqlite3 → Connection protocol
    SAConnectionBridge (orm)       SQLAlchemy Session → Connection protocol
    SqlStore (sql_store.py)        Connection + Dialect → Store protocol
"""

from dataspine.core.adapters.sql_store import SqlStore, SqlTransaction, classify_driver_error
from dataspine.core.adapters.sqlite import SqliteConnection

__all__ = [
    "SqlStore",
    "SqlTransaction",
    "SqliteConnection",
    "classify_driver_error",
]
