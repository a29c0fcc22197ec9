"""
dataspine.sync - synchronization engine and business entity facade.

Modules
-------
engine      SyncEngine: read / create / update / delete / sync_all
results     SyncResult, RowError, FetchResult, SaveResult
entity      BusinessEntity: fetch_by_key / fetch / save / remove
registry    EntityRegistry: lazy, memoized entity construction
"""

from dataspine.sync.engine import SyncEngine
from dataspine.sync.entity import BusinessEntity
from dataspine.sync.registry import EntityRegistry
from dataspine.sync.results import FetchResult, RowError, SaveResult, SyncResult

__all__ = [
    "BusinessEntity",
    "EntityRegistry",
    "FetchResult",
    "RowError",
    "SaveResult",
    "SyncEngine",
    "SyncResult",
]
