"""SQLAlchemy layer for dataspine.

Modules
-------
session     Engine factory, DataSpineSession, SAConnectionBridge

Tags:
    dataspine, orm, sqlalchemy, session, bridge
"""

from __future__ import annotations

from dataspine.core.orm.session import (
    DataSpineSession,
    SAConnectionBridge,
    create_dataspine_engine,
    dataspine_session_factory,
)

__all__ = [
    "DataSpineSession",
    "SAConnectionBridge",
    "create_dataspine_engine",
    "dataspine_session_factory",
]
