"""Database layer: declarative base, engine and session helpers."""

from inventory_kernel.db.base import Base, UTCDateTime, new_id
from inventory_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)

__all__ = [
    "Base",
    "UTCDateTime",
    "new_id",
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
]
