from app.db.database import (
    get_db,
    get_db_session,
    async_engine,
    AsyncSessionLocal,
    Base,
)
from app.db.counters import atomic_increment, upsert, insert_or_ignore

__all__ = [
    "get_db",
    "get_db_session",
    "async_engine",
    "AsyncSessionLocal",
    "Base",
    "atomic_increment",
    "upsert",
    "insert_or_ignore",
]
