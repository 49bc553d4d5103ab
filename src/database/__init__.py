from src.database.base import Base, JSONDocument, TimestampMixin, UTCDateTime, UUIDPrimaryKeyMixin
from src.database.engine import async_session, engine, sync_engine
from src.database.session import get_db

__all__ = [
    "Base",
    "JSONDocument",
    "TimestampMixin",
    "UTCDateTime",
    "UUIDPrimaryKeyMixin",
    "async_session",
    "engine",
    "sync_engine",
    "get_db",
]
