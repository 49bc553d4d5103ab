from sqlalchemy import create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from src.config import settings


def _pool_options(url: str, pool_size: int, max_overflow: int) -> dict:
    """Queue-pool sizing for server databases; SQLite uses its own pool."""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.environment == "development",
    **_pool_options(settings.database_url, pool_size=20, max_overflow=5),
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

# Synchronous engine for Alembic migrations and the Celery outbox worker
sync_engine = create_engine(
    settings.database_url_sync,
    **_pool_options(settings.database_url_sync, pool_size=5, max_overflow=0),
)
