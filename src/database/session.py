import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession

from src.database.engine import async_session

logger = logging.getLogger(__name__)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Unit of work: commit on success, roll back and re-raise on error.

    Services may commit intermediate steps themselves (settlement claims);
    the final commit here is then a no-op for already-flushed work.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            logger.debug("Rolling back session after error", exc_info=True)
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a database session."""
    async with session_scope() as session:
        yield session
