"""Async session factory and unit-of-work helpers."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agent_platform.database.connection import check_connection, close_engine, get_engine

logger = logging.getLogger(__name__)

_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Return the process-wide session factory, creating it on first use.

    Objects stay readable after commit; routes serialise ORM rows after they
    commit and background jobs hand snapshots across sessions.
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            get_engine(), class_=AsyncSession, expire_on_commit=False, autoflush=False
        )
    return _session_factory


@asynccontextmanager
async def get_session_context() -> AsyncIterator[AsyncSession]:
    """
    One unit of work: commit if the block completes, roll back if it raises.

    Used by route handlers, the generation background job and the stream
    relay's polls, each of which opens its own short-lived session.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Rolling back after database error: {e}")
            await session.rollback()
            raise
        except BaseException:
            await session.rollback()
            raise


async def init_db() -> None:
    if await check_connection():
        logger.info("Database reachable")
    else:
        logger.warning("Database not reachable at startup; /ready will report it")


async def close_db() -> None:
    global _session_factory
    await close_engine()
    _session_factory = None
    logger.info("Database connections closed")
