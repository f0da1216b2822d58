"""Async engine for the configured database (PostgreSQL via asyncpg, or SQLite)."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from agent_platform.config import DatabaseSettings, get_settings

logger = logging.getLogger(__name__)

_SYNC_DRIVERS = {
    "postgresql+asyncpg://": "postgresql+psycopg2://",
    "sqlite+aiosqlite://": "sqlite://",
}

_engine: Optional[AsyncEngine] = None


def get_database_url() -> str:
    """Async URL; a bare `postgresql://` scheme is pointed at asyncpg."""
    url = get_settings().database.url
    if url.startswith("postgresql://"):
        return "postgresql+asyncpg://" + url[len("postgresql://"):]
    return url


def get_sync_database_url() -> str:
    """The same database for synchronous tools (Alembic): psycopg2 or pysqlite."""
    url = get_database_url()
    for async_prefix, sync_prefix in _SYNC_DRIVERS.items():
        if url.startswith(async_prefix):
            return sync_prefix + url[len(async_prefix):]
    return url


def _engine_options(db: DatabaseSettings) -> Dict[str, Any]:
    if db.is_sqlite:
        # One shared connection: in-memory databases live only as long as it does
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return {
        "pool_size": db.pool_size,
        "max_overflow": db.max_overflow,
        "pool_timeout": db.pool_timeout,
        "pool_recycle": db.pool_recycle,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    """The process-wide engine, created on first use."""
    global _engine
    if _engine is None:
        db = get_settings().database
        options = _engine_options(db)
        _engine = create_async_engine(get_database_url(), echo=db.echo, **options)
        logger.info(
            "Database engine created: "
            + ("sqlite (StaticPool)" if db.is_sqlite else f"pool_size={db.pool_size}")
        )
    return _engine


async def close_engine() -> None:
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    await engine.dispose()
    logger.info("Database engine disposed")


async def check_connection() -> bool:
    """`SELECT 1` round trip. False (and logged) on any failure."""
    try:
        async with get_engine().connect() as conn:
            return await conn.scalar(text("SELECT 1")) == 1
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False
