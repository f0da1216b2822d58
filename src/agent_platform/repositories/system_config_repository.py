"""System configuration repository."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.database.models import SystemConfig
from agent_platform.exceptions import DatabaseError
from agent_platform.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class SystemConfigRepository(BaseRepository[SystemConfig]):
    """Repository for key/value system configuration."""

    def __init__(self, session: AsyncSession):
        super().__init__(SystemConfig, session)

    async def get_value(self, key: str) -> Optional[str]:
        """Get the raw value stored under `key`, or None."""
        try:
            result = await self.session.execute(
                select(SystemConfig.value).where(SystemConfig.key == key)
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting system config {key}: {e}")
            raise DatabaseError("Failed to retrieve system config") from e

    async def set_value(self, key: str, value: str) -> SystemConfig:
        """Insert or replace the value stored under `key`."""
        try:
            result = await self.session.execute(select(SystemConfig).where(SystemConfig.key == key))
            config = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting system config {key}: {e}")
            raise DatabaseError("Failed to retrieve system config") from e

        if config is None:
            return await self.create(key=key, value=value)
        return await self.update(config.id, value=value)
