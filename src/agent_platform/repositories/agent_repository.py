"""Agent and task repositories."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.database.models import Agent, Task
from agent_platform.exceptions import DatabaseError
from agent_platform.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class AgentRepository(BaseRepository[Agent]):
    """Repository for agent lookups."""

    def __init__(self, session: AsyncSession):
        super().__init__(Agent, session)

    async def get_active(self, agent_id: str) -> Optional[Agent]:
        """Get an agent only if it exists and is active."""
        try:
            result = await self.session.execute(
                select(Agent).where(Agent.id == agent_id, Agent.is_active.is_(True))
            )
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error getting active agent {agent_id}: {e}")
            raise DatabaseError("Failed to retrieve agent") from e


class TaskRepository(BaseRepository[Task]):
    """Repository for task template lookups."""

    def __init__(self, session: AsyncSession):
        super().__init__(Task, session)
