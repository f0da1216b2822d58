"""Generation job repository."""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.database.models import Generation, GenerationStatus
from agent_platform.exceptions import DatabaseError
from agent_platform.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class GenerationRepository(BaseRepository[Generation]):
    """Repository for generation jobs and their history."""

    def __init__(self, session: AsyncSession):
        super().__init__(Generation, session)

    async def list_recent(self, limit: int, offset: int) -> List[Generation]:
        """List generations newest first."""
        try:
            result = await self.session.execute(
                select(Generation)
                .order_by(Generation.created_at.desc())
                .offset(offset)
                .limit(limit)
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error listing generations: {e}")
            raise DatabaseError("Failed to retrieve generation history") from e

    async def finish(
        self,
        generation_id: str,
        status: str,
        duration: int,
        output_content: Optional[str] = None,
        error: Optional[str] = None,
    ) -> bool:
        """
        Move a processing job to a terminal state.

        The update is conditional on the row still being `processing`, so a
        terminal state is never overwritten. Returns True if a row changed.
        """
        if status not in GenerationStatus.TERMINAL:
            raise ValueError(f"Not a terminal generation status: {status}")

        values = {"status": status, "duration": duration}
        if output_content is not None:
            values["output_content"] = output_content
        if error is not None:
            values["error"] = error

        try:
            result = await self.session.execute(
                update(Generation)
                .where(
                    Generation.id == generation_id,
                    Generation.status == GenerationStatus.PROCESSING,
                )
                .values(**values)
            )
            return (result.rowcount or 0) > 0
        except SQLAlchemyError as e:
            logger.error(f"Error finishing generation {generation_id}: {e}")
            raise DatabaseError("Failed to update generation") from e

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete generations created before `cutoff`. Returns the number deleted."""
        try:
            result = await self.session.execute(
                delete(Generation)
                .where(Generation.created_at < cutoff)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Error deleting generations older than {cutoff}: {e}")
            raise DatabaseError("Failed to clean up generation history") from e
