"""Generic async repository for the platform's ORM models."""

import logging
from typing import Any, Generic, Optional, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.database.models import Base
from agent_platform.exceptions import DatabaseError

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Lookup, create, update, delete and count for one model keyed by a string id.

    Every SQLAlchemy failure surfaces as DatabaseError. Writes flush but never
    commit: the route or background job that owns the session decides when
    the unit of work ends.
    """

    def __init__(self, model: Type[ModelType], session: AsyncSession):
        self.model = model
        self.session = session

    @property
    def _name(self) -> str:
        return self.model.__name__

    async def get_by_id(self, id: str) -> Optional[ModelType]:
        try:
            result = await self.session.execute(select(self.model).where(self.model.id == id))
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error loading {self._name} {id}: {e}")
            raise DatabaseError(f"Failed to retrieve {self._name}") from e

    async def create(self, **values: Any) -> ModelType:
        """Insert a row and return it with defaults (id, timestamps) populated."""
        instance = self.model(**values)
        try:
            self.session.add(instance)
            await self.session.flush()
            await self.session.refresh(instance)
        except SQLAlchemyError as e:
            logger.error(f"Error inserting {self._name}: {e}")
            await self.session.rollback()
            raise DatabaseError(f"Failed to create {self._name}") from e

        logger.debug(f"Inserted {self._name} {instance.id}")
        return instance

    async def update(self, id: str, **values: Any) -> Optional[ModelType]:
        """Set the given columns on a row. None if the row does not exist."""
        instance = await self.get_by_id(id)
        if instance is None:
            return None

        for field, value in values.items():
            if hasattr(instance, field):
                setattr(instance, field, value)
        try:
            await self.session.flush()
            await self.session.refresh(instance)
        except SQLAlchemyError as e:
            logger.error(f"Error updating {self._name} {id}: {e}")
            await self.session.rollback()
            raise DatabaseError(f"Failed to update {self._name}") from e
        return instance

    async def delete(self, id: str) -> bool:
        """Delete a row, cascading through ORM relationships. False if absent."""
        instance = await self.get_by_id(id)
        if instance is None:
            return False

        try:
            await self.session.delete(instance)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting {self._name} {id}: {e}")
            await self.session.rollback()
            raise DatabaseError(f"Failed to delete {self._name}") from e

        logger.debug(f"Deleted {self._name} {id}")
        return True

    async def count(self) -> int:
        query = select(func.count()).select_from(self.model)
        try:
            result = await self.session.execute(query)
        except SQLAlchemyError as e:
            logger.error(f"Error counting {self._name}: {e}")
            raise DatabaseError(f"Failed to count {self._name} records") from e
        return result.scalar() or 0
