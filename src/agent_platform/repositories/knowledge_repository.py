"""Knowledge base and document repositories."""

import json
import logging
from typing import Any, Dict, List

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.database.models import Document, KnowledgeBase
from agent_platform.exceptions import DatabaseError
from agent_platform.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


class KnowledgeBaseRepository(BaseRepository[KnowledgeBase]):
    """Repository for knowledge base records."""

    def __init__(self, session: AsyncSession):
        super().__init__(KnowledgeBase, session)


class DocumentRepository(BaseRepository[Document]):
    """Repository for documents uploaded to local knowledge bases."""

    def __init__(self, session: AsyncSession):
        super().__init__(Document, session)

    async def get_by_knowledge_base(self, knowledge_base_id: str) -> List[Document]:
        """
        Get all documents in a knowledge base, newest first.

        Args:
            knowledge_base_id: Knowledge base ID

        Returns:
            List of Document instances
        """
        try:
            result = await self.session.execute(
                select(Document)
                .where(Document.knowledge_base_id == knowledge_base_id)
                .order_by(Document.created_at.desc())
            )
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            logger.error(f"Error getting documents for knowledge base {knowledge_base_id}: {e}")
            raise DatabaseError("Failed to retrieve documents") from e

    async def create_document(
        self,
        document_id: str,
        knowledge_base_id: str,
        file_name: str,
        file_type: str,
        file_size: int,
        vector_ids: List[str],
        metadata: Dict[str, Any],
    ) -> Document:
        """Create a document record for a set of stored chunks."""
        return await self.create(
            id=document_id,
            knowledge_base_id=knowledge_base_id,
            file_name=file_name,
            file_type=file_type,
            file_size=file_size,
            chunk_count=len(vector_ids),
            vector_ids=json.dumps(vector_ids),
            metadata_json=json.dumps(metadata, default=str),
        )
