"""Knowledge base service: document ingestion, chunk editing and search."""

import json
import uuid
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.clients.external_kb_client import ExternalKnowledgeClient, RetrievedPassage
from agent_platform.config import get_settings
from agent_platform.database.models import Document, KnowledgeBase, KnowledgeBaseType
from agent_platform.exceptions import NotFoundError, ValidationError
from agent_platform.models.chunk import ChunkConfig, SearchResult, StoredChunk
from agent_platform.repositories.knowledge_repository import (
    DocumentRepository,
    KnowledgeBaseRepository,
)
from agent_platform.services.chunking_service import chunk_text_by_paragraphs
from agent_platform.services.embedding_service import (
    EmbeddingClient,
    get_embedding_client,
    resolve_embedding_config,
)
from agent_platform.services.keyword_service import extract_keywords, query_keywords
from agent_platform.services.parser_service import ParserService, get_parser_service
from agent_platform.services.search_service import SearchService
from agent_platform.services.vector_store_service import VectorStoreService, get_vector_store
from agent_platform.utils.logging import get_logger

logger = get_logger("knowledge_service")
settings = get_settings()

SEARCH_MODES = ("hybrid", "semantic")


class KnowledgeService:
    """Service for local knowledge base documents and retrieval."""

    def __init__(
        self,
        session: AsyncSession,
        vector_store: Optional[VectorStoreService] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        parser: Optional[ParserService] = None,
        external_client: Optional[ExternalKnowledgeClient] = None,
    ):
        self.session = session
        self.kb_repo = KnowledgeBaseRepository(session)
        self.document_repo = DocumentRepository(session)
        self.vector_store = vector_store or get_vector_store()
        self.embedding_client = embedding_client or get_embedding_client()
        self.parser = parser or get_parser_service()
        self.external_client = external_client or ExternalKnowledgeClient()
        self.search_service = SearchService(self.vector_store)

    # Knowledge bases

    async def create_knowledge_base(
        self,
        name: str,
        kb_type: str = KnowledgeBaseType.LOCAL,
        description: Optional[str] = None,
        config: Optional[Dict[str, Any]] = None,
        created_by: Optional[str] = None,
    ) -> KnowledgeBase:
        if kb_type not in (KnowledgeBaseType.LOCAL, KnowledgeBaseType.FASTGPT, KnowledgeBaseType.DIFY):
            raise ValidationError(f"Unsupported knowledge base type: {kb_type}")
        if kb_type == KnowledgeBaseType.LOCAL:
            # Validate chunk settings up front so uploads cannot fail on them later
            chunk_config = ChunkConfig.model_validate(config or {})
            config = {
                **(config or {}),
                "chunkSize": chunk_config.chunk_size,
                "overlap": chunk_config.overlap,
            }

        kb = await self.kb_repo.create(
            name=name,
            type=kb_type,
            description=description,
            config=json.dumps(config or {}),
            created_by=created_by,
        )
        logger.info(f"Knowledge base created: id={kb.id}, type={kb_type}")
        return kb

    async def get_knowledge_base(self, kb_id: str) -> KnowledgeBase:
        kb = await self.kb_repo.get_by_id(kb_id)
        if not kb:
            raise NotFoundError("Knowledge base", kb_id)
        return kb

    async def get_local_knowledge_base(self, kb_id: str) -> KnowledgeBase:
        kb = await self.get_knowledge_base(kb_id)
        if kb.type != KnowledgeBaseType.LOCAL:
            raise ValidationError(
                "Only local knowledge bases support this operation",
                details={"knowledge_base_id": kb_id, "type": kb.type},
            )
        return kb

    async def delete_knowledge_base(self, kb_id: str) -> None:
        """
        Delete a knowledge base, its documents and (for local ones) its collection.

        A collection that cannot be dropped is logged and left behind; the
        record deletion always proceeds.
        """
        kb = await self.get_knowledge_base(kb_id)
        if kb.type == KnowledgeBaseType.LOCAL:
            try:
                await self.vector_store.delete_collection(kb_id)
            except Exception as e:
                logger.warning(
                    f"Failed to delete collection for knowledge base {kb_id}: {e}",
                    exc_info=True,
                )

        await self.kb_repo.delete(kb_id)
        logger.info(f"Knowledge base deleted: id={kb_id}")

    async def test_connection(self, kb_id: str) -> Tuple[KnowledgeBase, bool]:
        """
        Check that a knowledge base's backend is reachable.

        External knowledge bases are searched with their stored credentials;
        a local one checks the vector store.
        """
        kb = await self.get_knowledge_base(kb_id)
        if kb.type == KnowledgeBaseType.LOCAL:
            success = await self.vector_store.ping()
        else:
            success = await self.external_client.test_connection(kb.type, kb.config_dict)
        logger.info(f"Knowledge base connection test: id={kb_id}, type={kb.type}, success={success}")
        return kb, success

    def chunk_config_for(self, kb: KnowledgeBase) -> ChunkConfig:
        config = kb.config_dict
        return ChunkConfig(
            chunk_size=config.get("chunkSize") or settings.chunking.chunk_size,
            overlap=config.get("overlap") or settings.chunking.overlap,
        )

    # Documents

    async def upload_document(self, kb_id: str, file_name: str, data: bytes) -> Document:
        """
        Parse, chunk, embed and store a document.

        Embeddings are generated before anything is written, so an embedding
        failure leaves neither vectors nor a document record behind.

        Raises:
            ValidationError: Empty/oversized/unsupported file or no embedding config
            EmbeddingError: The embedding endpoint failed
            VectorStoreError: The vector store rejected the insert
        """
        if not data:
            raise ValidationError("File is empty")
        if len(data) > settings.upload.max_file_size_bytes:
            raise ValidationError(
                f"File exceeds maximum size of {settings.upload.max_file_size_mb}MB",
                details={"file_size": len(data)},
            )

        kb = await self.get_local_knowledge_base(kb_id)
        embedding_config = await resolve_embedding_config(self.session)

        parsed = self.parser.parse(file_name, data)
        chunk_config = self.chunk_config_for(kb)
        chunks = chunk_text_by_paragraphs(parsed.text, chunk_config.chunk_size, chunk_config.overlap)
        if not chunks:
            raise ValidationError("Document content is empty", details={"file_name": file_name})

        document_id = str(uuid.uuid4())
        chunk_ids = [f"{kb_id}_{uuid.uuid4()}" for _ in chunks]
        texts = [chunk.text for chunk in chunks]
        metadatas = [
            {
                "documentId": document_id,
                "fileName": file_name,
                "chunkIndex": chunk.index,
                "startChar": chunk.start_char,
                "endChar": chunk.end_char,
                "keywords": ",".join(
                    extract_keywords(chunk.text, settings.chunking.keywords_per_chunk)
                ),
            }
            for chunk in chunks
        ]

        logger.info(f"Uploading document: kb={kb_id}, file={file_name}, chunks={len(chunks)}")
        vectors = await self.embedding_client.embed(texts, embedding_config)

        collection_name = await self.vector_store.ensure_collection(kb_id, len(vectors[0]))
        await self.vector_store.insert(collection_name, chunk_ids, vectors, texts, metadatas)

        try:
            document = await self.document_repo.create_document(
                document_id=document_id,
                knowledge_base_id=kb_id,
                file_name=file_name,
                file_type=parsed.metadata["fileType"],
                file_size=parsed.metadata["fileSize"],
                vector_ids=chunk_ids,
                metadata={
                    **parsed.metadata,
                    "chunkConfig": {
                        "chunkSize": chunk_config.chunk_size,
                        "overlap": chunk_config.overlap,
                    },
                },
            )
        except Exception:
            # Best effort to not leave vectors without a document record
            try:
                await self.vector_store.delete(collection_name, chunk_ids)
            except Exception as cleanup_error:
                logger.error(
                    f"Failed to remove vectors after document insert failure: {cleanup_error}"
                )
            raise

        logger.info(f"Document stored: id={document.id}, chunks={document.chunk_count}")
        return document

    async def list_documents(self, kb_id: str) -> List[Document]:
        await self.get_knowledge_base(kb_id)
        return await self.document_repo.get_by_knowledge_base(kb_id)

    async def get_document(self, document_id: str) -> Document:
        document = await self.document_repo.get_by_id(document_id)
        if not document:
            raise NotFoundError("Document", document_id)
        return document

    async def delete_document(self, document_id: str) -> None:
        """
        Delete a document and its chunks.

        A vector store failure is logged and tolerated; the document record is
        always deleted.
        """
        document = await self.get_document(document_id)

        vector_ids = document.vector_id_list
        if vector_ids:
            collection_name = self.vector_store.collection_name(document.knowledge_base_id)
            try:
                await self.vector_store.delete(collection_name, vector_ids)
            except Exception as e:
                logger.error(
                    f"Failed to delete vectors for document {document_id}: {e}",
                    extra={"document_id": document_id, "vector_count": len(vector_ids)},
                )

        await self.document_repo.delete(document_id)
        logger.info(f"Document deleted: id={document_id}")

    async def get_document_chunks(self, document_id: str) -> List[StoredChunk]:
        document = await self.get_document(document_id)
        collection_name = self.vector_store.collection_name(document.knowledge_base_id)
        chunks = await self.vector_store.get_by_ids(collection_name, document.vector_id_list)
        return [chunk.model_copy(update={"vector": None}) for chunk in chunks]

    async def update_chunk(self, document_id: str, chunk_id: str, text: str) -> StoredChunk:
        """
        Replace a chunk's text and embedding, keeping its metadata.

        Concurrent edits of the same chunk are last-write-wins.
        """
        if not text or not text.strip():
            raise ValidationError("Chunk text must not be empty")

        document = await self.get_document(document_id)
        if chunk_id not in document.vector_id_list:
            raise NotFoundError("Chunk", chunk_id)

        embedding_config = await resolve_embedding_config(self.session)
        vector = await self.embedding_client.embed_one(text, embedding_config)

        collection_name = self.vector_store.collection_name(document.knowledge_base_id)
        existing = await self.vector_store.get_by_ids(collection_name, [chunk_id])
        metadata = existing[0].metadata if existing else {}

        await self.vector_store.update(collection_name, chunk_id, text, vector, metadata)
        logger.info(f"Chunk updated: document={document_id}, chunk={chunk_id}")
        return StoredChunk(id=chunk_id, text=text, metadata=metadata)

    # Search

    async def search(
        self,
        kb_id: str,
        query: str,
        mode: str = "hybrid",
        similarity: float = 0.4,
        limit: int = 10,
        vector_weight: float = 0.7,
    ) -> List[SearchResult]:
        """
        Search a local knowledge base.

        `semantic` keeps neighbours whose vector score reaches `similarity`.
        `hybrid` blends in overlap with the query's longer words and keeps
        results whose hybrid score reaches `similarity`.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        if mode not in SEARCH_MODES:
            raise ValidationError(
                f"Unsupported search mode: {mode}", details={"valid": list(SEARCH_MODES)}
            )

        await self.get_local_knowledge_base(kb_id)
        embedding_config = await resolve_embedding_config(self.session)
        query_vector = await self.embedding_client.embed_one(query, embedding_config)
        collection_name = self.vector_store.collection_name(kb_id)

        if mode == "semantic":
            return await self.search_service.semantic_search(
                collection_name, query_vector, limit, similarity
            )

        results = await self.search_service.hybrid_search(
            collection_name, query_vector, query_keywords(query), limit, vector_weight
        )
        return [r for r in results if r.hybrid_score >= similarity]

    async def retrieve(self, kb_id: str, query: str) -> List[RetrievedPassage]:
        """Retrieve passages from any knowledge base type for generation context."""
        kb = await self.get_knowledge_base(kb_id)
        if kb.type == KnowledgeBaseType.LOCAL:
            results = await self.search(
                kb_id,
                query,
                mode="hybrid",
                similarity=settings.search.similarity,
                limit=settings.search.limit,
                vector_weight=settings.search.vector_weight,
            )
            return [
                RetrievedPassage(
                    content=r.text,
                    score=r.hybrid_score,
                    source=r.metadata.get("fileName"),
                    metadata=r.metadata,
                )
                for r in results
            ]

        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        return await self.external_client.search(kb.type, kb.config_dict, query)


def get_knowledge_service(session: AsyncSession) -> KnowledgeService:
    """Get knowledge service instance."""
    return KnowledgeService(session)
