"""Knowledge base endpoints: documents, chunks, search and retrieval."""

import logging

from fastapi import APIRouter, Depends, File, UploadFile, status

from agent_platform.auth.dependencies import get_current_user_id
from agent_platform.database.models import Document, KnowledgeBase
from agent_platform.database.session import get_session_context
from agent_platform.models.knowledge import (
    ChunkListResponse,
    ChunkResponse,
    ChunkUpdateRequest,
    DocumentListResponse,
    DocumentResponse,
    KnowledgeBaseConnectionResponse,
    KnowledgeBaseCreateRequest,
    KnowledgeBaseResponse,
    RetrievedPassageResponse,
    RetrieveRequest,
    RetrieveResponse,
    SearchRequest,
    SearchResponse,
)
from agent_platform.services.knowledge_service import get_knowledge_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["knowledge"], dependencies=[Depends(get_current_user_id)])


def _kb_to_response(kb: KnowledgeBase) -> KnowledgeBaseResponse:
    return KnowledgeBaseResponse(
        id=kb.id,
        name=kb.name,
        description=kb.description,
        type=kb.type,
        config=kb.config_dict,
        created_by=kb.created_by,
        created_at=kb.created_at,
    )


def _document_to_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        knowledge_base_id=document.knowledge_base_id,
        file_name=document.file_name,
        file_type=document.file_type,
        file_size=document.file_size,
        chunk_count=document.chunk_count,
        metadata=document.metadata_dict,
        created_at=document.created_at,
    )


@router.post(
    "/knowledge-bases",
    response_model=KnowledgeBaseResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create Knowledge Base",
)
async def create_knowledge_base(
    request: KnowledgeBaseCreateRequest,
    user_id: str = Depends(get_current_user_id),
):
    async with get_session_context() as session:
        service = get_knowledge_service(session)
        kb = await service.create_knowledge_base(
            name=request.name,
            kb_type=request.type,
            description=request.description,
            config=request.config,
            created_by=user_id,
        )
        await session.commit()
        return _kb_to_response(kb)


@router.delete(
    "/knowledge-bases/{kb_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Knowledge Base",
    description="Deletes the knowledge base, its documents and its vector collection.",
)
async def delete_knowledge_base(kb_id: str):
    async with get_session_context() as session:
        await get_knowledge_service(session).delete_knowledge_base(kb_id)
        await session.commit()


@router.post(
    "/knowledge-bases/{kb_id}/test-connection",
    response_model=KnowledgeBaseConnectionResponse,
    summary="Test Knowledge Base Connection",
    description=(
        "Run a search against a FastGPT or Dify knowledge base with its stored "
        "credentials; for a local knowledge base, check the vector store."
    ),
)
async def test_knowledge_base_connection(kb_id: str):
    async with get_session_context() as session:
        kb, success = await get_knowledge_service(session).test_connection(kb_id)
        kb_type = kb.type

    return KnowledgeBaseConnectionResponse(success=success, knowledge_base_id=kb_id, type=kb_type)


@router.post(
    "/knowledge-bases/{kb_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload Document",
    description=(
        "Parse, chunk, embed and index a document into a local knowledge base. "
        "Supported types: .txt, .md, .markdown, .docx, .doc (max 10MB)."
    ),
)
async def upload_document(kb_id: str, file: UploadFile = File(..., description="File to upload")):
    data = await file.read()
    file_name = file.filename or "unknown"

    async with get_session_context() as session:
        document = await get_knowledge_service(session).upload_document(kb_id, file_name, data)
        await session.commit()
        return _document_to_response(document)


@router.get(
    "/knowledge-bases/{kb_id}/documents",
    response_model=DocumentListResponse,
    summary="List Documents",
)
async def list_documents(kb_id: str):
    async with get_session_context() as session:
        documents = await get_knowledge_service(session).list_documents(kb_id)
        return DocumentListResponse(
            documents=[_document_to_response(d) for d in documents],
            total=len(documents),
        )


@router.post(
    "/knowledge-bases/{kb_id}/search",
    response_model=SearchResponse,
    summary="Search Knowledge Base",
    description="Hybrid (vector + keyword) or pure semantic search over a local knowledge base.",
)
async def search_knowledge_base(kb_id: str, request: SearchRequest):
    async with get_session_context() as session:
        results = await get_knowledge_service(session).search(
            kb_id,
            request.query,
            mode=request.mode,
            similarity=request.similarity,
            limit=request.limit,
            vector_weight=request.vector_weight,
        )

    return SearchResponse(
        query=request.query,
        mode=request.mode,
        similarity=request.similarity,
        limit=request.limit,
        vector_weight=request.vector_weight if request.mode == "hybrid" else None,
        results=results,
    )


@router.post(
    "/knowledge-bases/{kb_id}/retrieve",
    response_model=RetrieveResponse,
    summary="Retrieve Passages",
    description="Retrieve context passages from a local, FastGPT or Dify knowledge base.",
)
async def retrieve_passages(kb_id: str, request: RetrieveRequest):
    async with get_session_context() as session:
        service = get_knowledge_service(session)
        kb = await service.get_knowledge_base(kb_id)
        passages = await service.retrieve(kb_id, request.query)

    return RetrieveResponse(
        query=request.query,
        type=kb.type,
        results=[RetrievedPassageResponse(**p.model_dump()) for p in passages],
    )


@router.delete(
    "/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Document",
)
async def delete_document(document_id: str):
    async with get_session_context() as session:
        await get_knowledge_service(session).delete_document(document_id)
        await session.commit()


@router.get(
    "/documents/{document_id}/chunks",
    response_model=ChunkListResponse,
    summary="List Document Chunks",
)
async def get_document_chunks(document_id: str):
    async with get_session_context() as session:
        chunks = await get_knowledge_service(session).get_document_chunks(document_id)

    return ChunkListResponse(
        chunks=[ChunkResponse(id=c.id, text=c.text, metadata=c.metadata) for c in chunks],
        total=len(chunks),
    )


@router.put(
    "/documents/{document_id}/chunks/{chunk_id}",
    response_model=ChunkResponse,
    summary="Update Chunk",
    description="Replace a chunk's text and re-embed it; metadata is kept.",
)
async def update_chunk(document_id: str, chunk_id: str, request: ChunkUpdateRequest):
    async with get_session_context() as session:
        chunk = await get_knowledge_service(session).update_chunk(
            document_id, chunk_id, request.text
        )

    logger.info(f"Chunk {chunk_id} of document {document_id} updated")
    return ChunkResponse(id=chunk.id, text=chunk.text, metadata=chunk.metadata)
