"""Pydantic models for knowledge base, document and search APIs."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from agent_platform.models.chunk import SearchResult


class KnowledgeBaseCreateRequest(BaseModel):
    """Request model to create a knowledge base."""

    name: str = Field(..., min_length=1, max_length=255, description="Knowledge base name")
    description: Optional[str] = Field(None, description="Optional description")
    type: Literal["local", "fastgpt", "dify"] = Field("local", description="Backend kind")
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Chunk settings for local KBs, connection settings for external ones",
    )


class KnowledgeBaseResponse(BaseModel):
    """Response model for a knowledge base."""

    id: str
    name: str
    description: Optional[str] = None
    type: str
    config: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: datetime = Field(..., alias="createdAt")

    model_config = {"populate_by_name": True}


class DocumentResponse(BaseModel):
    """Response model for an uploaded document."""

    id: str = Field(..., description="Document ID")
    knowledge_base_id: str = Field(..., alias="knowledgeBaseId")
    file_name: str = Field(..., alias="fileName")
    file_type: str = Field(..., alias="fileType", description="text, markdown or word")
    file_size: int = Field(..., alias="fileSize", description="File size in bytes")
    chunk_count: int = Field(..., alias="chunkCount")
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(..., alias="createdAt")

    model_config = {"populate_by_name": True}


class DocumentListResponse(BaseModel):
    documents: List[DocumentResponse]
    total: int


class ChunkResponse(BaseModel):
    """A stored chunk without its vector."""

    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ChunkListResponse(BaseModel):
    chunks: List[ChunkResponse]
    total: int


class ChunkUpdateRequest(BaseModel):
    """Request model to replace a chunk's text."""

    text: str = Field(..., description="New chunk text")

    @field_validator("text")
    @classmethod
    def text_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("text must not be empty")
        return v


class SearchRequest(BaseModel):
    """Request model for searching a local knowledge base."""

    query: str = Field(..., description="Search query")
    mode: Literal["hybrid", "semantic"] = Field("hybrid", description="Search mode")
    similarity: float = Field(0.4, ge=0.0, le=1.0, description="Minimum score to keep")
    limit: int = Field(10, ge=1, le=100, description="Maximum number of results")
    vector_weight: float = Field(0.7, ge=0.0, le=1.0, alias="vectorWeight")

    model_config = {"populate_by_name": True}


class SearchResponse(BaseModel):
    query: str
    mode: str
    similarity: float
    limit: int
    vector_weight: Optional[float] = Field(None, alias="vectorWeight")
    results: List[SearchResult]

    model_config = {"populate_by_name": True}


class RetrieveRequest(BaseModel):
    query: str = Field(..., description="Retrieval query")


class RetrievedPassageResponse(BaseModel):
    content: str
    score: Optional[float] = None
    source: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RetrieveResponse(BaseModel):
    query: str
    type: str
    results: List[RetrievedPassageResponse]


class KnowledgeBaseConnectionResponse(BaseModel):
    success: bool
    knowledge_base_id: str = Field(..., alias="knowledgeBaseId")
    type: str

    model_config = {"populate_by_name": True}
