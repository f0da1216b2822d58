"""Chunk and search result models."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TextChunk(BaseModel):
    """A contiguous segment of a document produced by the chunker."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(..., description="Chunk text (trimmed)")
    index: int = Field(..., ge=0, description="0-based position of the chunk within its document")
    start_char: int = Field(..., ge=0, description="Document-absolute start offset")
    end_char: int = Field(..., description="Document-absolute end offset (exclusive)")

    @model_validator(mode="after")
    def check_offsets(self) -> "TextChunk":
        if self.end_char <= self.start_char:
            raise ValueError("end_char must be greater than start_char")
        return self


class ChunkConfig(BaseModel):
    """Character-based chunking parameters."""

    chunk_size: int = Field(1000, ge=1, alias="chunkSize")
    overlap: int = Field(200, ge=0)

    model_config = ConfigDict(populate_by_name=True)


class StoredChunk(BaseModel):
    """A chunk as held by the vector store."""

    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector: Optional[List[float]] = None


class Neighbor(BaseModel):
    """One nearest-neighbour hit; `distance` is cosine distance (1 - similarity)."""

    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    distance: float


class SearchResult(BaseModel):
    """A ranked retrieval hit with its component scores."""

    id: str
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    vector_score: float = Field(..., alias="vectorScore")
    keyword_score: float = Field(0.0, alias="keywordScore")
    hybrid_score: float = Field(..., alias="hybridScore")

    model_config = ConfigDict(populate_by_name=True)
