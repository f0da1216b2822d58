"""Pydantic models for generation and history APIs."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class GenerationInputRequest(BaseModel):
    text: Optional[str] = Field(None, description="Free-text input")
    file_name: Optional[str] = Field(None, alias="fileName", description="Uploaded file name")
    file_content: Optional[str] = Field(
        None, alias="fileContent", description="Extracted text of the uploaded file"
    )

    model_config = {"populate_by_name": True}


class GenerationStartRequest(BaseModel):
    """Request model to start a generation job."""

    agent_id: str = Field(..., alias="agentId")
    task_id: str = Field(..., alias="taskId")
    input: GenerationInputRequest

    model_config = {"populate_by_name": True}


class GenerationStartResponse(BaseModel):
    generation_id: str = Field(..., alias="generationId")
    status: str = Field("starting", description="Always `starting`; progress arrives on the stream")
    stream_url: str = Field(..., alias="streamUrl")

    model_config = {"populate_by_name": True}


class AgentConnectionResponse(BaseModel):
    success: bool
    agent_id: str = Field(..., alias="agentId")
    type: str

    model_config = {"populate_by_name": True}


class HistoryItem(BaseModel):
    """One row of the history list."""

    id: str
    agent_name: str = Field(..., alias="agentName")
    task_name: str = Field(..., alias="taskName")
    created_at: datetime = Field(..., alias="createdAt")
    summary: str
    status: str

    model_config = {"populate_by_name": True}


class HistoryListResponse(BaseModel):
    history: List[HistoryItem]
    total: int
    has_more: bool = Field(..., alias="hasMore")

    model_config = {"populate_by_name": True}


class HistoryInput(BaseModel):
    text: Optional[str] = None
    file_name: Optional[str] = Field(None, alias="fileName")

    model_config = {"populate_by_name": True}


class HistoryDetailResponse(HistoryItem):
    full_content: str = Field(..., alias="fullContent")
    input: HistoryInput
    duration: int
    error: Optional[str] = None


class HistoryDeleteResponse(BaseModel):
    message: str
    id: str


class HistoryCleanupResponse(BaseModel):
    message: str
    deleted: int
