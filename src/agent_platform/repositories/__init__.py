"""Data access repositories."""

from agent_platform.repositories.agent_repository import AgentRepository, TaskRepository
from agent_platform.repositories.base import BaseRepository
from agent_platform.repositories.generation_repository import GenerationRepository
from agent_platform.repositories.knowledge_repository import (
    DocumentRepository,
    KnowledgeBaseRepository,
)
from agent_platform.repositories.system_config_repository import SystemConfigRepository

__all__ = [
    "BaseRepository",
    "AgentRepository",
    "TaskRepository",
    "KnowledgeBaseRepository",
    "DocumentRepository",
    "GenerationRepository",
    "SystemConfigRepository",
]
