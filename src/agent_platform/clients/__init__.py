"""HTTP clients for upstream agents and external knowledge bases."""

from agent_platform.clients.base import AgentClient
from agent_platform.clients.dify_client import DifyClient
from agent_platform.clients.external_kb_client import ExternalKnowledgeClient, RetrievedPassage
from agent_platform.clients.fastgpt_client import FastGPTClient

__all__ = [
    "AgentClient",
    "DifyClient",
    "ExternalKnowledgeClient",
    "FastGPTClient",
    "RetrievedPassage",
]
