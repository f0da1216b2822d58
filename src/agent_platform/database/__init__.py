"""Database connection and session management."""

from agent_platform.database.connection import (
    check_connection,
    close_engine,
    get_engine,
)
from agent_platform.database.models import (
    Agent,
    Base,
    Document,
    Generation,
    KnowledgeBase,
    SystemConfig,
    Task,
)
from agent_platform.database.session import (
    close_db,
    get_session_context,
    get_session_factory,
    init_db,
)

__all__ = [
    # Models
    "Base",
    "Agent",
    "Task",
    "KnowledgeBase",
    "Document",
    "Generation",
    "SystemConfig",
    # Connection
    "get_engine",
    "close_engine",
    "check_connection",
    # Session
    "get_session_context",
    "get_session_factory",
    "init_db",
    "close_db",
]
