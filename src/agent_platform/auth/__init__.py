"""Caller identity and internal service authentication."""

from agent_platform.auth.dependencies import (
    StreamTokenDep,
    get_current_user_id,
    verify_stream_token,
)
from agent_platform.auth.internal_service import InternalAuthDep, require_internal_api_key

__all__ = [
    "InternalAuthDep",
    "StreamTokenDep",
    "get_current_user_id",
    "require_internal_api_key",
    "verify_stream_token",
]
