"""FastAPI dependencies for caller identity.

Authentication happens upstream: the gateway validates the session and
forwards the user id in `X-User-ID`. Browsers cannot set headers on an
EventSource, so the stream endpoint takes a `token` query parameter instead.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header, Query

from agent_platform.config import get_settings
from agent_platform.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
) -> str:
    """
    Return the caller's user id.

    Raises:
        AuthenticationError: If the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise AuthenticationError("Missing user identity", details={"header": "X-User-ID"})
    return x_user_id.strip()


async def verify_stream_token(
    token: Optional[str] = Query(default=None, description="Stream access token"),
) -> None:
    """
    Check the stream token against `STREAM_TOKEN`.

    When no stream token is configured any value (or none) is accepted.
    """
    expected = get_settings().stream.token
    if not expected:
        return

    if not token or not hmac.compare_digest(token, expected):
        logger.warning("Rejected stream connection with invalid token")
        raise AuthenticationError("Invalid stream token")


StreamTokenDep = Depends(verify_stream_token)
