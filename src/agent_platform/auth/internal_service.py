"""Shared-key authentication for scheduler-triggered job endpoints.

Schedulers call `/api/v1/jobs/*` with `X-Internal-API-Key`. The check is
switched off with `INTERNAL_API_KEY_ENABLED=false` for local development.
"""

import hmac
from typing import Optional

from fastapi import Depends, Header

from agent_platform.config import get_settings
from agent_platform.exceptions import APIException, AuthenticationError
from agent_platform.utils.logging import get_logger

logger = get_logger("internal_service_auth")

INTERNAL_KEY_HEADER = "X-Internal-API-Key"


async def require_internal_api_key(
    x_internal_api_key: Optional[str] = Header(default=None, alias=INTERNAL_KEY_HEADER),
) -> None:
    """
    Reject job calls that do not carry the configured internal key.

    Raises:
        APIException: 500 when the check is enabled but no key is configured
        AuthenticationError: When the header is missing or does not match
    """
    settings = get_settings()
    if not settings.internal_api_key_enabled:
        return

    expected = settings.internal_api_key
    if not expected:
        logger.error("INTERNAL_API_KEY_ENABLED=true but INTERNAL_API_KEY is not set")
        raise APIException(
            "Internal authentication is misconfigured",
            status_code=500,
            code="INTERNAL_AUTH_MISCONFIGURED",
        )

    if not x_internal_api_key or not hmac.compare_digest(x_internal_api_key, expected):
        logger.warning("Rejected job call with missing or invalid internal key")
        raise AuthenticationError(
            "Invalid internal API key", details={"header": INTERNAL_KEY_HEADER}
        )


InternalAuthDep = Depends(require_internal_api_key)
