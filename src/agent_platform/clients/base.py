"""Shared HTTP plumbing for upstream agent backends."""

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from agent_platform.config import get_settings
from agent_platform.exceptions import GenerationError, StreamChunkParseError
from agent_platform.utils.logging import get_logger

logger = get_logger("agent_client")

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


def decode_sse_data(data: str) -> Dict[str, Any]:
    """
    Decode the JSON payload of one SSE `data:` line.

    Raises:
        StreamChunkParseError: If the payload is not a JSON object
    """
    try:
        payload = json.loads(data)
    except ValueError as e:
        raise StreamChunkParseError("Stream chunk is not valid JSON", raw=data) from e
    if not isinstance(payload, dict):
        raise StreamChunkParseError("Stream chunk is not a JSON object", raw=data)
    return payload


async def iter_sse_payloads(response: httpx.Response, agent_type: str) -> AsyncIterator[Dict[str, Any]]:
    """
    Yield decoded `data:` payloads from a streaming response until `[DONE]`.

    Lines that are not `data:` lines (event names, comments, blanks) are
    ignored. A malformed payload is logged and skipped.
    """
    async for line in response.aiter_lines():
        line = line.strip()
        if not line.startswith(SSE_DATA_PREFIX):
            continue

        data = line[len(SSE_DATA_PREFIX):].strip()
        if data == SSE_DONE:
            return
        if not data:
            continue

        try:
            yield decode_sse_data(data)
        except StreamChunkParseError as e:
            logger.warning(
                f"Skipping malformed {agent_type} stream chunk: {e.message}",
                extra={"agent_type": agent_type, "raw": e.details.get("raw")},
            )


class AgentClient(ABC):
    """
    Base client for an external completion backend.

    Handles:
    - Bearer token authentication
    - Timeout configuration
    - Mapping transport and HTTP errors to GenerationError
    """

    agent_type: str = "agent"

    def __init__(
        self,
        url: str,
        api_token: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.url = url.rstrip("/")
        self.api_token = api_token
        self.timeout = timeout if timeout is not None else settings.generation.blocking_timeout
        self.connect_timeout = settings.generation.connect_timeout
        self._transport = transport

    def _get_headers(self, additional_headers: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }
        if additional_headers:
            headers.update(additional_headers)
        return headers

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        read_timeout = timeout if timeout is not None else self.timeout
        return httpx.AsyncClient(
            timeout=httpx.Timeout(read_timeout, connect=min(self.connect_timeout, read_timeout)),
            transport=self._transport,
        )

    async def _check_response(self, response: httpx.Response) -> None:
        """Raise GenerationError for a non-2xx upstream response."""
        if response.is_success:
            return

        await response.aread()
        body = response.text[:500]
        message = f"{self.agent_type} API error: {response.status_code}"
        try:
            upstream_message = response.json().get("message")
        except (ValueError, AttributeError):
            upstream_message = None
        if upstream_message:
            message = f"{message} {upstream_message}"

        raise GenerationError(
            message,
            agent_type=self.agent_type,
            upstream_status=response.status_code,
            details={"body": body},
        )

    def _transport_error(self, error: httpx.HTTPError) -> GenerationError:
        if isinstance(error, httpx.TimeoutException):
            message = f"{self.agent_type} request timed out"
        else:
            message = f"{self.agent_type} request failed: {error}"
        return GenerationError(message, agent_type=self.agent_type, details={"error": str(error)})

    @abstractmethod
    def stream(self, prompt: str, file_content: Optional[str] = None) -> AsyncIterator[str]:
        """Yield text fragments in arrival order."""

    @abstractmethod
    async def complete(self, prompt: str, file_content: Optional[str] = None) -> str:
        """Return the full completion in one call."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Return True if the backend accepts our credentials."""
