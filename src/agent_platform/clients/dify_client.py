"""Client for Dify chat applications."""

from typing import Any, AsyncIterator, Dict, Optional

import httpx

from agent_platform.clients.base import AgentClient, iter_sse_payloads
from agent_platform.config import get_settings
from agent_platform.database.models import AgentType
from agent_platform.exceptions import GenerationError
from agent_platform.utils.logging import get_logger

logger = get_logger("dify_client")


class DifyClient(AgentClient):
    """
    Client for the Dify `chat-messages` API.

    File content is not sent separately; it is expected to be rendered into
    the prompt by the task template.
    """

    agent_type = AgentType.DIFY

    def _payload(self, prompt: str, response_mode: str) -> Dict[str, Any]:
        return {
            "inputs": {},
            "query": prompt,
            "response_mode": response_mode,
            "user": get_settings().generation.dify_user,
            "files": [],
        }

    async def stream(self, prompt: str, file_content: Optional[str] = None) -> AsyncIterator[str]:
        url = f"{self.url}/chat-messages"
        logger.debug(f"POST {url} (streaming)")

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    url,
                    json=self._payload(prompt, "streaming"),
                    headers=self._get_headers({"Accept": "text/event-stream"}),
                ) as response:
                    await self._check_response(response)
                    async for payload in iter_sse_payloads(response, self.agent_type):
                        if payload.get("event") == "error":
                            raise GenerationError(
                                payload.get("message") or "Dify stream error",
                                agent_type=self.agent_type,
                                upstream_status=payload.get("status"),
                            )
                        fragment = payload.get("answer") or payload.get("message")
                        if fragment and isinstance(fragment, str):
                            yield fragment
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

    async def complete(self, prompt: str, file_content: Optional[str] = None) -> str:
        url = f"{self.url}/chat-messages"
        logger.debug(f"POST {url} (blocking)")

        try:
            async with self._client() as client:
                response = await client.post(
                    url, json=self._payload(prompt, "blocking"), headers=self._get_headers()
                )
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        await self._check_response(response)
        try:
            data = response.json()
        except ValueError as e:
            raise GenerationError("Invalid response from Dify", agent_type=self.agent_type) from e
        return data.get("answer") or data.get("message") or ""

    async def test_connection(self) -> bool:
        timeout = get_settings().generation.dify_test_timeout
        try:
            async with self._client(timeout) as client:
                response = await client.get(f"{self.url}/parameters", headers=self._get_headers())
            return response.status_code == 200
        except httpx.HTTPError as e:
            logger.warning(f"Dify connection test failed: {e}")
            return False
