"""Client for FastGPT (OpenAI-style chat completions)."""

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from agent_platform.clients.base import AgentClient, iter_sse_payloads
from agent_platform.config import get_settings
from agent_platform.database.models import AgentType
from agent_platform.exceptions import GenerationError
from agent_platform.utils.logging import get_logger

logger = get_logger("fastgpt_client")

COMPLETIONS_PATH = "/api/v1/chat/completions"


def normalize_fastgpt_url(url: str) -> str:
    """Append the completions path to a bare FastGPT host URL."""
    url = url.rstrip("/")
    if "/api/" not in url:
        url = f"{url}{COMPLETIONS_PATH}"
    return url


def build_messages(prompt: str, file_content: Optional[str] = None) -> List[Dict[str, str]]:
    messages = []
    if file_content:
        messages.append(
            {
                "role": "system",
                "content": f"Here is the context from uploaded file:\n{file_content}",
            }
        )
    messages.append({"role": "user", "content": prompt})
    return messages


def _first_choice(payload: Dict[str, Any]) -> Dict[str, Any]:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


class FastGPTClient(AgentClient):
    """Client for a FastGPT app's chat completions endpoint."""

    agent_type = AgentType.FASTGPT

    def __init__(
        self,
        url: str,
        api_token: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(normalize_fastgpt_url(url), api_token, timeout, transport)

    async def stream(self, prompt: str, file_content: Optional[str] = None) -> AsyncIterator[str]:
        payload = {"stream": True, "detail": False, "messages": build_messages(prompt, file_content)}
        logger.debug(f"POST {self.url} (streaming)")

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=payload,
                    headers=self._get_headers({"Accept": "text/event-stream"}),
                ) as response:
                    await self._check_response(response)
                    async for chunk in iter_sse_payloads(response, self.agent_type):
                        delta = _first_choice(chunk).get("delta") or {}
                        content = delta.get("content") if isinstance(delta, dict) else None
                        if content and isinstance(content, str):
                            yield content
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

    async def complete(self, prompt: str, file_content: Optional[str] = None) -> str:
        payload = {"stream": False, "detail": False, "messages": build_messages(prompt, file_content)}
        logger.debug(f"POST {self.url} (blocking)")

        try:
            async with self._client() as client:
                response = await client.post(self.url, json=payload, headers=self._get_headers())
        except httpx.HTTPError as e:
            raise self._transport_error(e) from e

        await self._check_response(response)
        try:
            message = _first_choice(response.json()).get("message") or {}
        except ValueError as e:
            raise GenerationError("Invalid response from FastGPT", agent_type=self.agent_type) from e

        content = message.get("content") if isinstance(message, dict) else None
        if not content:
            raise GenerationError("Invalid response from FastGPT", agent_type=self.agent_type)
        return content

    async def test_connection(self) -> bool:
        timeout = get_settings().generation.fastgpt_test_timeout
        payload = {
            "stream": False,
            "detail": False,
            "messages": [{"role": "user", "content": "test"}],
        }
        try:
            async with self._client(timeout) as client:
                response = await client.post(self.url, json=payload, headers=self._get_headers())
            if response.status_code != 200:
                return False
            choices = response.json().get("choices")
            return isinstance(choices, list) and len(choices) > 0
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"FastGPT connection test failed: {e}")
            return False
