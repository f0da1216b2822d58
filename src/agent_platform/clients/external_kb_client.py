"""Retrieval from knowledge bases hosted by FastGPT or Dify."""

from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field

from agent_platform.database.models import KnowledgeBaseType
from agent_platform.exceptions import ExternalServiceError, ValidationError
from agent_platform.utils.logging import get_logger

logger = get_logger("external_kb_client")

DEFAULT_TIMEOUT = 30.0


class RetrievedPassage(BaseModel):
    """A passage returned by any knowledge base, local or external."""

    content: str
    score: Optional[float] = None
    source: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ExternalKnowledgeClient:
    """
    Search external knowledge bases.

    The knowledge base `config` carries `baseUrl` and `apiKey` plus
    backend-specific fields (`datasetId` for FastGPT, `knowledgeId` for Dify).
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    async def search(self, kb_type: str, config: Dict[str, Any], query: str) -> List[RetrievedPassage]:
        if kb_type == KnowledgeBaseType.FASTGPT:
            return await self.search_fastgpt(config, query)
        if kb_type == KnowledgeBaseType.DIFY:
            return await self.search_dify(config, query)
        raise ValidationError(f"Unsupported knowledge base type: {kb_type}")

    async def _post(self, service: str, url: str, api_key: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=payload,
                    headers={
                        "Authorization": f"Bearer {api_key}",
                        "Content-Type": "application/json",
                    },
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"{service} search error: {e.response.status_code}")
            raise ExternalServiceError(
                service,
                f"{service} search failed: HTTP {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{service} search error: {e}")
            raise ExternalServiceError(service, f"{service} search failed: {e}") from e

    async def test_connection(self, kb_type: str, config: Dict[str, Any]) -> bool:
        """Return True if the backend answers a search made with the stored credentials."""
        if kb_type not in (KnowledgeBaseType.FASTGPT, KnowledgeBaseType.DIFY):
            raise ValidationError(f"Unsupported knowledge base type: {kb_type}")
        try:
            if kb_type == KnowledgeBaseType.FASTGPT:
                data = await self._fastgpt_search_test(config, "test")
                return data.get("code") == 200
            data = await self._dify_retrieval(config, "test")
            return isinstance(data.get("records"), list)
        except ExternalServiceError as e:
            logger.warning(f"{kb_type} knowledge base connection test failed: {e.message}")
            return False

    async def _fastgpt_search_test(self, config: Dict[str, Any], query: str) -> Dict[str, Any]:
        base_url = str(config.get("baseUrl", "")).rstrip("/")
        return await self._post(
            "fastgpt",
            f"{base_url}/api/core/dataset/searchTest",
            config.get("apiKey", ""),
            {
                "datasetId": config.get("datasetId"),
                "text": query,
                "limit": config.get("limit") or 5000,
                "similarity": config.get("similarity") or 0.4,
                "searchMode": config.get("searchMode") or "embedding",
                "usingReRank": config.get("usingReRank") or False,
            },
        )

    async def search_fastgpt(self, config: Dict[str, Any], query: str) -> List[RetrievedPassage]:
        data = await self._fastgpt_search_test(config, query)

        if data.get("code") != 200:
            return []

        passages = []
        for item in data.get("data") or []:
            content = item.get("q", "")
            if item.get("a"):
                content = f"{content}\n{item['a']}"
            passages.append(
                RetrievedPassage(
                    content=content,
                    score=item.get("score"),
                    source=item.get("sourceName"),
                    metadata={
                        "datasetId": item.get("datasetId"),
                        "collectionId": item.get("collectionId"),
                        "sourceId": item.get("sourceId"),
                    },
                )
            )
        return passages

    async def _dify_retrieval(self, config: Dict[str, Any], query: str) -> Dict[str, Any]:
        base_url = str(config.get("baseUrl", "")).rstrip("/")
        return await self._post(
            "dify",
            f"{base_url}/retrieval",
            config.get("apiKey", ""),
            {
                "retrieval_setting": {
                    "top_k": config.get("topK") or 5,
                    "score_threshold": config.get("scoreThreshold") or 0.5,
                },
                "query": query,
                "knowledge_id": config.get("knowledgeId"),
            },
        )

    async def search_dify(self, config: Dict[str, Any], query: str) -> List[RetrievedPassage]:
        data = await self._dify_retrieval(config, query)

        return [
            RetrievedPassage(
                content=item.get("content", ""),
                score=item.get("score"),
                source=item.get("title"),
                metadata=item.get("metadata") or {},
            )
            for item in data.get("records") or []
        ]
