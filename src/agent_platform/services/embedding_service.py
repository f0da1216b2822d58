"""Embedding generation through an external OpenAI-compatible endpoint."""

import json
from typing import List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from agent_platform.config import get_settings
from agent_platform.exceptions import EmbeddingError, ValidationError
from agent_platform.repositories.system_config_repository import SystemConfigRepository
from agent_platform.utils.logging import get_logger

logger = get_logger("embedding_service")
settings = get_settings()

EMBEDDING_CONFIG_KEY = "embedding_model"


class EmbeddingConfig(BaseModel):
    """Credentials and model for the embedding endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: str = Field(..., alias="apiKey")
    base_url: str = Field(..., alias="baseUrl", description="Full URL of the embeddings endpoint")
    model: str


class EmbeddingClient:
    """
    Convert batches of strings to vectors with one HTTP call per batch.

    All-or-nothing: any transport error, non-2xx status, malformed body or
    count mismatch raises EmbeddingError and no vectors are returned. There is
    no retry at this layer.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeout = timeout if timeout is not None else settings.embedding.timeout
        self._transport = transport

    async def embed(self, texts: List[str], config: EmbeddingConfig) -> List[List[float]]:
        """
        Embed `texts` in input order.

        Args:
            texts: Strings to embed
            config: Endpoint URL, API key and model

        Returns:
            One vector per input text, same order

        Raises:
            EmbeddingError: If the request fails or the response is unusable
        """
        if not texts:
            return []

        logger.info(f"Generating embeddings: model={config.model}, count={len(texts)}")

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    config.base_url,
                    json={"model": config.model, "input": texts},
                    headers={
                        "Authorization": f"Bearer {config.api_key}",
                        "Content-Type": "application/json",
                    },
                )
        except httpx.TimeoutException as e:
            raise EmbeddingError(
                "Embedding request timed out", model=config.model, details={"error": str(e)}
            ) from e
        except httpx.RequestError as e:
            raise EmbeddingError(
                f"Embedding endpoint unreachable: {e}", model=config.model
            ) from e

        if response.status_code < 200 or response.status_code >= 300:
            raise EmbeddingError(
                f"Embedding API error: {response.status_code}",
                model=config.model,
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        try:
            data = response.json()["data"]
            vectors = [[float(x) for x in item["embedding"]] for item in data]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingError(
                "Invalid response from embedding API", model=config.model
            ) from e

        if len(vectors) != len(texts):
            raise EmbeddingError(
                "Embedding response size mismatch",
                model=config.model,
                details={"expected": len(texts), "got": len(vectors)},
            )

        logger.info(
            f"Embeddings generated: count={len(vectors)}, "
            f"dimension={len(vectors[0]) if vectors else 0}"
        )
        return vectors

    async def embed_one(self, text: str, config: EmbeddingConfig) -> List[float]:
        """Embed a single string."""
        return (await self.embed([text], config))[0]


async def resolve_embedding_config(session: AsyncSession) -> EmbeddingConfig:
    """
    Load the embedding endpoint config.

    The `embedding_model` system config row wins; environment settings are the
    fallback. Raises ValidationError if neither is usable.
    """
    raw = await SystemConfigRepository(session).get_value(EMBEDDING_CONFIG_KEY)
    if raw:
        try:
            return EmbeddingConfig.model_validate(json.loads(raw))
        except ValueError as e:
            raise ValidationError(
                "Stored embedding model config is invalid",
                details={"key": EMBEDDING_CONFIG_KEY, "error": str(e)},
            ) from e

    if settings.embedding.is_configured:
        return EmbeddingConfig(
            api_key=settings.embedding.api_key,
            base_url=settings.embedding.base_url,
            model=settings.embedding.model,
        )

    raise ValidationError("Embedding model is not configured")


_embedding_client: Optional[EmbeddingClient] = None


def get_embedding_client() -> EmbeddingClient:
    """Get the shared embedding client."""
    global _embedding_client
    if _embedding_client is None:
        _embedding_client = EmbeddingClient()
    return _embedding_client
