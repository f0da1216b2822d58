"""Qdrant-backed vector store with one collection per knowledge base."""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointIdsList,
    PointStruct,
    VectorParams,
)

from agent_platform.config import get_settings
from agent_platform.exceptions import VectorStoreError
from agent_platform.models.chunk import Neighbor, StoredChunk
from agent_platform.utils.logging import get_logger

logger = get_logger("vector_store")
settings = get_settings()

# Deterministic namespace for mapping chunk ids to Qdrant point ids
_POINT_ID_NAMESPACE = uuid.UUID("3f0d6c52-8a7e-4f0b-9b1c-5d2e7a4c9e61")


def make_point_id(chunk_id: str) -> str:
    """Stable Qdrant point id for a chunk id; re-inserting a chunk reuses it."""
    return str(uuid.uuid5(_POINT_ID_NAMESPACE, chunk_id))


def _build_filter(where: Optional[Dict[str, Any]]) -> Optional[Filter]:
    if not where:
        return None
    return Filter(
        must=[
            FieldCondition(key=f"metadata.{key}", match=MatchValue(value=value))
            for key, value in where.items()
        ]
    )


class VectorStoreService:
    """
    Store chunk vectors in Qdrant.

    Strategy:
    - Collection per knowledge base: `kb_{kb_id}` (prefix from `QDRANT_COLLECTION_PREFIX`)
    - Cosine distance; collections are created on first insert with the
      dimension of the vectors being inserted
    - Point payload carries the original chunk id, its text and its metadata
    - The store never computes embeddings; vectors are always supplied
    """

    def __init__(self, client: Optional[QdrantClient] = None) -> None:
        self._client = client

    def _get_client(self) -> QdrantClient:
        if self._client is not None:
            return self._client

        self._client = QdrantClient(
            url=settings.qdrant.url,
            api_key=settings.qdrant.api_key,
            timeout=settings.qdrant.timeout,
        )
        return self._client

    def collection_name(self, kb_id: str) -> str:
        """Canonical collection name for a knowledge base."""
        return f"{settings.qdrant.collection_prefix}{kb_id}"

    async def _run(self, operation: str, collection_name: str, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except VectorStoreError:
            raise
        except Exception as e:
            logger.error(f"Vector store {operation} failed on {collection_name}: {e}")
            raise VectorStoreError(
                f"Vector store {operation} failed",
                collection=collection_name,
                details={"error": str(e)},
            ) from e

    async def ping(self) -> bool:
        """True if the Qdrant server answers a collection listing."""
        try:
            await self._run("ping", "*", self._get_client().get_collections)
        except VectorStoreError:
            return False
        return True

    async def collection_exists(self, collection_name: str) -> bool:
        return await self._run(
            "lookup", collection_name, self._get_client().collection_exists, collection_name
        )

    async def ensure_collection(self, kb_id: str, vector_size: int) -> str:
        """
        Return the collection name for `kb_id`, creating the collection if absent.

        An existing collection is left as it is, whatever its dimension.
        """
        if vector_size <= 0:
            raise VectorStoreError(
                "vector_size must be positive",
                collection=self.collection_name(kb_id),
                details={"vector_size": vector_size},
            )
        name = self.collection_name(kb_id)
        await self._ensure(name, vector_size)
        return name

    async def _ensure(self, collection_name: str, vector_size: int) -> None:
        def _create_if_absent() -> bool:
            client = self._get_client()
            if client.collection_exists(collection_name):
                return False
            client.create_collection(
                collection_name=collection_name,
                vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
            )
            return True

        created = await self._run("create", collection_name, _create_if_absent)
        if created:
            logger.info(f"Collection created: {collection_name} (vector_size={vector_size})")

    async def insert(
        self,
        collection_name: str,
        ids: List[str],
        vectors: List[List[float]],
        texts: List[str],
        metadatas: List[Dict[str, Any]],
    ) -> None:
        """Insert chunks. An existing id is overwritten."""
        if not (len(ids) == len(vectors) == len(texts) == len(metadatas)):
            raise VectorStoreError(
                "ids, vectors, texts and metadatas must have equal length",
                collection=collection_name,
                details={
                    "ids": len(ids),
                    "vectors": len(vectors),
                    "texts": len(texts),
                    "metadatas": len(metadatas),
                },
            )
        if not ids:
            return

        await self._ensure(collection_name, len(vectors[0]))

        points = [
            PointStruct(
                id=make_point_id(chunk_id),
                vector=vector,
                payload={"chunk_id": chunk_id, "text": text, "metadata": metadata},
            )
            for chunk_id, vector, text, metadata in zip(ids, vectors, texts, metadatas)
        ]

        def _upsert() -> None:
            self._get_client().upsert(collection_name=collection_name, points=points, wait=True)

        await self._run("insert", collection_name, _upsert)
        logger.info(f"Inserted {len(points)} chunks into {collection_name}")

    async def query(
        self,
        collection_name: str,
        query_vector: List[float],
        k: int,
        where: Optional[Dict[str, Any]] = None,
    ) -> List[Neighbor]:
        """
        Return at most `k` nearest neighbours, closest first.

        A collection that does not exist yet holds no chunks and yields an
        empty result.
        """
        if k <= 0:
            return []

        def _query() -> List[Neighbor]:
            client = self._get_client()
            if not client.collection_exists(collection_name):
                return []
            response = client.query_points(
                collection_name=collection_name,
                query=query_vector,
                limit=k,
                query_filter=_build_filter(where),
                with_payload=True,
            )
            neighbors = []
            for point in response.points:
                payload = point.payload or {}
                neighbors.append(
                    Neighbor(
                        id=payload.get("chunk_id", str(point.id)),
                        text=payload.get("text", ""),
                        metadata=payload.get("metadata") or {},
                        distance=1.0 - float(point.score),
                    )
                )
            return neighbors

        neighbors = await self._run("query", collection_name, _query)
        neighbors.sort(key=lambda n: n.distance)
        return neighbors

    async def get_by_ids(self, collection_name: str, ids: List[str]) -> List[StoredChunk]:
        """Fetch chunks by id, in the order requested. Unknown ids are omitted."""
        if not ids:
            return []

        def _retrieve() -> List[StoredChunk]:
            client = self._get_client()
            if not client.collection_exists(collection_name):
                return []
            records = client.retrieve(
                collection_name=collection_name,
                ids=[make_point_id(chunk_id) for chunk_id in ids],
                with_payload=True,
                with_vectors=True,
            )
            by_id: Dict[str, StoredChunk] = {}
            for record in records:
                payload = record.payload or {}
                chunk_id = payload.get("chunk_id", str(record.id))
                vector = record.vector if isinstance(record.vector, list) else None
                by_id[chunk_id] = StoredChunk(
                    id=chunk_id,
                    text=payload.get("text", ""),
                    metadata=payload.get("metadata") or {},
                    vector=vector,
                )
            return [by_id[chunk_id] for chunk_id in ids if chunk_id in by_id]

        return await self._run("get", collection_name, _retrieve)

    async def delete(self, collection_name: str, ids: List[str]) -> None:
        """Delete chunks by id."""
        if not ids:
            return

        def _delete() -> None:
            client = self._get_client()
            if not client.collection_exists(collection_name):
                return
            client.delete(
                collection_name=collection_name,
                points_selector=PointIdsList(points=[make_point_id(i) for i in ids]),
                wait=True,
            )

        await self._run("delete", collection_name, _delete)
        logger.info(f"Deleted {len(ids)} chunks from {collection_name}")

    async def update(
        self,
        collection_name: str,
        chunk_id: str,
        text: str,
        vector: List[float],
        metadata: Dict[str, Any],
    ) -> None:
        """
        Replace one chunk's text, vector and metadata.

        Implemented as delete then insert under the same id. Point ids derive
        from the chunk id, so retrying after a failure between the two steps
        converges to the same state.
        """
        await self.delete(collection_name, [chunk_id])
        await self.insert(collection_name, [chunk_id], [vector], [text], [metadata])

    async def delete_collection(self, kb_id: str) -> None:
        """Drop the collection for a knowledge base if it exists."""
        name = self.collection_name(kb_id)

        def _drop() -> bool:
            client = self._get_client()
            if not client.collection_exists(name):
                return False
            client.delete_collection(collection_name=name)
            return True

        if await self._run("delete_collection", name, _drop):
            logger.info(f"Collection deleted: {name}")


_vector_store: Optional[VectorStoreService] = None


def get_vector_store() -> VectorStoreService:
    """Get the shared vector store service."""
    global _vector_store
    if _vector_store is None:
        _vector_store = VectorStoreService()
    return _vector_store
