"""Hybrid (vector + keyword) and semantic search over a knowledge base collection."""

from typing import List, Optional

from agent_platform.exceptions import ValidationError
from agent_platform.models.chunk import Neighbor, SearchResult
from agent_platform.services.vector_store_service import VectorStoreService, get_vector_store
from agent_platform.utils.logging import get_logger

logger = get_logger("search_service")

# Neighbours fetched per requested result in hybrid mode
OVERFETCH_FACTOR = 2


def vector_score(distance: float) -> float:
    """
    Similarity from cosine distance, clamped to [0, 1].

    Collections use cosine distance, so `1 - distance` is the cosine
    similarity; opposite-direction vectors would go below zero.
    """
    return min(1.0, max(0.0, 1.0 - distance))


def keyword_score(text: str, keywords: List[str]) -> float:
    """Fraction of keywords present in `text` (case-insensitive, presence only)."""
    if not keywords:
        return 0.0
    lowered = text.lower()
    matched = sum(1 for keyword in keywords if keyword.lower() in lowered)
    return matched / len(keywords)


def hybrid_score(v_score: float, k_score: float, vector_weight: float) -> float:
    return vector_weight * v_score + (1 - vector_weight) * k_score


class SearchService:
    """Rank vector store neighbours, optionally blending in keyword overlap."""

    def __init__(self, vector_store: Optional[VectorStoreService] = None) -> None:
        self.vector_store = vector_store or get_vector_store()

    async def hybrid_search(
        self,
        collection_name: str,
        query_vector: List[float],
        keywords: List[str],
        k: int,
        vector_weight: float,
    ) -> List[SearchResult]:
        """
        Over-fetch `2k` neighbours, rescore them and return the top `k`.

        Args:
            collection_name: Knowledge base collection
            query_vector: Embedded query
            keywords: Lexical terms to match (may be empty)
            k: Maximum results
            vector_weight: Weight of the vector score, in [0, 1]

        Returns:
            Results sorted by hybrid score, highest first

        Raises:
            ValidationError: If `vector_weight` is outside [0, 1]
        """
        if not 0.0 <= vector_weight <= 1.0:
            raise ValidationError(
                "vector_weight must be within [0, 1]", details={"vector_weight": vector_weight}
            )
        if k <= 0:
            return []

        neighbors = await self.vector_store.query(collection_name, query_vector, k * OVERFETCH_FACTOR)

        results = []
        for neighbor in neighbors:
            v_score = vector_score(neighbor.distance)
            k_score = keyword_score(neighbor.text, keywords)
            results.append(
                SearchResult(
                    id=neighbor.id,
                    text=neighbor.text,
                    metadata=neighbor.metadata,
                    vector_score=v_score,
                    keyword_score=k_score,
                    hybrid_score=hybrid_score(v_score, k_score, vector_weight),
                )
            )

        results.sort(key=lambda r: r.hybrid_score, reverse=True)
        logger.debug(
            f"Hybrid search on {collection_name}: candidates={len(neighbors)}, "
            f"keywords={len(keywords)}, returned={min(k, len(results))}"
        )
        return results[:k]

    async def semantic_search(
        self,
        collection_name: str,
        query_vector: List[float],
        k: int,
        similarity: float = 0.0,
    ) -> List[SearchResult]:
        """Return up to `k` neighbours whose vector score is at least `similarity`."""
        neighbors: List[Neighbor] = await self.vector_store.query(collection_name, query_vector, k)

        results = []
        for neighbor in neighbors:
            v_score = vector_score(neighbor.distance)
            if v_score < similarity:
                continue
            results.append(
                SearchResult(
                    id=neighbor.id,
                    text=neighbor.text,
                    metadata=neighbor.metadata,
                    vector_score=v_score,
                    keyword_score=0.0,
                    hybrid_score=v_score,
                )
            )

        results.sort(key=lambda r: r.vector_score, reverse=True)
        return results[:k]
