"""Cosine-similarity ranking over stored chunk and query vectors."""
import logging
import math
from datetime import datetime
from typing import Iterable, List, Sequence, Tuple, TypeVar

from .errors import ValidationError
from .models import SearchResult, SimilarQueryResult, StoreStats
from .vector_db import VectorStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors (``1 - cosine distance``).

    A zero vector has similarity 0.0 with everything.

    Raises:
        ValidationError: vectors differ in length
    """
    if len(a) != len(b):
        raise ValidationError(f"Vector dimension mismatch: {len(a)} != {len(b)}")

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def rank(
    scored: Iterable[Tuple[float, datetime, T]],
    top_k: int,
    min_score: float,
) -> List[Tuple[float, T]]:
    """
    Filter, order and truncate scored items.

    Keeps items with ``score >= min_score``, orders by score descending
    with the most recently created first on equal scores, and returns at
    most ``top_k`` items.
    """
    if top_k <= 0:
        return []

    kept = [item for item in scored if item[0] >= min_score]
    kept.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [(score, value) for score, _, value in kept[:top_k]]


class VectorQueryEngine:
    """Ranks stored chunks and past queries against a query vector."""

    def __init__(self, store: VectorStore, candidate_factor: int = 4):
        """
        Initialize query engine.

        Args:
            store: Vector store to read from
            candidate_factor: Candidates requested from the store per result
        """
        self.store = store
        self.candidate_factor = candidate_factor

    def _candidate_limit(self, top_k: int) -> int:
        return max(top_k * self.candidate_factor, top_k + 10)

    async def search(
        self,
        query_vector: List[float],
        top_k: int = 5,
        min_score: float = 0.5,
    ) -> List[SearchResult]:
        """
        Chunks of active documents most similar to a query vector.

        Args:
            query_vector: Query embedding
            top_k: Maximum number of results
            min_score: Minimum cosine similarity

        Returns:
            Results ordered by score descending (possibly empty)
        """
        if not query_vector:
            raise ValidationError("Query vector is empty")

        candidates = await self.store.candidate_chunks(
            query_vector, limit=self._candidate_limit(top_k), min_score=min_score
        )

        ranked = rank(
            (
                (cosine_similarity(chunk.embedding, query_vector), chunk.created_at, (chunk, document))
                for chunk, document in candidates
            ),
            top_k,
            min_score,
        )

        results = [
            SearchResult(
                chunk_id=chunk.id,
                document_id=document.id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                score=score,
                source_url=document.url,
                document_title=document.title,
                content_hash=document.content_hash,
                token_count=chunk.token_count,
                created_at=chunk.created_at,
            )
            for score, (chunk, document) in ranked
        ]

        logger.debug(
            f"Search ranked {len(candidates)} candidates, returning {len(results)} "
            f"(top_k={top_k}, min_score={min_score})"
        )
        return results

    async def find_similar_past_queries(
        self,
        query_vector: List[float],
        top_k: int = 3,
        min_score: float = 0.8,
    ) -> List[SimilarQueryResult]:
        """Historical queries most similar to a query vector, ranked like ``search``."""
        if not query_vector:
            raise ValidationError("Query vector is empty")

        candidates = await self.store.candidate_past_queries(
            query_vector, limit=self._candidate_limit(top_k), min_score=min_score
        )

        ranked = rank(
            ((cosine_similarity(q.embedding, query_vector), q.created_at, q) for q in candidates),
            top_k,
            min_score,
        )

        return [
            SimilarQueryResult(
                query_id=q.id,
                query=q.query,
                answer=q.answer,
                score=score,
                created_at=q.created_at,
            )
            for score, q in ranked
        ]

    async def stats(self) -> StoreStats:
        return await self.store.stats()
