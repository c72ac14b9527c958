"""Embedding stage."""
import logging
from typing import Any, Dict, List, Optional, Sequence
import httpx

from ..cancellation import CancellationToken
from ..embeddings import EmbeddingClient
from ..errors import StageExecutionError, ValidationError
from ..models import RunContext, StageResult
from .base import Stage

logger = logging.getLogger(__name__)


def check_embeddings(
    chunks: Sequence[Any],
    embeddings: Sequence[Sequence[float]],
    dimensions: Optional[int] = None,
) -> None:
    """
    Check that embeddings line up one-to-one with chunks.

    Raises:
        ValidationError: count mismatch, empty vector or dimension mismatch
    """
    if len(chunks) != len(embeddings):
        raise ValidationError(
            "Chunk/embedding count mismatch",
            [f"{len(chunks)} chunks but {len(embeddings)} embeddings"],
        )

    expected = dimensions or (len(embeddings[0]) if embeddings else 0)
    errors = []
    for idx, vector in enumerate(embeddings):
        if not vector:
            errors.append(f"Embedding {idx} is empty")
        elif len(vector) != expected:
            errors.append(f"Embedding {idx} has {len(vector)} dimensions, expected {expected}")

    if errors:
        raise ValidationError("Invalid embeddings", errors)


class EmbeddingStage(Stage):
    """Embeds ``chunks`` in batches and writes ``embeddings``."""

    name = "embedding"
    category = "processing"

    def __init__(
        self,
        embedder: EmbeddingClient,
        batch_size: int = 64,
        dimensions: Optional[int] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.embedder = embedder
        self.batch_size = batch_size
        self.dimensions = dimensions

    async def run(self, context: RunContext, cancel_token: CancellationToken) -> StageResult:
        chunks = self.require(context, "chunks", list)
        if not chunks:
            raise ValidationError("No chunks to embed")

        batch_size = max(1, int(self.config.get("batch_size", self.batch_size)))
        embeddings: List[List[float]] = []

        for start in range(0, len(chunks), batch_size):
            cancel_token.raise_if_cancelled()
            batch = chunks[start:start + batch_size]

            try:
                vectors = await self.embedder.embed_batch(batch)
            except (httpx.HTTPError, RuntimeError) as e:
                raise StageExecutionError(self.name, "Embedding request failed", [str(e)]) from e

            if len(vectors) != len(batch):
                raise ValidationError(
                    "Chunk/embedding count mismatch",
                    [f"Batch at {start}: sent {len(batch)} chunks, got {len(vectors)} embeddings"],
                )
            embeddings.extend(vectors)

        check_embeddings(chunks, embeddings, self.dimensions)

        dimensions = len(embeddings[0])
        logger.info(f"[{self.name}] Generated {len(embeddings)} embeddings ({dimensions} dimensions)")

        return StageResult.ok(
            f"Generated {len(embeddings)} embeddings",
            {"embeddings": embeddings, "embedding_dimensions": dimensions},
        )
