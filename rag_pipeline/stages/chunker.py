"""Chunking stage."""
import logging
from typing import Any, Dict, Optional

from ..cancellation import CancellationToken
from ..chunking import SentenceChunker
from ..models import RunContext, StageResult
from .base import Stage

logger = logging.getLogger(__name__)


class ChunkerStage(Stage):
    """
    Splits ``raw_content`` into ``chunks``.

    Chunk size and overlap come from the run (``chunk_size`` /
    ``chunk_overlap`` in the context), then the pipeline step config, then
    the configured defaults.
    """

    name = "chunker"
    category = "processing"

    def __init__(
        self,
        chunker: SentenceChunker,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self.chunker = chunker
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    async def run(self, context: RunContext, cancel_token: CancellationToken) -> StageResult:
        content = self.require(context, "raw_content", str)
        chunk_size = int(self.option(context, "chunk_size", self.chunk_size))
        chunk_overlap = int(self.option(context, "chunk_overlap", self.chunk_overlap))

        self.chunker.validate(chunk_size, chunk_overlap)
        cancel_token.raise_if_cancelled()

        chunks = self.chunker.chunk_texts(content, chunk_size, chunk_overlap)
        if not chunks:
            return StageResult.failure("No chunks created from content")

        logger.info(
            f"[{self.name}] Created {len(chunks)} chunks "
            f"(size={chunk_size}, overlap={chunk_overlap}) from {len(content)} characters"
        )

        return StageResult.ok(
            f"Created {len(chunks)} chunks",
            {
                "chunks": chunks,
                "chunk_size": chunk_size,
                "chunk_overlap": chunk_overlap,
                "chunks_processed": len(chunks),
            },
        )
