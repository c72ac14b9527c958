"""Vector store persistence stage."""
import logging
from typing import Any, Dict, Optional

from ..cancellation import CancellationToken
from ..chunking import estimate_tokens
from ..errors import RAGPipelineError, StageExecutionError
from ..models import RunContext, StageResult, StoredChunk, StoredDocument
from ..vector_db import VectorStore, chunk_id, content_hash, document_id, url_hash
from .base import Stage
from .embedding import check_embeddings

logger = logging.getLogger(__name__)


class StorageStage(Stage):
    """
    Persists the document, its ``chunks`` and ``embeddings``.

    Writes are keyed by URL and content hash, so re-running a run for the
    same content stores nothing new.
    """

    name = "storage"
    category = "storage"

    def __init__(self, store: VectorStore, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.store = store

    async def run(self, context: RunContext, cancel_token: CancellationToken) -> StageResult:
        url = self.require(context, "url", str)
        chunks = self.require(context, "chunks", list)
        embeddings = self.require(context, "embeddings", list)

        # Nothing is written unless every chunk has its embedding
        check_embeddings(chunks, embeddings)
        cancel_token.raise_if_cancelled()

        raw_content = context.state.get("raw_content") or "\n".join(chunks)
        digest = content_hash(raw_content)
        doc_id = document_id(url, digest)

        document = StoredDocument(
            id=doc_id,
            url=url,
            url_hash=url_hash(url),
            content_hash=digest,
            title=context.state.get("title"),
            chunk_count=len(chunks),
            metadata={
                "pipeline": context.pipeline,
                "run_id": context.run_id,
                "content_length": len(raw_content),
            },
        )
        stored_chunks = [
            StoredChunk(
                id=chunk_id(doc_id, idx),
                document_id=doc_id,
                chunk_index=idx,
                content=text,
                embedding=list(vector),
                token_count=estimate_tokens(text),
            )
            for idx, (text, vector) in enumerate(zip(chunks, embeddings))
        ]

        try:
            saved = await self.store.save_document(document, stored_chunks)
        except RAGPipelineError:
            raise
        except Exception as e:
            raise StageExecutionError(self.name, "Vector store write failed", [str(e)]) from e

        if saved.created:
            message = f"Stored {saved.chunks_stored} chunks for document {saved.document_id}"
        else:
            message = f"Document {saved.document_id} already stored with identical content"
        logger.info(f"[{self.name}] {message}")

        return StageResult.ok(
            message,
            {
                "document_id": saved.document_id,
                "chunks_stored": saved.chunks_stored,
                "documents_stored": 1 if saved.created else 0,
            },
        )
