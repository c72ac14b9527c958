"""In-process vector store."""
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..models import (
    DocumentStatus,
    PastQuery,
    SaveResult,
    StoreStats,
    StoredChunk,
    StoredDocument,
    utcnow,
)
from .interface import VectorStore

logger = logging.getLogger(__name__)


class InMemoryVectorStore(VectorStore):
    """
    Dict-backed store for tests and local runs.

    All writes happen under one lock, so a document and its chunk set are
    published together.
    """

    def __init__(self):
        self._documents: Dict[str, StoredDocument] = {}
        self._chunks: Dict[str, List[StoredChunk]] = {}
        self._active_by_url: Dict[str, str] = {}
        self._past_queries: List[PastQuery] = []
        self._lock = threading.Lock()

    async def connect(self) -> None:
        logger.info("Using in-memory vector store")

    async def disconnect(self) -> None:
        pass

    async def save_document(
        self,
        document: StoredDocument,
        chunks: List[StoredChunk],
    ) -> SaveResult:
        with self._lock:
            current_id = self._active_by_url.get(document.url)

            if current_id == document.id:
                current = self._documents[current_id]
                logger.debug(f"Document {document.id} already active for {document.url}")
                return SaveResult(
                    document_id=current.id,
                    chunks_stored=current.chunk_count,
                    created=False,
                )

            now = utcnow()
            self._documents[document.id] = document.model_copy(update={
                "status": DocumentStatus.ACTIVE,
                "chunk_count": len(chunks),
                "updated_at": now,
            })
            self._chunks[document.id] = sorted(chunks, key=lambda c: c.chunk_index)
            self._active_by_url[document.url] = document.id

            if current_id is not None:
                self._documents[current_id] = self._documents[current_id].model_copy(update={
                    "status": DocumentStatus.SUPERSEDED,
                    "updated_at": now,
                })
                logger.info(f"Document {current_id} superseded by {document.id}")

        return SaveResult(
            document_id=document.id,
            chunks_stored=len(chunks),
            created=True,
            superseded=current_id,
        )

    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        return self._documents.get(document_id)

    async def get_active_document(self, url: str) -> Optional[StoredDocument]:
        doc_id = self._active_by_url.get(url)
        return self._documents.get(doc_id) if doc_id else None

    async def get_chunks(self, document_id: str) -> List[StoredChunk]:
        return list(self._chunks.get(document_id, []))

    async def candidate_chunks(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[Tuple[StoredChunk, StoredDocument]]:
        with self._lock:
            documents = [self._documents[doc_id] for doc_id in self._active_by_url.values()]
            return [
                (chunk, document)
                for document in documents
                for chunk in self._chunks.get(document.id, [])
            ]

    async def add_past_query(self, query: PastQuery) -> None:
        with self._lock:
            self._past_queries.append(query)

    async def candidate_past_queries(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[PastQuery]:
        with self._lock:
            return list(self._past_queries)

    async def stats(self) -> StoreStats:
        with self._lock:
            active_ids = set(self._active_by_url.values())
            return StoreStats(
                total_documents=len(self._documents),
                active_documents=len(active_ids),
                total_chunks=sum(len(c) for c in self._chunks.values()),
                active_chunks=sum(len(self._chunks.get(i, [])) for i in active_ids),
                past_queries=len(self._past_queries),
            )

    async def health(self) -> Dict[str, Any]:
        return {"status": "healthy", "backend": "memory", "documents": len(self._documents)}
