"""Vector store interface and record identity helpers."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple
import hashlib
import uuid

from ..models import PastQuery, SaveResult, StoreStats, StoredChunk, StoredDocument

# Namespace for deterministic record ids
RECORD_NAMESPACE = uuid.UUID("6f1d8a52-3c1e-5b7a-9e44-2b8c0d7f1a90")


def content_hash(text: str) -> str:
    """SHA-256 hex digest of document content."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def url_hash(url: str) -> str:
    """SHA-256 hex digest of a normalized URL."""
    return hashlib.sha256(url.strip().encode("utf-8")).hexdigest()


def document_id(url: str, digest: str) -> str:
    """Deterministic document id: same URL and content give the same id."""
    return str(uuid.uuid5(RECORD_NAMESPACE, f"{url.strip()}#{digest}"))


def chunk_id(doc_id: str, index: int) -> str:
    """Deterministic chunk id within a document."""
    return str(uuid.uuid5(RECORD_NAMESPACE, f"{doc_id}:{index}"))


class VectorStore(ABC):
    """
    Storage for documents, chunk vectors and past queries.

    A document's chunk set becomes visible to readers all at once; a new
    version of a URL supersedes the previous active one.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend and ensure collections exist."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release backend resources."""
        pass

    @abstractmethod
    async def save_document(
        self,
        document: StoredDocument,
        chunks: List[StoredChunk],
    ) -> SaveResult:
        """
        Write a document and its chunks atomically.

        Saving a document whose id is already the active version for its
        URL is a no-op (``created=False``).
        """
        pass

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        """Get a document by id, whatever its status."""
        pass

    @abstractmethod
    async def get_active_document(self, url: str) -> Optional[StoredDocument]:
        """Active document for a URL, if any."""
        pass

    @abstractmethod
    async def get_chunks(self, document_id: str) -> List[StoredChunk]:
        """Chunks of a document ordered by chunk index."""
        pass

    @abstractmethod
    async def candidate_chunks(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[Tuple[StoredChunk, StoredDocument]]:
        """
        Chunks of active documents to rank against a query vector.

        Backends may pre-filter using ``limit`` and ``min_score`` but must
        return every chunk that could rank within the top ``limit``. Final
        scoring and ordering are done by the query engine.
        """
        pass

    @abstractmethod
    async def add_past_query(self, query: PastQuery) -> None:
        """Record a historical query."""
        pass

    @abstractmethod
    async def candidate_past_queries(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[PastQuery]:
        """Historical queries to rank against a query vector."""
        pass

    @abstractmethod
    async def stats(self) -> StoreStats:
        """Document, chunk and past query counts."""
        pass

    @abstractmethod
    async def health(self) -> Dict[str, Any]:
        """Backend status for the health endpoint."""
        pass
