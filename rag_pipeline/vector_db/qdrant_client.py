"""Qdrant vector store implementation."""
import logging
from typing import Any, Dict, List, Optional, Tuple
from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)
from qdrant_client.http.exceptions import UnexpectedResponse

from ..models import (
    DocumentStatus,
    PastQuery,
    SaveResult,
    StoreStats,
    StoredChunk,
    StoredDocument,
    utcnow,
)
from .interface import VectorStore, url_hash

logger = logging.getLogger(__name__)

# Chunks are written in this state and only flipped to active once complete
PENDING = "pending"


def _match(key: str, value: Any) -> FieldCondition:
    return FieldCondition(key=key, match=MatchValue(value=value))


class QdrantVectorStore(VectorStore):
    """
    Qdrant-backed store.

    Each chunk point carries its parent document's fields in the payload,
    including ``document_status``. Readers only see points whose status is
    ``active``; a new chunk set is written ``pending`` and activated with a
    single payload update.
    """

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: Optional[str] = None,
        chunk_collection: str = "document_chunks",
        query_collection: str = "past_queries",
        vector_size: int = 768,
        client: Optional[QdrantClient] = None,
    ):
        """
        Initialize Qdrant store.

        Args:
            url: Qdrant server URL
            api_key: API key for Qdrant Cloud (optional)
            chunk_collection: Collection holding chunk vectors
            query_collection: Collection holding past query vectors
            vector_size: Embedding dimensions
            client: Pre-built client, e.g. ``QdrantClient(":memory:")`` (optional)
        """
        self.url = url
        self.api_key = api_key
        self.chunk_collection = chunk_collection
        self.query_collection = query_collection
        self.vector_size = vector_size
        self.client: Optional[QdrantClient] = client

    async def connect(self) -> None:
        """Connect to Qdrant and create collections if missing."""
        try:
            if self.client is None:
                self.client = QdrantClient(
                    url=self.url,
                    api_key=self.api_key,
                    timeout=10.0,
                )
            existing = {c.name for c in self.client.get_collections().collections}
        except Exception as e:
            raise ConnectionError(f"Failed to connect to Qdrant at {self.url}: {e}")

        for name in (self.chunk_collection, self.query_collection):
            if name not in existing:
                self._create_collection(name)

        logger.info(f"Connected to Qdrant at {self.url}")

    def _create_collection(self, name: str) -> None:
        try:
            self.client.create_collection(
                collection_name=name,
                vectors_config=VectorParams(size=self.vector_size, distance=Distance.COSINE),
            )
        except UnexpectedResponse as e:
            if "already exists" not in str(e).lower():
                raise
            return

        if name == self.chunk_collection:
            for field in ("document_id", "document_status", "url_hash"):
                self.client.create_payload_index(
                    collection_name=name,
                    field_name=field,
                    field_schema=PayloadSchemaType.KEYWORD,
                )
            self.client.create_payload_index(
                collection_name=name,
                field_name="chunk_index",
                field_schema=PayloadSchemaType.INTEGER,
            )

        logger.info(f"Created collection '{name}' ({self.vector_size} dimensions, cosine)")

    async def disconnect(self) -> None:
        """Disconnect from Qdrant."""
        if self.client:
            self.client.close()
            self.client = None

    def _require_client(self) -> QdrantClient:
        if not self.client:
            raise RuntimeError("Client not connected. Call connect() first.")
        return self.client

    @staticmethod
    def _chunk_payload(document: StoredDocument, chunk: StoredChunk, chunk_count: int) -> Dict[str, Any]:
        return {
            "document_id": document.id,
            "document_status": PENDING,
            "url": document.url,
            "url_hash": document.url_hash,
            "content_hash": document.content_hash,
            "title": document.title,
            "chunk_count": chunk_count,
            "metadata": document.metadata,
            "document_created_at": document.created_at.isoformat(),
            "chunk_index": chunk.chunk_index,
            "content": chunk.content,
            "token_count": chunk.token_count,
            "created_at": chunk.created_at.isoformat(),
        }

    @staticmethod
    def _document_from_payload(payload: Dict[str, Any]) -> StoredDocument:
        return StoredDocument(
            id=payload["document_id"],
            url=payload["url"],
            url_hash=payload["url_hash"],
            content_hash=payload["content_hash"],
            title=payload.get("title"),
            status=payload["document_status"],
            chunk_count=payload.get("chunk_count", 0),
            metadata=payload.get("metadata") or {},
            created_at=payload["document_created_at"],
            updated_at=payload.get("document_updated_at") or payload["document_created_at"],
        )

    @staticmethod
    def _chunk_from_point(point) -> StoredChunk:
        payload = point.payload
        return StoredChunk(
            id=str(point.id),
            document_id=payload["document_id"],
            chunk_index=payload["chunk_index"],
            content=payload.get("content", ""),
            embedding=list(point.vector or []),
            token_count=payload.get("token_count"),
            created_at=payload["created_at"],
        )

    def _set_status(self, doc_id: str, status: str) -> None:
        self.client.set_payload(
            collection_name=self.chunk_collection,
            payload={"document_status": status, "document_updated_at": utcnow().isoformat()},
            points=Filter(must=[_match("document_id", doc_id)]),
            wait=True,
        )

    def _supersede_others(self, document: StoredDocument) -> None:
        """Mark every other active version of the document's URL superseded."""
        self.client.set_payload(
            collection_name=self.chunk_collection,
            payload={
                "document_status": DocumentStatus.SUPERSEDED.value,
                "document_updated_at": utcnow().isoformat(),
            },
            points=Filter(
                must=[
                    _match("url_hash", document.url_hash),
                    _match("document_status", DocumentStatus.ACTIVE.value),
                ],
                must_not=[_match("document_id", document.id)],
            ),
            wait=True,
        )

    async def save_document(
        self,
        document: StoredDocument,
        chunks: List[StoredChunk],
    ) -> SaveResult:
        """
        Write chunks pending, activate them, then supersede other versions.

        Superseding also runs when the document is already active, so a
        retry after a failed supersede leaves a single active version.
        """
        client = self._require_client()

        current = await self.get_active_document(document.url)
        if current and current.id == document.id:
            logger.debug(f"Document {document.id} already active for {document.url}")
            self._supersede_others(document)
            return SaveResult(document_id=current.id, chunks_stored=current.chunk_count, created=False)

        points = [
            PointStruct(
                id=chunk.id,
                vector=chunk.embedding,
                payload=self._chunk_payload(document, chunk, len(chunks)),
            )
            for chunk in chunks
        ]
        client.upsert(collection_name=self.chunk_collection, points=points, wait=True)

        # Leftovers of an earlier partial write of the same document
        client.delete(
            collection_name=self.chunk_collection,
            points_selector=FilterSelector(filter=Filter(must=[
                _match("document_id", document.id),
                FieldCondition(key="chunk_index", range=Range(gte=len(chunks))),
            ])),
            wait=True,
        )

        self._set_status(document.id, DocumentStatus.ACTIVE.value)
        self._supersede_others(document)
        if current:
            logger.info(f"Document {current.id} superseded by {document.id}")

        return SaveResult(
            document_id=document.id,
            chunks_stored=len(chunks),
            created=True,
            superseded=current.id if current else None,
        )

    def _first_chunk(self, conditions: List[FieldCondition]) -> Optional[Dict[str, Any]]:
        points, _ = self._require_client().scroll(
            collection_name=self.chunk_collection,
            scroll_filter=Filter(must=conditions + [_match("chunk_index", 0)]),
            limit=1,
            with_payload=True,
            with_vectors=False,
        )
        return points[0].payload if points else None

    async def get_document(self, document_id: str) -> Optional[StoredDocument]:
        payload = self._first_chunk([_match("document_id", document_id)])
        return self._document_from_payload(payload) if payload else None

    async def get_active_document(self, url: str) -> Optional[StoredDocument]:
        payload = self._first_chunk([
            _match("url_hash", url_hash(url)),
            _match("document_status", DocumentStatus.ACTIVE.value),
        ])
        return self._document_from_payload(payload) if payload else None

    async def get_chunks(self, document_id: str) -> List[StoredChunk]:
        client = self._require_client()
        chunks = []
        offset = None
        while True:
            points, offset = client.scroll(
                collection_name=self.chunk_collection,
                scroll_filter=Filter(must=[_match("document_id", document_id)]),
                limit=256,
                offset=offset,
                with_payload=True,
                with_vectors=True,
            )
            chunks.extend(self._chunk_from_point(p) for p in points)
            if offset is None:
                break
        return sorted(chunks, key=lambda c: c.chunk_index)

    async def candidate_chunks(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[Tuple[StoredChunk, StoredDocument]]:
        client = self._require_client()
        hits = client.query_points(
            collection_name=self.chunk_collection,
            query=query_vector,
            query_filter=Filter(must=[_match("document_status", DocumentStatus.ACTIVE.value)]),
            limit=limit or 100,
            score_threshold=min_score,
            with_payload=True,
            with_vectors=True,
        ).points

        return [(self._chunk_from_point(hit), self._document_from_payload(hit.payload)) for hit in hits]

    async def add_past_query(self, query: PastQuery) -> None:
        self._require_client().upsert(
            collection_name=self.query_collection,
            points=[PointStruct(
                id=query.id,
                vector=query.embedding,
                payload={
                    "query": query.query,
                    "answer": query.answer,
                    "created_at": query.created_at.isoformat(),
                },
            )],
            wait=True,
        )

    async def candidate_past_queries(
        self,
        query_vector: List[float],
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
    ) -> List[PastQuery]:
        hits = self._require_client().query_points(
            collection_name=self.query_collection,
            query=query_vector,
            limit=limit or 100,
            score_threshold=min_score,
            with_payload=True,
            with_vectors=True,
        ).points

        return [
            PastQuery(
                id=str(hit.id),
                query=hit.payload.get("query", ""),
                answer=hit.payload.get("answer"),
                embedding=list(hit.vector or []),
                created_at=hit.payload["created_at"],
            )
            for hit in hits
        ]

    def _count(self, collection: str, conditions: Optional[List[FieldCondition]] = None) -> int:
        count_filter = Filter(must=conditions) if conditions else None
        return self._require_client().count(
            collection_name=collection,
            count_filter=count_filter,
            exact=True,
        ).count

    async def stats(self) -> StoreStats:
        active = _match("document_status", DocumentStatus.ACTIVE.value)
        first = _match("chunk_index", 0)
        return StoreStats(
            total_documents=self._count(self.chunk_collection, [first]),
            active_documents=self._count(self.chunk_collection, [first, active]),
            total_chunks=self._count(self.chunk_collection),
            active_chunks=self._count(self.chunk_collection, [active]),
            past_queries=self._count(self.query_collection),
        )

    async def health(self) -> Dict[str, Any]:
        try:
            collections = [c.name for c in self._require_client().get_collections().collections]
            return {"status": "healthy", "backend": "qdrant", "url": self.url, "collections": collections}
        except Exception as e:
            return {"status": "unhealthy", "backend": "qdrant", "url": self.url, "error": str(e)}
