"""Vector store backends."""
from .interface import (
    VectorStore,
    chunk_id,
    content_hash,
    document_id,
    url_hash,
)
from .memory import InMemoryVectorStore
from .qdrant_client import QdrantVectorStore


def create_vector_store(config) -> VectorStore:
    """Build the backend selected by ``config.vector_store``."""
    if config.vector_store == "memory":
        return InMemoryVectorStore()
    return QdrantVectorStore(
        url=config.qdrant_url,
        api_key=config.qdrant_api_key,
        chunk_collection=config.qdrant_chunk_collection,
        query_collection=config.qdrant_query_collection,
        vector_size=config.embedding_dimensions,
    )


__all__ = [
    "VectorStore",
    "InMemoryVectorStore",
    "QdrantVectorStore",
    "create_vector_store",
    "chunk_id",
    "content_hash",
    "document_id",
    "url_hash",
]
