"""Qdrant backend tests against the local in-memory Qdrant mode."""
import math
import uuid

import pytest
import pytest_asyncio
from qdrant_client import QdrantClient
from qdrant_client.models import PointStruct

from rag_pipeline.models import DocumentStatus, PastQuery, StoredChunk, StoredDocument
from rag_pipeline.query_engine import VectorQueryEngine
from rag_pipeline.vector_db import QdrantVectorStore, chunk_id, content_hash, document_id, url_hash

URL = "https://example.com/page"
QUERY = [1.0, 0.0]


def unit_vector(score: float):
    return [score, math.sqrt(1.0 - score * score)]


def build(url, content, vectors):
    digest = content_hash(content)
    doc_id = document_id(url, digest)
    document = StoredDocument(id=doc_id, url=url, url_hash=url_hash(url), content_hash=digest, title=content)
    chunks = [
        StoredChunk(
            id=chunk_id(doc_id, idx),
            document_id=doc_id,
            chunk_index=idx,
            content=f"{content} chunk {idx}",
            embedding=vector,
        )
        for idx, vector in enumerate(vectors)
    ]
    return document, chunks


@pytest_asyncio.fixture
async def store():
    qdrant = QdrantVectorStore(
        chunk_collection="test_chunks",
        query_collection="test_queries",
        vector_size=2,
        client=QdrantClient(":memory:"),
    )
    await qdrant.connect()
    yield qdrant
    await qdrant.disconnect()


async def active_contents(store):
    candidates = await store.candidate_chunks(QUERY, limit=100, min_score=-1.0)
    return sorted(chunk.content for chunk, _ in candidates)


@pytest.mark.asyncio
async def test_save_and_read_back(store):
    document, chunks = build(URL, "v1", [unit_vector(0.9), unit_vector(0.6)])

    result = await store.save_document(document, chunks)

    assert result.created
    assert result.chunks_stored == 2
    active = await store.get_active_document(URL)
    assert active.id == document.id
    assert active.status == DocumentStatus.ACTIVE
    assert active.title == "v1"
    stored = await store.get_chunks(document.id)
    assert [c.chunk_index for c in stored] == [0, 1]
    assert [c.content for c in stored] == ["v1 chunk 0", "v1 chunk 1"]


@pytest.mark.asyncio
async def test_same_content_is_not_rewritten(store):
    document, chunks = build(URL, "v1", [unit_vector(0.9)])

    await store.save_document(document, chunks)
    again = await store.save_document(document, chunks)

    assert not again.created
    assert again.document_id == document.id
    assert (await store.stats()).total_chunks == 1


@pytest.mark.asyncio
async def test_new_version_supersedes_previous(store):
    v1, v1_chunks = build(URL, "v1", [unit_vector(0.9)])
    v2, v2_chunks = build(URL, "v2", [unit_vector(0.8)])

    await store.save_document(v1, v1_chunks)
    result = await store.save_document(v2, v2_chunks)

    assert result.superseded == v1.id
    assert (await store.get_document(v1.id)).status == DocumentStatus.SUPERSEDED
    assert (await store.get_active_document(URL)).id == v2.id
    assert await active_contents(store) == ["v2 chunk 0"]


@pytest.mark.asyncio
async def test_retry_after_failed_supersede_leaves_one_active_version(store, monkeypatch):
    v1, v1_chunks = build(URL, "v1", [unit_vector(0.9)])
    v2, v2_chunks = build(URL, "v2", [unit_vector(0.8)])
    await store.save_document(v1, v1_chunks)

    supersede = store._supersede_others

    def fail_once(document):
        monkeypatch.setattr(store, "_supersede_others", supersede)
        raise RuntimeError("qdrant unavailable")

    monkeypatch.setattr(store, "_supersede_others", fail_once)
    with pytest.raises(RuntimeError):
        await store.save_document(v2, v2_chunks)

    await store.save_document(v2, v2_chunks)

    assert await active_contents(store) == ["v2 chunk 0"]
    assert (await store.get_document(v1.id)).status == DocumentStatus.SUPERSEDED
    assert (await store.stats()).active_documents == 1


@pytest.mark.asyncio
async def test_pending_chunks_are_invisible(store):
    document, chunks = build(URL, "v1", [unit_vector(0.9)])
    store.client.upsert(
        collection_name=store.chunk_collection,
        points=[PointStruct(
            id=chunks[0].id,
            vector=chunks[0].embedding,
            payload=store._chunk_payload(document, chunks[0], 1),
        )],
        wait=True,
    )

    assert await store.get_active_document(URL) is None
    assert await active_contents(store) == []


@pytest.mark.asyncio
async def test_leftover_chunks_of_partial_write_are_removed(store):
    document, chunks = build(URL, "v1", [unit_vector(0.9)] * 3)
    store.client.upsert(
        collection_name=store.chunk_collection,
        points=[
            PointStruct(id=c.id, vector=c.embedding, payload=store._chunk_payload(document, c, 3))
            for c in chunks
        ],
        wait=True,
    )

    result = await store.save_document(document, chunks[:2])

    assert result.chunks_stored == 2
    assert [c.chunk_index for c in await store.get_chunks(document.id)] == [0, 1]


@pytest.mark.asyncio
async def test_search_through_query_engine(store):
    await store.save_document(*build(URL, "v1", [unit_vector(s) for s in [0.9, 0.7, 0.4]]))

    results = await VectorQueryEngine(store).search(QUERY, top_k=5, min_score=0.5)

    assert [r.chunk_index for r in results] == [0, 1]
    assert [r.score for r in results] == pytest.approx([0.9, 0.7], abs=1e-4)
    assert results[0].source_url == URL


@pytest.mark.asyncio
async def test_past_queries(store):
    query_id = str(uuid.uuid4())
    await store.add_past_query(PastQuery(id=query_id, query="what?", answer="that", embedding=unit_vector(0.95)))

    candidates = await store.candidate_past_queries(QUERY, limit=10, min_score=0.8)

    assert [q.id for q in candidates] == [query_id]
    assert candidates[0].answer == "that"


@pytest.mark.asyncio
async def test_stats_and_health(store):
    await store.save_document(*build(URL, "v1", [unit_vector(0.9)] * 2))
    await store.save_document(*build(URL, "v2", [unit_vector(0.9)] * 3))

    stats = await store.stats()
    health = await store.health()

    assert stats.total_documents == 2
    assert stats.active_documents == 1
    assert stats.total_chunks == 5
    assert stats.active_chunks == 3
    assert health["status"] == "healthy"
    assert "test_chunks" in health["collections"]
