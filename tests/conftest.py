"""Shared fixtures: deterministic fakes and in-memory backends."""
import hashlib
from typing import List, Optional

import pytest

from rag_pipeline.config import RAGConfig
from rag_pipeline.fetchers import FetchResult
from rag_pipeline.models import PipelineDefinition, UrlRule
from rag_pipeline.rules import RuleRepository
from rag_pipeline.service import RAGService
from rag_pipeline.stages import ScraperStage
from rag_pipeline.vector_db import InMemoryVectorStore

DIMENSIONS = 8

ARTICLE = (
    "Vector databases store embeddings for similarity search. "
    "Qdrant is an open source vector database written in Rust. "
    "Cosine similarity compares the angle between two vectors. "
    "Chunking splits long documents into overlapping windows. "
    "Each chunk is embedded separately before it is stored."
)


class FakeEmbedder:
    """Hash-based embeddings: identical text gives identical vectors."""

    def __init__(self, dim: int = DIMENSIONS):
        self.dim = dim
        self.calls: List[List[str]] = []

    def vector(self, text: str) -> List[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [b / 255.0 + 0.01 for b in digest[:self.dim]]

    async def embed(self, text: str) -> List[float]:
        return self.vector(text)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return True


class FakeLLM:
    """Echoes the query and remembers the context it was given."""

    def __init__(self):
        self.contexts: List[str] = []

    async def generate_with_context(self, query: str, context: str, **kwargs) -> str:
        self.contexts.append(context)
        return f"Answer to: {query}"

    async def close(self):
        pass

    async def health_check(self) -> bool:
        return True


class FakeFetcher:
    """Stands in for WebScraper/GitHubFetcher without network access."""

    def __init__(self, content: Optional[str] = ARTICLE, title: str = "Test Page", error: Optional[str] = None):
        self.content = content
        self.title = title
        self.error = error
        self.urls: List[str] = []

    async def fetch(self, url: str, metadata: Optional[dict] = None) -> FetchResult:
        self.urls.append(url)
        if self.error:
            return FetchResult(url=url, success=False, error=self.error)
        return FetchResult(url=url, success=True, content=self.content, title=self.title)

    async def close(self):
        pass


@pytest.fixture
def config() -> RAGConfig:
    return RAGConfig(
        vector_store="memory",
        embedding_dimensions=DIMENSIONS,
        chunk_size=200,
        chunk_overlap=40,
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def repository() -> RuleRepository:
    return RuleRepository.from_data(
        pipelines=[
            PipelineDefinition(name="default", stages=["scraper", "chunker", "embedding", "storage"]),
            PipelineDefinition(name="github", stages=["github", "chunker", "embedding", "storage"]),
        ],
        rules=[
            UrlRule(pattern=".*", pipeline_id="default", priority=1),
            UrlRule(pattern=r"^https://github\.com/", pipeline_id="github", priority=10),
        ],
    )


@pytest.fixture
def service(config, store, embedder, llm, repository, fetcher) -> RAGService:
    svc = RAGService(config, store=store, embedder=embedder, llm=llm, repository=repository)
    svc.factory.register_stage("scraper", lambda cfg: ScraperStage(fetcher, cfg), category="content")
    svc.factory.register_stage("github", lambda cfg: ScraperStage(fetcher, cfg), category="content")
    return svc
