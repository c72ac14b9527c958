"""Service layer wiring selection, stages, orchestration and retrieval."""
import logging
import uuid
from typing import Dict, List, Optional

from .cancellation import CancellationToken
from .chunking import validate_chunk_params
from .config import RAGConfig
from .context_store import ContextSweeper, RunContextStore
from .embeddings import EmbeddingClient
from .errors import ValidationError
from .llm_client import LLMClient
from .models import (
    IngestRequest,
    PastQuery,
    PipelineDefinition,
    PipelineRunResult,
    QueryRequest,
    RAGResponse,
    RunContext,
    SearchRequest,
    SearchResponse,
    SearchResult,
)
from .orchestrator import PipelineOrchestrator
from .query_engine import VectorQueryEngine
from .rules import PipelineSelector, RuleCache, RuleRepository
from .stages import StageDependencies, StageFactory, build_default_factory
from .vector_db import VectorStore, create_vector_store

logger = logging.getLogger(__name__)

NO_RESULTS_ANSWER = (
    "I couldn't find any relevant information in the indexed documents to answer your question."
)


def build_context(results: List[SearchResult]) -> str:
    """Join retrieved chunks into an LLM context block with source markers."""
    parts = []
    for idx, result in enumerate(results, 1):
        source = result.document_title or result.source_url
        parts.append(f"[{idx}] Source: {source} (score: {result.score:.3f})\n{result.content}")
    return "\n\n---\n\n".join(parts)


class RAGService:
    """Ingestion and query entry points shared by the HTTP server and CLI."""

    def __init__(
        self,
        config: RAGConfig,
        store: Optional[VectorStore] = None,
        embedder: Optional[EmbeddingClient] = None,
        llm: Optional[LLMClient] = None,
        repository: Optional[RuleRepository] = None,
        factory: Optional[StageFactory] = None,
    ):
        """
        Initialize service.

        Args:
            config: RAG configuration
            store: Vector store (built from config if omitted)
            embedder: Embedding client (built from config if omitted)
            llm: LLM client (built from config if omitted)
            repository: Pipeline/rule repository (from ``config.rules_file`` if omitted)
            factory: Stage factory (built-in stages if omitted)
        """
        self.config = config
        self.store = store or create_vector_store(config)
        self.embedder = embedder or EmbeddingClient.from_config(config)
        self.llm = llm or LLMClient.from_config(config)

        self.repository = repository or RuleRepository(config.rules_file)
        self.selector = PipelineSelector(
            self.repository,
            RuleCache(self.repository, ttl=config.rule_cache_ttl),
            default_pipeline=config.default_pipeline,
        )

        self.deps = StageDependencies.from_config(config, self.store, self.embedder)
        self.factory = factory or build_default_factory(self.deps)

        self.contexts = RunContextStore()
        self.orchestrator = PipelineOrchestrator(self.contexts)
        self.sweeper = ContextSweeper(
            self.contexts,
            max_age=config.context_max_age,
            interval=config.context_cleanup_interval,
            retry_delay=config.context_cleanup_retry,
        )
        self.engine = VectorQueryEngine(self.store)
        self._tokens: Dict[str, CancellationToken] = {}

    def validate(self) -> None:
        """
        Startup configuration check.

        Raises:
            ConfigurationError: default pipeline missing, bad rule pattern, or
                an active pipeline naming an unregistered stage
        """
        self.selector.validate()
        for pipeline in self.repository.list_pipelines():
            if pipeline.active:
                self.factory.validate_pipeline(pipeline)

    async def startup(self) -> None:
        """Validate configuration, connect the store and start the sweeper."""
        self.validate()
        logger.info(f"Pipelines validated, stages: {', '.join(self.factory.registered_stages())}")

        await self.store.connect()
        self.sweeper.start()
        logger.info("RAG pipeline service started")

    async def shutdown(self) -> None:
        """Stop background work and close clients."""
        await self.sweeper.stop()
        await self.deps.close()
        await self.store.disconnect()
        await self.embedder.close()
        await self.llm.close()
        logger.info("RAG pipeline service stopped")

    @property
    def active_runs(self) -> int:
        return len(self._tokens)

    async def ingest(self, request: IngestRequest) -> PipelineRunResult:
        """
        Run the pipeline selected for a URL.

        The chunk size and overlap the selected pipeline's chunker will use
        (request, then step config, then defaults) are validated before any
        stage runs.

        Raises:
            ValidationError: invalid chunking parameters
            ConfigurationError: no usable pipeline
        """
        if not request.url or not request.url.strip():
            raise ValidationError("URL is required")

        url = request.url.strip()
        pipeline = self.selector.select_pipeline(url)
        self._validate_chunking(pipeline, request)
        stages = self.factory.create_pipeline(pipeline)

        context = self.contexts.create()
        context.state["url"] = url
        if request.chunk_size is not None:
            context.state["chunk_size"] = request.chunk_size
        if request.chunk_overlap is not None:
            context.state["chunk_overlap"] = request.chunk_overlap

        token = CancellationToken(context.run_id)
        self._tokens[context.run_id] = token
        try:
            return await self.orchestrator.execute(context, stages, token, pipeline.name)
        finally:
            self._tokens.pop(context.run_id, None)

    def _validate_chunking(self, pipeline: PipelineDefinition, request: IngestRequest) -> None:
        """Check the chunk parameters the pipeline's chunker steps will run with."""
        steps = [step for step in pipeline.stages if step.name.lower() == "chunker"]
        if not steps and request.chunk_size is None and request.chunk_overlap is None:
            return

        # Same precedence as the chunker stage: request, step config, defaults
        for config in [step.config for step in steps] or [{}]:
            chunk_size = request.chunk_size
            if chunk_size is None:
                chunk_size = config.get("chunk_size", self.config.chunk_size)
            chunk_overlap = request.chunk_overlap
            if chunk_overlap is None:
                chunk_overlap = config.get("chunk_overlap", self.config.chunk_overlap)

            validate_chunk_params(
                int(chunk_size),
                int(chunk_overlap),
                min_chunk_size=self.config.min_chunk_size,
                max_chunk_size=self.config.max_chunk_size,
            )

    def cancel(self, run_id: str) -> bool:
        """Request cancellation of an in-flight run."""
        token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def get_run(self, run_id: str) -> Optional[RunContext]:
        return self.contexts.get(run_id)

    def _search_params(self, top_k: Optional[int], min_score: Optional[float]):
        top_k = top_k if top_k is not None else self.config.default_top_k
        top_k = max(1, min(top_k, self.config.max_top_k))
        min_score = min_score if min_score is not None else self.config.min_search_score
        return top_k, min_score

    async def _embed_query(self, query: str) -> List[float]:
        if not query or not query.strip():
            raise ValidationError("Query is required")
        return await self.embedder.embed(query.strip())

    async def search(self, request: SearchRequest) -> SearchResponse:
        """Vector search only, no LLM."""
        top_k, min_score = self._search_params(request.top_k, request.min_score)
        vector = await self._embed_query(request.query)

        results = await self.engine.search(vector, top_k, min_score)
        logger.info(f"Search returned {len(results)} results for: {request.query[:80]}")

        return SearchResponse(query=request.query, results=results, top_k=top_k, min_score=min_score)

    async def query(self, request: QueryRequest) -> RAGResponse:
        """
        Retrieve and generate an answer.

        Without results above the threshold the answer falls back to the
        most similar answered past query. Every query is recorded as a past
        query.
        """
        top_k, min_score = self._search_params(request.top_k, request.min_score)
        vector = await self._embed_query(request.query)

        results = await self.engine.search(vector, top_k, min_score)
        similar = []
        context = None

        if results:
            context = build_context(results)
            answer = await self.llm.generate_with_context(
                query=request.query,
                context=context,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
        else:
            similar = await self.engine.find_similar_past_queries(
                vector, top_k=3, min_score=self.config.similar_query_min_score
            )
            answered = [q for q in similar if q.answer]
            if answered:
                answer = (
                    "I couldn't find specific information about this in the indexed documents. "
                    f"A similar question was answered before:\n\n{answered[0].answer}"
                )
            else:
                answer = NO_RESULTS_ANSWER
            logger.info(f"No results above {min_score}, {len(similar)} similar past queries")

        # Fallback answers are not recorded so they never get re-served
        await self.store.add_past_query(PastQuery(
            id=str(uuid.uuid4()),
            query=request.query,
            answer=answer if results else None,
            embedding=vector,
        ))

        return RAGResponse(
            query=request.query,
            answer=answer,
            sources=results,
            similar_queries=similar,
            context=context if request.include_context else None,
        )
