"""Pydantic models for the RAG pipeline."""
from enum import Enum
from typing import List, Dict, Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


# =============================================================================
# Run state
# =============================================================================

class RunStatus(str, Enum):
    """Lifecycle of a single pipeline run."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StageMessage(BaseModel):
    """Message appended to a run context by a stage."""

    sender: str = Field(
        ...,
        description="Stage (or component) that wrote the message"
    )
    recipient: str = Field(
        ...,
        description="Intended next stage or 'System'"
    )
    content: str = Field(
        ...,
        description="Human-readable message"
    )
    data: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional payload"
    )
    timestamp: datetime = Field(default_factory=utcnow)


class RunContext(BaseModel):
    """
    Shared read/write state of one pipeline run.

    Stages read required keys from ``state``, write their results back and
    may append messages. A context belongs to exactly one run.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(
        ...,
        description="Opaque run identifier"
    )
    state: Dict[str, Any] = Field(
        default_factory=dict,
        description="Cross-stage key/value state"
    )
    messages: List[StageMessage] = Field(
        default_factory=list,
        description="Append-only message log"
    )
    status: RunStatus = Field(default=RunStatus.PENDING)
    pipeline: Optional[str] = Field(
        default=None,
        description="Name of the pipeline executing this run"
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def touch(self) -> None:
        """Bump the updated timestamp."""
        self.updated_at = utcnow()

    def add_message(
        self,
        sender: str,
        recipient: str,
        content: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> StageMessage:
        """Append a message and bump the updated timestamp."""
        message = StageMessage(sender=sender, recipient=recipient, content=content, data=data)
        self.messages.append(message)
        self.touch()
        return message


class StageResult(BaseModel):
    """Result of a single stage run."""

    success: bool
    message: str = ""
    data: Dict[str, Any] = Field(default_factory=dict)
    errors: List[str] = Field(default_factory=list)

    @classmethod
    def ok(cls, message: str, data: Optional[Dict[str, Any]] = None) -> "StageResult":
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def failure(cls, message: str, errors: Optional[List[str]] = None) -> "StageResult":
        return cls(success=False, message=message, errors=errors or [])


class StageReport(BaseModel):
    """Timing and outcome of one executed stage."""

    stage: str
    success: bool
    message: str = ""
    duration_ms: float = 0.0
    errors: List[str] = Field(default_factory=list)


class PipelineRunResult(BaseModel):
    """Aggregate outcome of a pipeline run."""

    run_id: str
    pipeline: Optional[str] = None
    status: RunStatus
    message: str = ""
    stage_count: int = 0
    stages: List[StageReport] = Field(
        default_factory=list,
        description="Reports of every stage that ran, in order"
    )
    failed_stage: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    total_duration_ms: float = 0.0
    outputs: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.COMPLETED

    def summary(self) -> str:
        """Generate a summary string."""
        completed = [s.stage for s in self.stages if s.success]
        text = (
            f"Run {self.run_id} ({self.pipeline}): {self.status.value}, "
            f"{len(completed)}/{self.stage_count} stages in {self.total_duration_ms:.1f}ms"
        )
        if self.failed_stage:
            text += f", failed at '{self.failed_stage}': {self.message}"
        return text


# =============================================================================
# Pipeline definitions and URL rules
# =============================================================================

class PipelineStep(BaseModel):
    """One stage reference inside a pipeline definition."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        description="Registered stage name"
    )
    config: Dict[str, Any] = Field(
        default_factory=dict,
        description="Stage-specific configuration"
    )


class PipelineDefinition(BaseModel):
    """Named, ordered list of stages. Immutable once loaded."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(
        ...,
        description="Pipeline identifier"
    )
    description: Optional[str] = Field(
        default=None,
        description="Human-readable description"
    )
    stages: List[PipelineStep] = Field(
        default_factory=list,
        description="Ordered stages; plain names or {name, config} objects"
    )
    active: bool = Field(default=True)

    @field_validator("stages", mode="before")
    @classmethod
    def _parse_steps(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        return [{"name": item} if isinstance(item, str) else item for item in value]

    def stage_names(self) -> List[str]:
        return [step.name for step in self.stages]


class UrlRule(BaseModel):
    """Regex URL pattern routing to a pipeline."""

    pattern: str = Field(
        ...,
        description="Regular expression matched case-insensitively against the URL"
    )
    pipeline_id: str = Field(
        ...,
        description="Target pipeline name"
    )
    priority: int = Field(
        default=1,
        description="Higher priority wins"
    )
    active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class MatchResult(BaseModel):
    """One matching rule in a selection report."""

    pipeline_id: str
    pattern: str
    priority: int
    match_type: str


class PipelineInfo(BaseModel):
    """Pipeline with the URL patterns routing to it."""

    name: str
    description: Optional[str] = None
    active: bool = True
    stages: List[PipelineStep] = Field(default_factory=list)
    url_patterns: List[MatchResult] = Field(default_factory=list)


class SelectionReport(BaseModel):
    """Introspection of pipeline selection for a URL."""

    url: str
    selected: PipelineDefinition
    matches: List[MatchResult] = Field(default_factory=list)
    reason: str


# =============================================================================
# Chunks and vector store records
# =============================================================================

class Chunk(BaseModel):
    """Text window carved from source content."""

    index: int = Field(
        ...,
        description="Sequence index within the document (0-based)"
    )
    text: str
    token_count: int = 0


class DocumentStatus(str, Enum):
    ACTIVE = "active"
    SUPERSEDED = "superseded"


class StoredDocument(BaseModel):
    """Parent document of a set of chunks."""

    id: str
    url: str
    url_hash: str
    content_hash: str
    title: Optional[str] = None
    status: DocumentStatus = DocumentStatus.ACTIVE
    chunk_count: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class StoredChunk(BaseModel):
    """Chunk with its embedding as kept by the vector store."""

    id: str
    document_id: str
    chunk_index: int
    content: str
    embedding: List[float]
    token_count: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class SaveResult(BaseModel):
    """Outcome of writing a document and its chunk set."""

    document_id: str
    chunks_stored: int = 0
    created: bool = Field(
        default=True,
        description="False when the same URL and content were already stored"
    )
    superseded: Optional[str] = Field(
        default=None,
        description="Id of the previous active document for the URL, if replaced"
    )


class PastQuery(BaseModel):
    """Historical user query with its embedding."""

    id: str
    query: str
    answer: Optional[str] = None
    embedding: List[float]
    created_at: datetime = Field(default_factory=utcnow)


class SearchResult(BaseModel):
    """Ranked chunk returned by the query engine."""

    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    score: float = Field(
        ...,
        description="Cosine similarity (higher is more similar)"
    )
    source_url: str = ""
    document_title: Optional[str] = None
    content_hash: Optional[str] = None
    token_count: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)


class SimilarQueryResult(BaseModel):
    """Ranked historical query."""

    query_id: str
    query: str
    answer: Optional[str] = None
    score: float
    created_at: datetime = Field(default_factory=utcnow)


class StoreStats(BaseModel):
    """Vector store statistics."""

    total_documents: int = 0
    active_documents: int = 0
    total_chunks: int = 0
    active_chunks: int = 0
    past_queries: int = 0


# =============================================================================
# API models
# =============================================================================

class IngestRequest(BaseModel):
    """Request to ingest a URL."""

    url: str = Field(
        ...,
        description="URL to ingest"
    )
    chunk_size: Optional[int] = Field(
        default=None,
        description="Chunk size in characters (configured default if omitted)"
    )
    chunk_overlap: Optional[int] = Field(
        default=None,
        description="Chunk overlap in characters (configured default if omitted)"
    )


class IngestResponse(BaseModel):
    """Response from a completed ingestion run."""

    run_id: str
    pipeline: Optional[str] = None
    message: str
    url: str
    document_id: Optional[str] = None
    chunks_processed: int = 0
    chunks_stored: int = 0
    chunk_size: Optional[int] = None
    chunk_overlap: Optional[int] = None
    stages: List[StageReport] = Field(default_factory=list)
    execution_time_ms: float = 0.0


class RunInfo(BaseModel):
    """Inspection view of a run context (state values omitted)."""

    run_id: str
    pipeline: Optional[str] = None
    status: RunStatus
    state_keys: List[str] = Field(default_factory=list)
    messages: List[StageMessage] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_context(cls, context: RunContext) -> "RunInfo":
        return cls(
            run_id=context.run_id,
            pipeline=context.pipeline,
            status=context.status,
            state_keys=sorted(context.state),
            messages=list(context.messages),
            created_at=context.created_at,
            updated_at=context.updated_at,
        )


class SearchRequest(BaseModel):
    """Request for vector search only (no LLM)."""

    query: str = Field(
        ...,
        description="Search query"
    )
    top_k: Optional[int] = Field(
        default=None,
        description="Number of results"
    )
    min_score: Optional[float] = Field(
        default=None,
        description="Minimum similarity score"
    )


class SearchResponse(BaseModel):
    """Response from search operation."""

    query: str
    results: List[SearchResult] = Field(default_factory=list)
    top_k: int
    min_score: float


class QueryRequest(BaseModel):
    """Request for RAG query (retrieve + generate)."""

    query: str = Field(
        ...,
        description="Query text"
    )
    top_k: Optional[int] = Field(
        default=None,
        description="Number of chunks to retrieve"
    )
    min_score: Optional[float] = Field(
        default=None,
        description="Minimum similarity score"
    )
    include_context: bool = Field(
        default=False,
        description="Include retrieved context in response"
    )
    max_tokens: Optional[int] = Field(
        default=None,
        description="Max tokens for LLM response"
    )
    temperature: Optional[float] = Field(
        default=None,
        description="LLM temperature"
    )


class RAGResponse(BaseModel):
    """Response from RAG query (retrieve + generate)."""

    query: str
    answer: str
    sources: List[SearchResult] = Field(default_factory=list)
    similar_queries: List[SimilarQueryResult] = Field(default_factory=list)
    context: Optional[str] = None


class SelectRequest(BaseModel):
    """Request to explain pipeline selection for a URL."""

    url: str


class RuleRequest(BaseModel):
    """Request to add or update a URL rule."""

    pipeline_id: str
    pattern: str
    priority: int = 1
    active: bool = True


class HealthResponse(BaseModel):
    """Health check response."""

    status: Literal["healthy", "degraded"]
    vector_store: Dict[str, Any]
    embedding: Dict[str, Any]
    llm: Dict[str, Any]
    active_runs: int = 0
