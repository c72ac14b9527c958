"""RAG Pipeline Package."""

__version__ = "1.0.0"
__author__ = "artqcid"

from .config import RAGConfig
from .errors import (
    ConfigurationError,
    RAGPipelineError,
    RunCancelled,
    StageExecutionError,
    UnknownStageError,
    ValidationError,
)
from .models import (
    IngestRequest,
    PipelineDefinition,
    PipelineRunResult,
    QueryRequest,
    RAGResponse,
    RunContext,
    SearchRequest,
    SearchResponse,
    UrlRule,
)

__all__ = [
    "RAGConfig",
    "ConfigurationError",
    "RAGPipelineError",
    "RunCancelled",
    "StageExecutionError",
    "UnknownStageError",
    "ValidationError",
    "IngestRequest",
    "PipelineDefinition",
    "PipelineRunResult",
    "QueryRequest",
    "RAGResponse",
    "RunContext",
    "SearchRequest",
    "SearchResponse",
    "UrlRule",
]
