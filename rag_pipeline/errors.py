"""Error taxonomy for the RAG pipeline."""
from typing import List, Optional


class RAGPipelineError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ConfigurationError(RAGPipelineError):
    """Fatal configuration problem (missing default pipeline, bad rule pattern, ...).

    Raised at registration or startup, never deferred to request time.
    """


class UnknownStageError(ConfigurationError):
    """A pipeline names a stage that is not registered."""

    def __init__(self, stage_name: str, available: List[str]):
        super().__init__(
            f"Unknown stage: {stage_name}. Available stages: {', '.join(available)}"
        )
        self.stage_name = stage_name
        self.available = available


class ValidationError(RAGPipelineError):
    """Input rejected before any side effect (chunk params, count mismatch, ...)."""


class StageInputError(ValidationError):
    """A required context key is missing or has the wrong type."""

    def __init__(self, key: str, expected: str, actual: Optional[str] = None):
        if actual is None:
            message = f"Required key '{key}' not found in context state"
        else:
            message = f"Context key '{key}' must be {expected}, got {actual}"
        super().__init__(message)
        self.key = key


class StageExecutionError(RAGPipelineError):
    """A stage's own failure, including wrapped dependency failures."""

    def __init__(self, stage: str, message: str, errors: Optional[List[str]] = None):
        super().__init__(f"{stage} failed: {message}", errors)
        self.stage = stage


class RunCancelled(RAGPipelineError):
    """Cancellation was requested for a run."""

    def __init__(self, run_id: Optional[str] = None):
        super().__init__(f"Run {run_id} was cancelled" if run_id else "Run was cancelled")
        self.run_id = run_id
