"""Pipeline stages and the stage factory."""
from .base import Stage
from .chunker import ChunkerStage
from .content import FetchStage, GitHubStage, ScraperStage
from .embedding import EmbeddingStage, check_embeddings
from .storage import StorageStage
from .factory import (
    StageDependencies,
    StageFactory,
    StageInfo,
    build_default_factory,
)

__all__ = [
    "Stage",
    "ChunkerStage",
    "FetchStage",
    "GitHubStage",
    "ScraperStage",
    "EmbeddingStage",
    "StorageStage",
    "StageDependencies",
    "StageFactory",
    "StageInfo",
    "build_default_factory",
    "check_embeddings",
]
