"""Stage registry and pipeline construction."""
import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel

from ..chunking import SentenceChunker
from ..config import RAGConfig
from ..embeddings import EmbeddingClient
from ..errors import ConfigurationError, UnknownStageError
from ..fetchers import FetchConfig, GitHubFetcher, WebScraper
from ..models import PipelineDefinition
from ..vector_db import VectorStore
from .base import Stage
from .chunker import ChunkerStage
from .content import GitHubStage, ScraperStage
from .embedding import EmbeddingStage
from .storage import StorageStage

logger = logging.getLogger(__name__)

StageConstructor = Callable[[Dict[str, Any]], Stage]


class StageInfo(BaseModel):
    """Registered stage description."""

    name: str
    category: str
    builtin: bool = False
    description: Optional[str] = None


@dataclass(frozen=True)
class _Registration:
    name: str
    constructor: StageConstructor
    category: str
    builtin: bool
    description: Optional[str]


class StageFactory:
    """
    Maps stage names to constructors and builds pipelines from definitions.

    Names are case-insensitive. The registry map is replaced on every
    write, so lookups never take a lock.
    """

    def __init__(self):
        self._registry: Dict[str, _Registration] = {}
        self._write_lock = threading.Lock()

    def register_stage(
        self,
        name: str,
        constructor: StageConstructor,
        category: str = "custom",
        description: Optional[str] = None,
        builtin: bool = False,
    ) -> None:
        """
        Register a stage constructor.

        Args:
            name: Stage name used in pipeline definitions
            constructor: Callable taking the step config dict, returning a Stage
            category: Grouping shown in stage listings
            description: Human-readable description
            builtin: Whether this is one of the bundled stages
        """
        key = name.lower()
        with self._write_lock:
            registry = dict(self._registry)
            if key in registry:
                logger.warning(f"Stage '{name}' is already registered, overwriting")
            registry[key] = _Registration(name, constructor, category, builtin, description)
            self._registry = registry

        logger.debug(f"Registered stage '{name}' ({category})")

    def can_create(self, name: str) -> bool:
        return name.lower() in self._registry

    def registered_stages(self) -> List[str]:
        return sorted(reg.name for reg in self._registry.values())

    def info(self) -> List[StageInfo]:
        """Descriptions of every registered stage."""
        return [
            StageInfo(
                name=reg.name,
                category=reg.category,
                builtin=reg.builtin,
                description=reg.description,
            )
            for reg in sorted(self._registry.values(), key=lambda r: r.name)
        ]

    def create_stage(self, name: str, config: Optional[Dict[str, Any]] = None) -> Stage:
        """
        Instantiate one stage.

        Raises:
            UnknownStageError: name is not registered
        """
        registration = self._registry.get(name.lower())
        if registration is None:
            raise UnknownStageError(name, self.registered_stages())
        return registration.constructor(dict(config or {}))

    def create_pipeline(self, definition: PipelineDefinition) -> List[Stage]:
        """
        Instantiate every stage of a pipeline, in order.

        Raises:
            UnknownStageError: a step names an unregistered stage
        """
        stages = [self.create_stage(step.name, step.config) for step in definition.stages]
        logger.debug(
            f"Created pipeline '{definition.name}': {' -> '.join(s.name for s in stages)}"
        )
        return stages

    def validate_pipeline(self, definition: PipelineDefinition) -> None:
        """
        Startup check that every stage of a pipeline is registered.

        Raises:
            ConfigurationError: pipeline is empty or names unknown stages
        """
        if not definition.stages:
            raise ConfigurationError(f"Pipeline '{definition.name}' has no stages")

        missing = [name for name in definition.stage_names() if not self.can_create(name)]
        if missing:
            raise ConfigurationError(
                f"Pipeline '{definition.name}' uses unregistered stages: {', '.join(missing)}",
                [f"Available stages: {', '.join(self.registered_stages())}"],
            )


@dataclass
class StageDependencies:
    """Shared collaborators handed to the built-in stages."""

    config: RAGConfig
    store: VectorStore
    embedder: EmbeddingClient
    chunker: SentenceChunker
    web_scraper: WebScraper
    github_fetcher: GitHubFetcher

    @classmethod
    def from_config(
        cls,
        config: RAGConfig,
        store: VectorStore,
        embedder: EmbeddingClient,
    ) -> "StageDependencies":
        fetch_config = FetchConfig.from_config(config)
        return cls(
            config=config,
            store=store,
            embedder=embedder,
            chunker=SentenceChunker(config.min_chunk_size, config.max_chunk_size),
            web_scraper=WebScraper(fetch_config),
            github_fetcher=GitHubFetcher(fetch_config),
        )

    async def close(self) -> None:
        """Close the fetchers' HTTP clients."""
        await self.web_scraper.close()
        await self.github_fetcher.close()


def build_default_factory(deps: StageDependencies) -> StageFactory:
    """Factory with the bundled stages registered."""
    config = deps.config
    factory = StageFactory()

    factory.register_stage(
        "scraper",
        lambda cfg: ScraperStage(deps.web_scraper, cfg),
        category="content",
        description="Fetches a web page and extracts its readable text",
        builtin=True,
    )
    factory.register_stage(
        "github",
        lambda cfg: GitHubStage(deps.github_fetcher, cfg),
        category="content",
        description="Fetches the README or raw file behind a GitHub URL",
        builtin=True,
    )
    factory.register_stage(
        "chunker",
        lambda cfg: ChunkerStage(deps.chunker, config.chunk_size, config.chunk_overlap, cfg),
        category="processing",
        description="Splits content into sentence-aligned overlapping chunks",
        builtin=True,
    )
    factory.register_stage(
        "embedding",
        lambda cfg: EmbeddingStage(
            deps.embedder,
            batch_size=config.embedding_batch_size,
            dimensions=config.embedding_dimensions,
            config=cfg,
        ),
        category="processing",
        description="Embeds chunks through the embedding server",
        builtin=True,
    )
    factory.register_stage(
        "storage",
        lambda cfg: StorageStage(deps.store, cfg),
        category="storage",
        description="Writes the document and its chunk vectors to the vector store",
        builtin=True,
    )

    return factory
