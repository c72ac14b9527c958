"""Content acquisition stages."""
import logging
from typing import Any, Dict, Optional

from ..cancellation import CancellationToken
from ..fetchers import GitHubFetcher, WebScraper
from ..fetchers.base import HttpFetcher
from ..models import RunContext, StageResult
from .base import Stage

logger = logging.getLogger(__name__)


class FetchStage(Stage):
    """Fetches ``url`` and writes ``raw_content`` and ``title``."""

    category = "content"

    def __init__(self, fetcher: HttpFetcher, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.fetcher = fetcher

    async def run(self, context: RunContext, cancel_token: CancellationToken) -> StageResult:
        url = self.require(context, "url", str)
        cancel_token.raise_if_cancelled()

        logger.info(f"[{self.name}] Fetching {url}")
        result = await self.fetcher.fetch(url, metadata={"run_id": context.run_id})

        if not result.success:
            return StageResult.failure(
                f"Failed to fetch content from {url}",
                [result.error or "Unknown fetch error"],
            )

        content = (result.content or "").strip()
        min_length = int(self.config.get("min_content_length", 1))
        if len(content) < min_length:
            return StageResult.failure(
                f"No usable content extracted from {url}",
                [f"Extracted {len(content)} characters, need at least {min_length}"],
            )

        return StageResult.ok(
            f"Fetched {len(content)} characters from {url}",
            {
                "raw_content": content,
                "title": result.title,
                "source_metadata": result.metadata,
            },
        )


class ScraperStage(FetchStage):
    """Generic web page scraping."""

    name = "scraper"

    def __init__(self, fetcher: WebScraper, config: Optional[Dict[str, Any]] = None):
        super().__init__(fetcher, config)


class GitHubStage(FetchStage):
    """README or raw file content of a GitHub repository URL."""

    name = "github"

    def __init__(self, fetcher: GitHubFetcher, config: Optional[Dict[str, Any]] = None):
        super().__init__(fetcher, config)
