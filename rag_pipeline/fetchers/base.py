"""Shared HTTP client lifecycle and retry loop for fetchers."""
from abc import ABC, abstractmethod
import asyncio
import logging
from typing import Dict, Optional
import httpx

from .models import FetchConfig, FetchResult

logger = logging.getLogger(__name__)


class HttpFetcher(ABC):
    """
    Base class for fetchers.

    Owns an ``httpx.AsyncClient`` and retries failed requests with a
    linearly growing delay. Subclasses turn a successful response into a
    FetchResult in ``_build_result``.
    """

    source = "http"
    accept = "*/*"

    def __init__(self, config: Optional[FetchConfig] = None):
        """
        Initialize fetcher.

        Args:
            config: Fetch configuration
        """
        self.config = config or FetchConfig()
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": self.accept,
        }

    async def connect(self):
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.request_timeout,
                follow_redirects=True,
                headers=self._headers(),
            )

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _truncate(self, content: str, marker: str = "\n\n[Content truncated]") -> str:
        if len(content) > self.config.max_content_length:
            return content[:self.config.max_content_length] + marker
        return content

    @abstractmethod
    def _build_result(self, url: str, response: httpx.Response, metadata: dict) -> FetchResult:
        """Turn a successful response into a FetchResult."""

    async def fetch(self, url: str, metadata: Optional[dict] = None) -> FetchResult:
        """
        Fetch a URL.

        Transport and HTTP errors are retried; after the last attempt a
        failed FetchResult is returned rather than raised.

        Args:
            url: URL to fetch
            metadata: Additional metadata to include

        Returns:
            FetchResult with content or error
        """
        if self._client is None:
            await self.connect()

        metadata = metadata or {}
        error = "Max retries exceeded"
        status_code = None

        for attempt in range(self.config.max_retries):
            try:
                response = await self._client.get(url)

                for redirect in response.history:
                    logger.warning(
                        f"Redirect {redirect.status_code} detected: {url} -> {response.url}"
                    )

                response.raise_for_status()
                return self._build_result(url, response, metadata)

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                error = f"HTTP {status_code}"
                logger.warning(f"HTTP error fetching {url}: {status_code}")
                # Client errors other than rate limiting will not improve on retry
                if 400 <= status_code < 500 and status_code != 429:
                    break

            except httpx.HTTPError as e:
                error = str(e) or type(e).__name__
                logger.warning(f"Error fetching {url}: {error}")

            if attempt < self.config.max_retries - 1:
                await asyncio.sleep(self.config.request_delay * (attempt + 1))

        return FetchResult(
            url=url,
            success=False,
            status_code=status_code,
            error=error,
            metadata={**metadata, "source": self.source},
        )
