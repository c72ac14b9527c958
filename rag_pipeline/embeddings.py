"""Embedding server client."""
import asyncio
import logging
from typing import List
import httpx

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Client for an OpenAI-compatible ``/v1/embeddings`` endpoint."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8001",
        model: str = "nomic-embed-text-v1.5",
        timeout: float = 120.0,
        max_retries: int = 3,
        retry_delay: float = 2.0,
    ):
        """
        Initialize embedding client.

        Args:
            base_url: Base URL or full endpoint URL of the embedding server
            model: Model name
            timeout: Request timeout (large batches are slow)
            max_retries: Attempts per request
            retry_delay: Base delay between attempts
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = httpx.AsyncClient(timeout=timeout)
        self.max_retries = max_retries
        self.retry_delay = retry_delay

    @classmethod
    def from_config(cls, config) -> "EmbeddingClient":
        return cls(base_url=config.embedding_url, model=config.embedding_model)

    @property
    def endpoint(self) -> str:
        if self.base_url.endswith("/v1/embeddings"):
            return self.base_url
        return f"{self.base_url}/v1/embeddings"

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def embed(self, text: str) -> List[float]:
        """Embedding for a single text."""
        embeddings = await self.embed_batch([text])
        if not embeddings:
            raise RuntimeError("Embedding server returned no embedding")
        return embeddings[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Embeddings for multiple texts, in input order.

        Args:
            texts: Texts to embed

        Returns:
            One vector per text

        Raises:
            RuntimeError: server still failing after all retries
        """
        if not texts:
            return []

        payload = {"input": texts, "model": self.model}

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(self.endpoint, json=payload)
                response.raise_for_status()

                # Format: {"data": [{"index": 0, "embedding": [...]}, ...]}
                items = response.json().get("data", [])
                items = sorted(items, key=lambda item: item.get("index", 0))
                return [item["embedding"] for item in items]

            except httpx.HTTPError as e:
                if attempt < self.max_retries - 1:
                    logger.warning(
                        f"Embedding request failed (attempt {attempt + 1}/{self.max_retries}): {e}"
                    )
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise RuntimeError(
                    f"Embedding server error after {self.max_retries} attempts: {e}"
                ) from e

        return []

    async def health_check(self) -> bool:
        """Check if embedding server is healthy."""
        try:
            root = self.base_url.replace("/v1/embeddings", "")
            response = await self.client.get(f"{root}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False
