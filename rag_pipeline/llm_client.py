"""Answer generation over retrieved chunks."""
import asyncio
import logging
from typing import Dict, List, Optional
import httpx

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You answer questions using only the numbered sources in the context. "
    "Cite the sources you use as [n]. If the sources do not contain the answer, "
    "say that the indexed documents do not cover it."
)


class LLMClient:
    """Client for an OpenAI-compatible ``/v1/chat/completions`` endpoint (llama.cpp)."""

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8080",
        model: str = "qwen2.5-coder-7b",
        max_tokens: int = 2048,
        temperature: float = 0.7,
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        """
        Initialize LLM client.

        Args:
            base_url: Base URL or full endpoint URL of the LLM server
            model: Model name
            max_tokens: Default answer length
            temperature: Default sampling temperature
            timeout: Request timeout
            max_retries: Attempts per request
            retry_delay: Base delay between attempts
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.client = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_config(cls, config) -> "LLMClient":
        return cls(
            base_url=config.llm_url,
            model=config.llm_model,
            max_tokens=config.llm_max_tokens,
            temperature=config.llm_temperature,
        )

    @property
    def endpoint(self) -> str:
        if self.base_url.endswith("/v1/chat/completions"):
            return self.base_url
        return f"{self.base_url}/v1/chat/completions"

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def chat(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Run one chat completion.

        Raises:
            RuntimeError: server still failing after all retries
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": temperature if temperature is not None else self.temperature,
            "stream": False,
        }

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(self.endpoint, json=payload)
                response.raise_for_status()
                break
            except httpx.HTTPError as e:
                if attempt < self.max_retries - 1:
                    logger.warning(f"LLM request failed (attempt {attempt + 1}/{self.max_retries}): {e}")
                    await asyncio.sleep(self.retry_delay * (attempt + 1))
                    continue
                raise RuntimeError(f"LLM server error after {self.max_retries} attempts: {e}") from e

        # Format: {"choices": [{"message": {"content": "..."}}]}
        choices = response.json().get("choices") or []
        if not choices:
            logger.warning("LLM server returned no choices")
            return ""
        return choices[0]["message"]["content"].strip()

    async def generate_with_context(
        self,
        query: str,
        context: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """Answer ``query`` from numbered source chunks."""
        messages = [
            {"role": "system", "content": system_prompt or DEFAULT_SYSTEM_PROMPT},
            {"role": "user", "content": f"Sources:\n{context}\n\nQuestion: {query}"},
        ]
        return await self.chat(messages, max_tokens, temperature)

    async def health_check(self) -> bool:
        try:
            root = self.base_url.replace("/v1/chat/completions", "")
            response = await self.client.get(f"{root}/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False
