"""Pydantic models for content fetching."""
from typing import Any, Dict, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from ..models import utcnow


class FetchResult(BaseModel):
    """Result of fetching a single URL."""

    url: str
    success: bool
    content: Optional[str] = None
    title: Optional[str] = None
    content_type: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[str] = None
    fetch_time: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FetchConfig(BaseModel):
    """HTTP settings shared by the fetchers."""

    request_delay: float = Field(
        default=0.5,
        description="Base delay between retries (multiplied by attempt number)"
    )
    max_content_length: int = Field(
        default=200000,
        description="Maximum characters kept per document"
    )
    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds"
    )
    max_retries: int = Field(
        default=3,
        description="Maximum attempts per URL"
    )
    user_agent: str = Field(
        default="RAG-Pipeline/1.0 (Python)",
        description="User agent for HTTP requests"
    )
    github_token: Optional[str] = Field(
        default=None,
        description="Bearer token for GitHub requests"
    )

    @classmethod
    def from_config(cls, config) -> "FetchConfig":
        """Build from a RAGConfig."""
        return cls(
            request_delay=config.request_delay,
            max_content_length=config.max_content_length,
            request_timeout=config.request_timeout,
            max_retries=config.max_retries,
            user_agent=config.user_agent,
            github_token=config.github_token,
        )
