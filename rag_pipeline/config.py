"""Configuration for the RAG pipeline server."""
from pathlib import Path
from typing import Literal, Optional
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RAGConfig(BaseSettings):
    """RAG pipeline configuration."""

    model_config = SettingsConfigDict(
        env_prefix="RAG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Vector Store
    vector_store: Literal["qdrant", "memory"] = Field(
        default="qdrant",
        description="Vector store backend"
    )
    qdrant_url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL"
    )
    qdrant_api_key: Optional[str] = Field(
        default=None,
        description="Qdrant Cloud API key (optional)"
    )
    qdrant_chunk_collection: str = Field(
        default="document_chunks",
        description="Collection holding chunk vectors"
    )
    qdrant_query_collection: str = Field(
        default="past_queries",
        description="Collection holding historical query vectors"
    )

    # Embedding Server Integration
    embedding_url: str = Field(
        default="http://127.0.0.1:8001/v1/embeddings",
        description="Embedding server endpoint"
    )
    embedding_model: str = Field(
        default="nomic-embed-text-v1.5",
        description="Embedding model name"
    )
    embedding_dimensions: int = Field(
        default=768,
        description="Embedding vector dimensions"
    )
    embedding_batch_size: int = Field(
        default=64,
        description="Chunks per embedding request"
    )

    # LLM Server Integration
    llm_url: str = Field(
        default="http://127.0.0.1:8080/v1/chat/completions",
        description="LLM server endpoint"
    )
    llm_model: str = Field(
        default="qwen2.5-coder-7b",
        description="LLM model name"
    )
    llm_max_tokens: int = Field(
        default=2048,
        description="Max tokens for LLM response"
    )
    llm_temperature: float = Field(
        default=0.7,
        description="LLM temperature"
    )

    # Chunking
    chunk_size: int = Field(
        default=1000,
        description="Default chunk size in characters"
    )
    chunk_overlap: int = Field(
        default=200,
        description="Default overlap between chunks"
    )
    min_chunk_size: int = Field(
        default=100,
        description="Smallest accepted chunk size"
    )
    max_chunk_size: int = Field(
        default=5000,
        description="Largest accepted chunk size"
    )

    # Search
    default_top_k: int = Field(
        default=5,
        description="Number of chunks to retrieve"
    )
    max_top_k: int = Field(
        default=50,
        description="Upper bound for requested top-k"
    )
    min_search_score: float = Field(
        default=0.5,
        description="Minimum similarity score (0-1)"
    )
    similar_query_min_score: float = Field(
        default=0.8,
        description="Minimum score for similar past queries"
    )

    # Pipeline selection
    default_pipeline: str = Field(
        default="default",
        description="Pipeline used when no URL rule matches"
    )
    rules_file: Optional[Path] = Field(
        default=None,
        description="JSON file with pipelines and URL rules (packaged defaults if unset)"
    )
    rule_cache_ttl: float = Field(
        default=300.0,
        description="Seconds before the URL rule cache is reloaded"
    )

    # Run contexts
    context_max_age: float = Field(
        default=86400.0,
        description="Seconds after the last update before a run context is evicted"
    )
    context_cleanup_interval: float = Field(
        default=3600.0,
        description="Seconds between context sweeps"
    )
    context_cleanup_retry: float = Field(
        default=300.0,
        description="Seconds to wait after a failed sweep"
    )

    # Fetching
    request_timeout: float = Field(
        default=30.0,
        description="HTTP request timeout in seconds"
    )
    request_delay: float = Field(
        default=0.5,
        description="Base delay between fetch retries"
    )
    max_retries: int = Field(
        default=3,
        description="Maximum retry attempts for failed requests"
    )
    max_content_length: int = Field(
        default=200000,
        description="Maximum characters kept per fetched document"
    )
    user_agent: str = Field(
        default="RAG-Pipeline/1.0 (Python)",
        description="User agent for HTTP requests"
    )
    github_token: Optional[str] = Field(
        default=None,
        description="GitHub token for raw content requests (optional)"
    )

    # Server Configuration
    host: str = Field(
        default="127.0.0.1",
        description="Server host"
    )
    port: int = Field(
        default=8002,
        description="Server port"
    )
    verbose: bool = Field(
        default=False,
        description="Enable verbose logging"
    )

    @classmethod
    def from_env(cls) -> "RAGConfig":
        """Load config from environment variables and .env."""
        return cls()
