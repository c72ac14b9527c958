"""Content fetchers used by the ingestion stages."""
from .models import FetchConfig, FetchResult
from .web_scraper import WebScraper
from .github_fetcher import GitHubFetcher

__all__ = [
    "FetchConfig",
    "FetchResult",
    "WebScraper",
    "GitHubFetcher",
]
