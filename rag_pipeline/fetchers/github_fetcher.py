"""GitHub repository and raw file fetching."""
import logging
import re
from typing import Dict, Optional
import httpx

from .base import HttpFetcher
from .models import FetchResult

logger = logging.getLogger(__name__)

RAW_HOST = "https://raw.githubusercontent.com"
REPO_URL = re.compile(
    r'^https?://github\.com/(?P<owner>[\w\-.]+)/(?P<repo>[\w\-.]+?)(?:\.git)?'
    r'(?:/(?:blob|tree)/(?P<ref>[^/]+)(?:/(?P<path>.+))?)?/?$',
    re.IGNORECASE,
)
RAW_URL = re.compile(
    r'^https?://raw\.githubusercontent\.com/(?P<owner>[^/]+)/(?P<repo>[^/]+)/(?P<ref>[^/]+)/(?P<path>.+)$',
    re.IGNORECASE,
)


def resolve_raw_url(url: str) -> Optional[str]:
    """
    Map a GitHub URL to the raw content URL to fetch.

    ``github.com/owner/repo`` resolves to the README on the default
    branch, ``.../blob/<ref>/<path>`` to that file, and raw URLs are
    returned unchanged. ``.../tree/<ref>/<dir>`` resolves to the README
    of that directory.

    Returns:
        Raw URL, or None if the URL is not a GitHub repository URL
    """
    if RAW_URL.match(url):
        return url

    match = REPO_URL.match(url)
    if not match:
        return None

    owner, repo = match.group("owner"), match.group("repo")
    ref = match.group("ref") or "HEAD"
    path = match.group("path")

    if path is None or "/tree/" in url:
        prefix = f"{path.rstrip('/')}/" if path else ""
        path = f"{prefix}README.md"

    return f"{RAW_HOST}/{owner}/{repo}/{ref}/{path}"


def file_info(raw_url: str) -> Dict[str, str]:
    """Owner, repo, ref and file details from a raw URL."""
    info = {}
    match = RAW_URL.match(raw_url)
    if match:
        info["github_owner"] = match.group("owner")
        info["github_repo"] = match.group("repo")
        info["github_ref"] = match.group("ref")
        info["file_path"] = match.group("path")

    file_name = raw_url.rsplit("/", 1)[-1]
    info["file_name"] = file_name
    if "." in file_name:
        info["file_extension"] = file_name.rsplit(".", 1)[-1]
    return info


class GitHubFetcher(HttpFetcher):
    """Fetcher for raw GitHub content (READMEs, source files)."""

    source = "github"
    accept = "text/plain,application/octet-stream,*/*"

    def _headers(self):
        headers = super()._headers()
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token}"
        return headers

    async def fetch(self, url: str, metadata: Optional[dict] = None) -> FetchResult:
        """
        Fetch the raw content behind a GitHub URL.

        Args:
            url: github.com repository/file URL or raw.githubusercontent.com URL
            metadata: Additional metadata to include

        Returns:
            FetchResult with content or error
        """
        raw_url = resolve_raw_url(url)
        if raw_url is None:
            return FetchResult(
                url=url,
                success=False,
                error=f"Not a GitHub repository URL: {url}",
                metadata=metadata or {},
            )

        if raw_url != url:
            logger.info(f"Resolved {url} -> {raw_url}")

        result = await super().fetch(raw_url, {**(metadata or {}), "source_url": url})
        # Report against the URL that was requested
        return result.model_copy(update={"url": url})

    def _build_result(self, url: str, response: httpx.Response, metadata: dict) -> FetchResult:
        content = self._truncate(response.text, "\n\n/* Content truncated */")
        info = file_info(url)

        title = None
        if "github_repo" in info:
            title = f"{info['github_owner']}/{info['github_repo']}: {info['file_path']}"

        return FetchResult(
            url=url,
            success=True,
            content=content,
            title=title,
            content_type="text/plain",
            status_code=response.status_code,
            metadata={**metadata, "url": url, "source": self.source, **info},
        )
