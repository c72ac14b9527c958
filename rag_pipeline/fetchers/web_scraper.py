"""Web page fetching with HTML text extraction."""
import logging
from typing import Optional
import httpx
from bs4 import BeautifulSoup

from .base import HttpFetcher
from .models import FetchResult

logger = logging.getLogger(__name__)

# Elements that never carry article text
NOISE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript", "iframe", "svg", "form"]
CONTENT_MARKERS = ["content", "main-content", "article-body", "post-content", "documentation"]


def extract_text(soup: BeautifulSoup) -> str:
    """
    Extract readable text from a parsed page.

    Noise elements are removed and the main content container is preferred
    over the whole body.
    """
    for tag in soup.find_all(NOISE_TAGS):
        tag.decompose()

    container = (
        soup.find("main")
        or soup.find("article")
        or soup.find(class_=CONTENT_MARKERS)
        or soup.find(id=CONTENT_MARKERS)
        or soup.find("body")
        or soup
    )

    # One space between text nodes so sentence boundaries survive
    text = container.get_text(separator=" ", strip=True)
    return " ".join(text.split())


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    """Page title from og:title, <title> or the first <h1>."""
    og_title = soup.find("meta", property="og:title")
    if og_title and og_title.get("content"):
        return og_title["content"].strip()

    for tag_name in ("title", "h1"):
        tag = soup.find(tag_name)
        if tag and tag.get_text(strip=True):
            return tag.get_text(strip=True)

    return None


class WebScraper(HttpFetcher):
    """HTTP fetcher with HTML content extraction."""

    source = "web"
    accept = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"

    def _headers(self):
        headers = super()._headers()
        headers["Accept-Language"] = "en-US,en;q=0.5"
        return headers

    def _build_result(self, url: str, response: httpx.Response, metadata: dict) -> FetchResult:
        content_type = response.headers.get("content-type", "")

        if "html" in content_type:
            soup = BeautifulSoup(response.text, "lxml")
            # Title first: extraction decomposes header elements
            title = extract_title(soup)
            content = extract_text(soup)
        else:
            title = None
            content = response.text.strip()

        content = self._truncate(content)
        logger.debug(f"Extracted {len(content)} characters from {url}")

        result_metadata = {**metadata, "url": url, "source": self.source}
        if title:
            result_metadata["title"] = title

        return FetchResult(
            url=url,
            success=True,
            content=content,
            title=title,
            content_type=content_type,
            status_code=response.status_code,
            metadata=result_metadata,
        )
