"""Page metadata lookup used to prefill a bookmark before it is saved."""

import logging
import re
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel

from .errors import ValidationError

logger = logging.getLogger(__name__)

# Some sites refuse obvious bots.
USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
FETCH_FAILED_DESCRIPTION = "Failed to fetch page information"
SUMMARY_MAX_LENGTH = 200

FAVICON_RELS = ("icon", "shortcut icon", "apple-touch-icon", "apple-touch-icon-precomposed")
SUMMARY_SELECTORS = ("main p", "article p", "[role=main] p", ".content p", "#content p", "p")
BOILERPLATE_WORDS = re.compile(r"(Home|About|Contact|Menu|Navigation|Cookie|Privacy|Terms)\s*")


class UrlMetadataError(Exception):
    """The page could not be fetched."""

    pass


class UrlMetadata(BaseModel):
    """What a page says about itself. `error` is set when it could not be read."""

    url: str
    title: str
    description: Optional[str] = None
    favicon: Optional[str] = None
    og_image: Optional[str] = None
    site_name: Optional[str] = None
    author: Optional[str] = None
    keywords: Optional[str] = None
    error: Optional[str] = None


def host_name(url: str) -> str:
    """Host part of url, or url itself when it has none.

    Example:
        "https://www.example.com/a?b=1" -> "www.example.com"
    """
    return urlparse(url).hostname or url


def _truncate(text: str) -> str:
    if len(text) > SUMMARY_MAX_LENGTH:
        return text[: SUMMARY_MAX_LENGTH - 3] + "..."
    return text


class UrlMetadataFetcher:
    """Fetches a page and reads its title, description, favicon and social tags."""

    def __init__(
        self,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        max_response_size: int = 10 * 1024 * 1024,
    ):
        """Initialize the fetcher.

        Args:
            timeout: HTTP request timeout in seconds
            client: Shared client; one following redirects is created if None
            max_response_size: Larger pages are treated as unreadable
        """
        self.timeout = timeout
        self.max_response_size = max_response_size
        self._client = client
        self._owns_client = client is None

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: Optional[str]) -> UrlMetadata:
        """Describe the page at url.

        Pages that cannot be fetched still produce metadata: the host name
        as title and a note in `description` and `error`.

        Raises:
            ValidationError: If url is missing or blank
        """
        url = (url or "").strip()
        if not url:
            raise ValidationError("URL is required", field="url")

        scheme = urlparse(url).scheme
        if scheme not in ("http", "https"):
            return self._fallback(url, f"URL scheme '{scheme}' not allowed, use http:// or https://")

        try:
            html, final_url = await self.fetch_page(url)
        except UrlMetadataError as e:
            logger.warning(f"Failed to fetch {url}: {e}")
            return self._fallback(url, str(e))

        soup = BeautifulSoup(html, "html.parser")
        return self.parse(soup, url, final_url)

    async def fetch_page(self, url: str) -> Tuple[str, str]:
        """Return the page HTML and the URL it was served from after redirects.

        Raises:
            UrlMetadataError: On timeouts, transport errors, HTTP errors or oversized pages
        """
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        try:
            response = await self._client.get(url, headers={"User-Agent": USER_AGENT})
        except httpx.TimeoutException as e:
            raise UrlMetadataError(f"Request timed out after {self.timeout}s: {url}") from e
        except httpx.TransportError as e:
            raise UrlMetadataError(f"Network error: {e}") from e

        if response.status_code == 404:
            raise UrlMetadataError(f"Page not found (404): {url}")
        elif response.status_code >= 500:
            raise UrlMetadataError(f"Server error ({response.status_code}): {url}")
        elif response.status_code >= 400:
            raise UrlMetadataError(f"Client error ({response.status_code}): {url}")

        content_type = response.headers.get("content-type", "").lower()
        if content_type and "html" not in content_type and "text/plain" not in content_type:
            logger.warning(f"Non-HTML content-type for {url}: {content_type}")

        if len(response.content) > self.max_response_size:
            raise UrlMetadataError(
                f"Response too large: {len(response.content)} bytes (max {self.max_response_size})"
            )
        return response.text, str(response.url)

    def parse(self, soup: BeautifulSoup, url: str, base_url: Optional[str] = None) -> UrlMetadata:
        """Read metadata from a parsed page. Relative links resolve against base_url."""
        base_url = base_url or url
        og_image = self._meta(soup, "og:image")
        return UrlMetadata(
            url=url,
            title=self._title(soup, url),
            description=self._description(soup),
            favicon=self._favicon(soup, base_url),
            og_image=urljoin(base_url, og_image) if og_image else None,
            site_name=self._meta(soup, "og:site_name"),
            author=self._meta(soup, "author") or self._meta(soup, "article:author"),
            keywords=self._meta(soup, "keywords"),
        )

    def _fallback(self, url: str, error: str) -> UrlMetadata:
        return UrlMetadata(
            url=url,
            title=host_name(url),
            description=FETCH_FAILED_DESCRIPTION,
            error=error,
        )

    def _meta(self, soup: BeautifulSoup, key: str) -> Optional[str]:
        """Content of <meta property=key> or <meta name=key>, if not blank."""
        for attr in ("property", "name"):
            tag = soup.find("meta", attrs={attr: key})
            if tag is not None:
                content = (tag.get("content") or "").strip()
                return content or None
        return None

    def _title(self, soup: BeautifulSoup, url: str) -> str:
        """Social title first, then <title>, then the first <h1>, then the host."""
        title = self._meta(soup, "og:title") or self._meta(soup, "twitter:title")
        if title:
            return title

        if soup.title and soup.title.string and soup.title.string.strip():
            return soup.title.string.strip()

        h1 = soup.find("h1")
        if h1 and h1.get_text(strip=True):
            return h1.get_text(" ", strip=True)

        return host_name(url)

    def _description(self, soup: BeautifulSoup) -> Optional[str]:
        return (
            self._meta(soup, "og:description")
            or self._meta(soup, "twitter:description")
            or self._meta(soup, "description")
            or self._summary(soup)
        )

    def _summary(self, soup: BeautifulSoup) -> Optional[str]:
        """First meaningful paragraph, else the first long sentence of the body."""
        for selector in SUMMARY_SELECTORS:
            paragraph = soup.select_one(selector)
            if paragraph is None:
                continue
            text = paragraph.get_text(" ", strip=True)
            if len(text) > 20:
                return _truncate(text)

        body = soup.body or soup
        body_text = body.get_text(" ", strip=True)
        if len(body_text) <= 50:
            return None
        body_text = BOILERPLATE_WORDS.sub("", body_text)
        sentences: List[str] = re.split(r"[.!?]", body_text)
        for sentence in sentences:
            sentence = sentence.strip()
            if len(sentence) > 20:
                return _truncate(sentence)
        return None

    def _favicon(self, soup: BeautifulSoup, base_url: str) -> Optional[str]:
        links = soup.find_all("link", href=True)
        for wanted in FAVICON_RELS:
            for link in links:
                rel = link.get("rel") or []
                if isinstance(rel, str):
                    rel = rel.split()
                if " ".join(rel).lower() == wanted:
                    return urljoin(base_url, link["href"])

        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            return None
        return f"{parsed.scheme}://{parsed.netloc}/favicon.ico"
