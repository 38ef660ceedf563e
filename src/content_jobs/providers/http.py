"""HTTP client for image downloads and competitor page analysis."""

from __future__ import annotations

import html as html_lib
import logging
import re
from dataclasses import dataclass, field

import httpx
import trafilatura

from content_jobs.errors import RateLimitSignal

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 2
DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; ContentJobsBot/1.0)"

_HEADING_RE = re.compile(r"<h([2-4])[^>]*>(.*?)</h\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")


@dataclass(slots=True)
class DownloadedFile:
    url: str
    content: bytes
    content_type: str


@dataclass(slots=True)
class PageAnalysis:
    """Main-text statistics of a fetched page."""

    url: str
    word_count: int
    headings: list[str] = field(default_factory=list)


class DownloadError(RuntimeError):
    def __init__(self, url: str, message: str) -> None:
        self.url = url
        super().__init__(f"{message} ({url})")


class HttpFetcher:
    """HTTP client wrapper with retry, timeout, and user-agent configuration."""

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        user_agent: str = DEFAULT_USER_AGENT,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds))
        self._client = httpx.Client(
            timeout=self._timeout,
            headers={"User-Agent": user_agent},
            transport=transport or httpx.HTTPTransport(retries=max_retries),
            follow_redirects=True,
        )

    def download(self, url: str, *, timeout_seconds: float | None = None) -> DownloadedFile:
        """Download a binary resource.

        Raises `RateLimitSignal` on HTTP 429 and `DownloadError` on any other
        failure, timeouts included.
        """

        timeout = httpx.Timeout(timeout_seconds) if timeout_seconds is not None else self._timeout
        try:
            response = self._client.get(url, timeout=timeout)
        except httpx.TimeoutException as error:
            raise DownloadError(url, "Download timeout") from error
        except httpx.HTTPError as error:
            raise DownloadError(url, f"HTTP error: {error}") from error

        if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
            raise RateLimitSignal(f"Rate limit exceeded (429) for {url}")
        if not response.is_success:
            raise DownloadError(url, f"HTTP {response.status_code}")
        return DownloadedFile(
            url=url,
            content=response.content,
            content_type=response.headers.get("content-type", "image/jpeg"),
        )

    def analyze_page(self, url: str) -> PageAnalysis | None:
        """Fetch a page and measure its main text; `None` when unavailable."""

        try:
            response = self._client.get(url)
        except httpx.HTTPError as error:
            logger.warning("HTTP error fetching %s: %s", url, error)
            return None
        if not response.is_success:
            logger.info("Skipping page %s: HTTP %s", url, response.status_code)
            return None
        text = extract_text(response.text, url=url)
        if not text:
            return None
        return PageAnalysis(
            url=url,
            word_count=len(text.split()),
            headings=extract_headings(response.text),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HttpFetcher:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def extract_text(html: str, *, url: str | None = None) -> str:
    """Extract main content text from HTML using trafilatura."""

    if not html or not html.strip():
        return ""
    try:
        text = trafilatura.extract(html, url=url, favor_precision=True, deduplicate=True)
    except Exception as error:  # noqa: BLE001
        logger.warning("trafilatura.extract failed for %s: %s", url or "<unknown>", error)
        return ""
    return text or ""


def extract_headings(html: str, *, limit: int = 20) -> list[str]:
    headings: list[str] = []
    for match in _HEADING_RE.finditer(html):
        text = html_lib.unescape(_TAG_RE.sub("", match.group(2))).strip()
        if text:
            headings.append(" ".join(text.split()))
        if len(headings) >= limit:
            break
    return headings
