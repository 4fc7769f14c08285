"""Static HTTP page retrieval using httpx."""

from __future__ import annotations

import asyncio
import logging
import re
import time

import httpx

from aiscrape.exceptions import OperationTimeoutError, ScrapeError
from aiscrape.services.scrapers.base import FetchedPage, RetrievalMode, ScrapeConfig

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Upgrade-Insecure-Requests": "1",
}

ACCEPTED_CONTENT_TYPES = ("html", "xml", "text/plain")
CHARSET_PATTERN = re.compile(r"charset=([^;\s]+)", re.IGNORECASE)
HTML_MARKERS = ("<body", "<head", "<title")
BODY_PREVIEW_CHARS = 200


def looks_like_html(body: str) -> bool:
    """Heuristic check for an HTML document regardless of declared type."""
    text = body.strip().lower()
    return (
        text.startswith("<!doctype html")
        or text.startswith("<html")
        or any(marker in text for marker in HTML_MARKERS)
    )


def decode_body(content: bytes, content_type: str) -> str:
    """Decode a response body using its declared charset.

    Falls back to a lenient UTF-8 decode when the charset is unknown or the
    bytes do not match it.
    """
    match = CHARSET_PATTERN.search(content_type)
    charset = match.group(1).strip("\"'").lower() if match else "utf-8"
    try:
        return content.decode(charset)
    except (LookupError, UnicodeDecodeError):
        logger.debug("Could not decode body as %s, using lenient utf-8", charset)
        return content.decode("utf-8", errors="replace")


class StaticFetcher:
    """Fetch pages with a plain HTTP GET.

    Redirects are followed manually so the hop limit and the
    redirects-disabled case produce a ScrapeError with the redirect status.

    Attributes:
        config: Retrieval configuration.
    """

    def __init__(
        self,
        config: ScrapeConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Retrieval configuration. If None, built from settings.
            client: Optional preconfigured client (not closed by close()).
        """
        self.config = config or ScrapeConfig.from_settings()
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                follow_redirects=False,
            )
        return self._client

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            **DEFAULT_HEADERS,
            **self.config.extra_headers,
        }

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch ``url`` and return its decoded body.

        Raises:
            ScrapeError: On network failure, a non-2xx status, a redirect
                that cannot be followed, or a non-HTML content type.
            OperationTimeoutError: If the request exceeds the timeout.
        """
        timeout = self.config.timeout_seconds
        start = time.perf_counter()
        try:
            page = await asyncio.wait_for(self._fetch_following_redirects(url), timeout)
        except asyncio.TimeoutError as e:
            raise OperationTimeoutError(
                f"HTTP request timed out after {timeout}s",
                timeout=timeout,
                operation=f"HTTP GET {url}",
            ) from e

        page.fetch_time_ms = (time.perf_counter() - start) * 1000
        logger.debug(
            "Fetched %d chars from %s in %.0fms",
            len(page.content),
            page.url,
            page.fetch_time_ms,
        )
        return page

    async def _fetch_following_redirects(self, url: str) -> FetchedPage:
        current = url
        for hop in range(self.config.max_redirects + 1):
            response = await self._get(current)

            if not response.is_redirect:
                return self._to_page(url, response)

            if not self.config.follow_redirects:
                raise ScrapeError(
                    f"Redirect not followed: received HTTP {response.status_code} "
                    "but redirect following is disabled",
                    url,
                    response.status_code,
                )

            location = response.headers["location"]
            current = str(response.url.join(location))
            logger.debug("Following redirect %d from %s to %s", hop + 1, url, current)

        raise ScrapeError(
            f"Too many redirects (limit {self.config.max_redirects})",
            url,
            response.status_code,
        )

    async def _get(self, url: str) -> httpx.Response:
        try:
            return await self.client.get(url, headers=self._headers())
        except httpx.TimeoutException as e:
            timeout = self.config.timeout_seconds
            raise OperationTimeoutError(
                f"HTTP request timed out after {timeout}s: {e}",
                timeout=timeout,
                operation=f"HTTP GET {url}",
            ) from e
        except httpx.RequestError as e:
            raise ScrapeError(f"Network error fetching {url}: {e}", url) from e

    def _to_page(self, url: str, response: httpx.Response) -> FetchedPage:
        status = response.status_code
        if not 200 <= status < 300:
            body = response.text
            if len(body) > BODY_PREVIEW_CHARS:
                body = f"{body[:BODY_PREVIEW_CHARS]}..."
            raise ScrapeError(
                f"HTTP request failed with status {status}: {body}",
                url,
                status,
            )

        content_type = response.headers.get("content-type", "")
        content = decode_body(response.content, content_type)
        if (
            content_type
            and not any(accepted in content_type.lower() for accepted in ACCEPTED_CONTENT_TYPES)
            and not looks_like_html(content)
        ):
            raise ScrapeError(
                f"Unsupported content type: {content_type}",
                url,
                status,
            )

        return FetchedPage(
            url=str(response.url),
            content=content,
            mode=RetrievalMode.STATIC,
            status_code=status,
            content_type=content_type,
        )

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
