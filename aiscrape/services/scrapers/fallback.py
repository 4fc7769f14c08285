"""Fallback policy combining the static and rendered fetchers.

Rendered-preferred: render first, fall back to static, fail with both
errors. Static-preferred (default): fetch statically and render only when
retrying or when the fallback predicate accepts the static error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from aiscrape.exceptions import RenderedScrapeError, ScrapeError
from aiscrape.services.scrapers.base import FetchedPage, RenderOptions, ScrapeConfig
from aiscrape.services.scrapers.rendered_fetcher import RenderedFetcher
from aiscrape.services.scrapers.static_fetcher import StaticFetcher

logger = logging.getLogger(__name__)

FallbackPredicate = Callable[[Exception], bool]

DYNAMIC_CONTENT_TOKENS: tuple[str, ...] = (
    "javascript",
    "react",
    "vue",
    "angular",
    "spa",
    "dynamic",
    "empty",
    "no content",
)


def looks_like_dynamic_content(error: Exception) -> bool:
    """Default predicate: does the error text hint at client-side rendering?"""
    text = str(error).lower()
    return any(token in text for token in DYNAMIC_CONTENT_TOKENS)


class FallbackScraper:
    """Retrieve a page with one strategy, falling back to the other.

    Owns both fetchers (and through the rendered one, the shared browser
    session). close() releases them.
    """

    def __init__(
        self,
        config: ScrapeConfig | None = None,
        static_fetcher: StaticFetcher | None = None,
        rendered_fetcher: RenderedFetcher | None = None,
        should_fallback: FallbackPredicate = looks_like_dynamic_content,
    ) -> None:
        self.config = config or ScrapeConfig.from_settings()
        self.static_fetcher = static_fetcher or StaticFetcher(self.config)
        self._rendered_fetcher = rendered_fetcher
        self.should_fallback = should_fallback

    @property
    def rendered_fetcher(self) -> RenderedFetcher:
        """Created on first use so static-only runs never touch Playwright."""
        if self._rendered_fetcher is None:
            self._rendered_fetcher = RenderedFetcher(self.config)
        return self._rendered_fetcher

    async def fetch(
        self,
        url: str,
        *,
        prefer_rendered: bool = False,
        is_retry: bool = False,
        render_options: RenderOptions | None = None,
    ) -> FetchedPage:
        """Fetch ``url`` according to the fallback policy.

        Raises:
            ScrapeError: If the chosen strategies fail. A combined failure
                lists both underlying errors in ``causes``.
            OperationTimeoutError: If a static-only attempt times out.
        """
        if prefer_rendered:
            return await self._rendered_then_static(url, render_options)
        return await self._static_then_rendered(url, is_retry, render_options)

    async def _rendered_then_static(
        self,
        url: str,
        render_options: RenderOptions | None,
    ) -> FetchedPage:
        try:
            return await self.rendered_fetcher.fetch(url, render_options)
        except Exception as rendered_error:
            logger.info(
                "Rendered fetch failed for %s, falling back to static: %s",
                url,
                rendered_error,
            )
            try:
                return await self.static_fetcher.fetch(url)
            except Exception as static_error:
                raise ScrapeError(
                    f"Both rendered and static scraping failed. "
                    f"Rendered: {rendered_error}; Static: {static_error}",
                    url,
                    causes=(rendered_error, static_error),
                ) from static_error

    async def _static_then_rendered(
        self,
        url: str,
        is_retry: bool,
        render_options: RenderOptions | None,
    ) -> FetchedPage:
        try:
            return await self.static_fetcher.fetch(url)
        except Exception as static_error:
            if not (is_retry or self.should_fallback(static_error)):
                raise

            logger.info(
                "Static fetch failed for %s, trying rendered fetch (retry=%s): %s",
                url,
                is_retry,
                static_error,
            )
            try:
                return await self.rendered_fetcher.fetch(url, render_options)
            except Exception as rendered_error:
                raise RenderedScrapeError(
                    f"Both static and rendered scraping failed. "
                    f"Static: {static_error}; Rendered: {rendered_error}",
                    url,
                    causes=(static_error, rendered_error),
                ) from rendered_error

    async def close(self) -> None:
        """Close the HTTP client and the browser session, if started."""
        await self.static_fetcher.close()
        if self._rendered_fetcher is not None:
            await self._rendered_fetcher.close()
