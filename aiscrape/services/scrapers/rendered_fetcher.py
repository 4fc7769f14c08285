"""Headless-browser page retrieval using Playwright.

A single BrowserSession owns one lazily launched Chromium process which is
shared by all rendered fetches. Each fetch opens its own page and always
closes it, whatever the outcome; the browser itself is closed once, at
shutdown, by whoever owns the session.

Usage:
    async with RenderedFetcher(config) as fetcher:
        page = await fetcher.fetch("https://example.com")
        title = await fetcher.evaluate("https://example.com", "() => document.title")

Note: Playwright browsers must be installed separately:
    playwright install chromium
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, TypeVar

from aiscrape.exceptions import OperationTimeoutError, RenderedScrapeError
from aiscrape.services.scrapers.base import (
    FetchedPage,
    RenderOptions,
    RetrievalMode,
    ScrapeConfig,
)

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright, Route

logger = logging.getLogger(__name__)

LAUNCH_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--no-default-browser-check",
    "--disable-extensions",
)

SCROLL_TO_BOTTOM_JS = "() => window.scrollTo(0, document.body.scrollHeight)"
REMOVE_NODES_JS = "(selector) => document.querySelectorAll(selector).forEach((el) => el.remove())"

SleepFunc = Callable[[float], Awaitable[None]]

R = TypeVar("R")


class BrowserSession:
    """Explicitly owned, lazily started headless browser.

    Attributes:
        config: Retrieval configuration (headless mode, viewport, agent).
    """

    def __init__(self, config: ScrapeConfig | None = None) -> None:
        self.config = config or ScrapeConfig.from_settings()
        self._browser: Browser | None = None
        self._playwright: Playwright | None = None
        self._launch_lock = asyncio.Lock()

    @property
    def is_started(self) -> bool:
        return self._browser is not None

    async def _ensure_browser(self) -> Browser:
        """Launch the browser on first use.

        Concurrent first calls wait on a lock so only one process starts.

        Raises:
            RenderedScrapeError: If the browser fails to launch.
            OperationTimeoutError: If Playwright times out launching it.
        """
        if self._browser is not None:
            return self._browser

        async with self._launch_lock:
            if self._browser is None:
                try:
                    # Import here to avoid loading Playwright until needed
                    from playwright.async_api import async_playwright

                    self._playwright = await async_playwright().start()
                    self._browser = await self._playwright.chromium.launch(
                        headless=self.config.browser_headless,
                        args=list(LAUNCH_ARGS),
                    )
                    logger.debug(
                        "Playwright browser launched (headless=%s)",
                        self.config.browser_headless,
                    )
                except asyncio.CancelledError:
                    await self._stop_playwright()
                    raise
                except Exception as e:
                    logger.error("Failed to launch Playwright browser: %s", e)
                    await self._stop_playwright()
                    if _is_playwright_timeout(e):
                        raise OperationTimeoutError(
                            f"Browser launch timed out: {e}",
                            timeout=self.config.timeout_seconds,
                            operation="launch browser",
                        ) from e
                    raise RenderedScrapeError(
                        f"Failed to launch browser: {e}", url="browser"
                    ) from e

        return self._browser

    @asynccontextmanager
    async def acquire_page(self) -> AsyncIterator[Page]:
        """Open a configured page that is closed on every exit path."""
        browser = await self._ensure_browser()
        page = await browser.new_page(
            user_agent=self.config.browser_user_agent,
            viewport={
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
        )
        try:
            if self.config.block_images:
                await page.route("**/*", _block_images)
            yield page
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.warning("Error closing page: %s", e)

    async def close(self) -> None:
        """Close the browser and stop Playwright. Safe to call twice."""
        if self._browser:
            try:
                await self._browser.close()
                logger.debug("Playwright browser closed")
            except Exception as e:
                logger.warning("Error closing browser: %s", e)
            self._browser = None

        await self._stop_playwright()

    async def _stop_playwright(self) -> None:
        if self._playwright:
            try:
                await self._playwright.stop()
                logger.debug("Playwright stopped")
            except Exception as e:
                logger.warning("Error stopping Playwright: %s", e)
            self._playwright = None

    async def __aenter__(self) -> BrowserSession:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


def _is_playwright_timeout(error: Exception) -> bool:
    from playwright.async_api import TimeoutError as PlaywrightTimeoutError

    return isinstance(error, PlaywrightTimeoutError)


async def _block_images(route: Route) -> None:
    if route.request.resource_type == "image":
        await route.abort()
    else:
        await route.continue_()


class RenderedFetcher:
    """Fetch pages by rendering them in the shared headless browser."""

    def __init__(
        self,
        config: ScrapeConfig | None = None,
        session: BrowserSession | None = None,
        render_options: RenderOptions | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: Retrieval configuration. If None, built from settings.
            session: Browser session to use. If None, one is created and
                owned (closed by close()).
            render_options: Default selector waits and node removals.
            sleep: Awaitable sleep used for the settle delay.
        """
        self.config = config or ScrapeConfig.from_settings()
        self._owns_session = session is None
        self.session = session or BrowserSession(self.config)
        self.render_options = render_options or RenderOptions()
        self._sleep = sleep

    async def fetch(
        self,
        url: str,
        options: RenderOptions | None = None,
    ) -> FetchedPage:
        """Render ``url`` and return the serialized document.

        Raises:
            RenderedScrapeError: If the browser fails or the page returns
                an error status.
            OperationTimeoutError: If opening the page or rendering exceeds
                the timeout.
        """
        start = time.perf_counter()
        content, status = await self._run_in_page(url, options, _page_content)

        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.debug("Playwright rendered %d chars from %s", len(content), url)
        return FetchedPage(
            url=url,
            content=content,
            mode=RetrievalMode.RENDERED,
            status_code=status,
            content_type="text/html",
            fetch_time_ms=elapsed_ms,
        )

    async def evaluate(
        self,
        url: str,
        script: str,
        arg: Any = None,
        options: RenderOptions | None = None,
    ) -> Any:
        """Render ``url`` and return the result of ``script`` run in the page.

        ``script`` is a JavaScript function expression; ``arg`` is passed to
        it as its single argument.
        """

        async def run_script(page: Page) -> Any:
            return await page.evaluate(script, arg)

        result, _ = await self._run_in_page(url, options, run_script)
        return result

    async def screenshot(
        self,
        url: str,
        *,
        full_page: bool = True,
        options: RenderOptions | None = None,
    ) -> bytes:
        """Render ``url`` and return a PNG screenshot of it."""

        async def capture(page: Page) -> bytes:
            return await page.screenshot(full_page=full_page, type="png")

        image, _ = await self._run_in_page(url, options, capture)
        logger.debug("Captured %d byte screenshot of %s", len(image), url)
        return image

    async def _run_in_page(
        self,
        url: str,
        options: RenderOptions | None,
        action: Callable[[Page], Awaitable[R]],
    ) -> tuple[R, int]:
        """Open a page, render ``url`` and run ``action`` under one deadline.

        The deadline covers browser launch and page creation as well as
        navigation, so a hang anywhere becomes OperationTimeoutError.
        """
        from playwright.async_api import Error as PlaywrightError
        from playwright.async_api import TimeoutError as PlaywrightTimeoutError

        opts = options or self.render_options
        timeout = self.config.timeout_seconds
        try:
            return await asyncio.wait_for(self._render_then(url, opts, action), timeout)
        except (asyncio.TimeoutError, PlaywrightTimeoutError) as e:
            raise OperationTimeoutError(
                f"Page rendering timed out after {timeout}s",
                timeout=timeout,
                operation=f"render {url}",
            ) from e
        except RenderedScrapeError:
            raise
        except PlaywrightError as e:
            logger.warning("Playwright rendering failed for %s: %s", url, e)
            raise RenderedScrapeError(f"Playwright rendering failed: {e}", url) from e

    async def _render_then(
        self,
        url: str,
        opts: RenderOptions,
        action: Callable[[Page], Awaitable[R]],
    ) -> tuple[R, int]:
        async with self.session.acquire_page() as page:
            page.set_default_timeout(self.config.timeout_seconds * 1000)
            logger.debug("Rendering URL with Playwright: %s", url)
            status = await self._render(page, url, opts)
            return await action(page), status

    async def _render(self, page: Page, url: str, opts: RenderOptions) -> int:
        response = await page.goto(url, wait_until="networkidle")
        if response is None or not response.ok:
            status = response.status if response else None
            raise RenderedScrapeError(
                f"Failed to load page: HTTP {status if status is not None else 'unknown'}",
                url,
                status,
            )

        if opts.wait_for_selector:
            await page.wait_for_selector(opts.wait_for_selector)
        if opts.wait_for_function:
            await page.wait_for_function(opts.wait_for_function)

        # Let late scripts finish, then trigger lazy-loaded content
        await self._sleep(self.config.render_settle_ms / 1000)
        await page.evaluate(SCROLL_TO_BOTTOM_JS)

        for selector in opts.remove_selectors:
            try:
                await page.evaluate(REMOVE_NODES_JS, selector)
            except Exception as e:
                logger.warning("Failed to remove elements %r: %s", selector, e)

        return response.status

    async def close(self) -> None:
        """Close the browser session if this fetcher created it."""
        if self._owns_session:
            await self.session.close()

    async def __aenter__(self) -> RenderedFetcher:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


async def _page_content(page: Page) -> str:
    return await page.content()
