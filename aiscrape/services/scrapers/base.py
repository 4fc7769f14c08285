"""Base types shared by the page fetchers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from aiscrape.core.config import (
    DEFAULT_BROWSER_USER_AGENT,
    DEFAULT_USER_AGENT,
    Settings,
    settings as default_settings,
)


class RetrievalMode(str, Enum):
    """How a page was (or should be) retrieved."""

    STATIC = "static"
    RENDERED = "rendered"


@dataclass(frozen=True)
class ScrapeConfig:
    """Configuration for page retrieval."""

    timeout_seconds: float = 30.0
    follow_redirects: bool = True
    max_redirects: int = 5
    user_agent: str = DEFAULT_USER_AGENT
    extra_headers: dict[str, str] = field(default_factory=dict)
    browser_headless: bool = True
    browser_user_agent: str = DEFAULT_BROWSER_USER_AGENT
    viewport_width: int = 1366
    viewport_height: int = 768
    block_images: bool = False
    render_settle_ms: int = 2000

    @classmethod
    def from_settings(cls, source: Settings | None = None) -> ScrapeConfig:
        """Build a config from application settings."""
        s = source or default_settings
        return cls(
            timeout_seconds=s.request_timeout_seconds,
            follow_redirects=s.follow_redirects,
            max_redirects=s.max_redirects,
            user_agent=s.user_agent,
            browser_headless=s.browser_headless,
            browser_user_agent=s.browser_user_agent,
            viewport_width=s.viewport_width,
            viewport_height=s.viewport_height,
            block_images=s.block_images,
            render_settle_ms=s.render_settle_ms,
        )


@dataclass(frozen=True)
class RenderOptions:
    """Per-call options for a rendered fetch."""

    wait_for_selector: str | None = None
    wait_for_function: str | None = None  # JS expression that must become truthy
    remove_selectors: tuple[str, ...] = ()


@dataclass
class FetchedPage:
    """Content retrieved from a URL."""

    url: str
    content: str
    mode: RetrievalMode
    status_code: int | None = None
    content_type: str = ""
    fetch_time_ms: float = 0.0


class PageFetcher(Protocol):
    """Protocol for a single retrieval strategy."""

    async def fetch(self, url: str) -> FetchedPage:
        """Retrieve ``url`` and return its content.

        Raises:
            ScrapeError: If the page cannot be retrieved.
            OperationTimeoutError: If the deadline is exceeded.
        """
        ...

    async def close(self) -> None:
        """Release any resources held by the fetcher."""
        ...
