"""Page retrieval strategies.

1. StaticFetcher - plain HTTP GET via httpx
2. RenderedFetcher - headless Chromium via Playwright
3. FallbackScraper - combines the two with a fallback policy
4. ContentExtractor - text, metadata, links and images from fetched HTML

Note: Playwright browsers must be installed separately:
    playwright install chromium
"""

from aiscrape.services.scrapers.base import (
    FetchedPage,
    PageFetcher,
    RenderOptions,
    RetrievalMode,
    ScrapeConfig,
)
from aiscrape.services.scrapers.content_extractor import ContentExtractor
from aiscrape.services.scrapers.fallback import (
    DYNAMIC_CONTENT_TOKENS,
    FallbackPredicate,
    FallbackScraper,
    looks_like_dynamic_content,
)
from aiscrape.services.scrapers.rendered_fetcher import BrowserSession, RenderedFetcher
from aiscrape.services.scrapers.static_fetcher import StaticFetcher

__all__ = [
    # Base types
    "FetchedPage",
    "PageFetcher",
    "RenderOptions",
    "RetrievalMode",
    "ScrapeConfig",
    # Fetchers
    "BrowserSession",
    "RenderedFetcher",
    "StaticFetcher",
    # HTML helpers
    "ContentExtractor",
    # Fallback policy
    "DYNAMIC_CONTENT_TOKENS",
    "FallbackPredicate",
    "FallbackScraper",
    "looks_like_dynamic_content",
]
