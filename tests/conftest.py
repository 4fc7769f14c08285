"""Shared pytest fixtures.

Nothing here touches the network, a browser binary or a real API key:
the AI client is a stub, fetchers are AsyncMocks and backoff sleeps are
recorded instead of awaited.

Usage in test files:
    async def test_something(make_pipeline, stub_client):
        pipeline = make_pipeline()
        ...
"""

from __future__ import annotations

from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from aiscrape.services.cache import ResponseCache
from aiscrape.services.pipeline import ExtractionPipeline
from aiscrape.services.providers import AIProvider, ProviderResponse
from aiscrape.services.scrapers import FallbackScraper, FetchedPage, RetrievalMode


SAMPLE_HTML = """
<!DOCTYPE html>
<html>
<head><title>Widget</title></head>
<body>
<h1 class="title">Widget</h1>
<span class="price">$9.99</span>
</body>
</html>
"""


def make_page(url: str = "https://example.com", content: str = SAMPLE_HTML) -> FetchedPage:
    """Build a FetchedPage as a fetcher would return it."""
    return FetchedPage(
        url=url,
        content=content,
        mode=RetrievalMode.STATIC,
        status_code=200,
        content_type="text/html",
    )


class SleepRecorder:
    """Awaitable stand-in for asyncio.sleep that records delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture()
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture()
def stub_client() -> MagicMock:
    """AI client stub returning a fixed extraction."""
    client = MagicMock()
    client.provider = AIProvider.OPENAI
    client.model = "gpt-4o-mini"
    client.provider_id = "openai:gpt-4o-mini"
    client.provider_name = "OpenAI"
    client.max_content_length = 50_000
    client.validate_api_key.return_value = True
    client.extract = AsyncMock(
        return_value=ProviderResponse(
            data={"title": "Widget", "price": 9.99},
            raw_response='{"title": "Widget", "price": 9.99}',
            model="gpt-4o-mini",
        )
    )
    client.close = AsyncMock()
    return client


@pytest.fixture()
def static_fetcher() -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=make_page())
    fetcher.close = AsyncMock()
    return fetcher


@pytest.fixture()
def rendered_fetcher() -> MagicMock:
    fetcher = MagicMock()
    fetcher.fetch = AsyncMock(return_value=make_page())
    fetcher.close = AsyncMock()
    return fetcher


@pytest.fixture()
def make_pipeline(
    stub_client: MagicMock,
    static_fetcher: MagicMock,
    rendered_fetcher: MagicMock,
    sleep_recorder: SleepRecorder,
) -> Callable[..., ExtractionPipeline]:
    """Factory building a pipeline wired to the stubs above."""

    def factory(**kwargs: Any) -> ExtractionPipeline:
        scraper = FallbackScraper(
            static_fetcher=static_fetcher,
            rendered_fetcher=rendered_fetcher,
        )
        kwargs.setdefault("cache", ResponseCache())
        kwargs.setdefault("prefer_rendered", False)
        kwargs.setdefault("retry_base_delay_seconds", 1.0)
        kwargs.setdefault("retry_multiplier", 2.0)
        return ExtractionPipeline(
            stub_client,
            scraper=scraper,
            sleep=sleep_recorder,
            **kwargs,
        )

    return factory
