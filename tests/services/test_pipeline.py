"""Tests for the extraction pipeline (single URL and batch)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from aiscrape.exceptions import (
    BatchError,
    OperationTimeoutError,
    ParsingError,
    ProviderRateLimitError,
    RenderedScrapeError,
    SchemaValidationError,
    ScrapeError,
    URLValidationError,
)
from aiscrape.schemas.extraction import ExtractionRequest
from aiscrape.services.cache import ResponseCache
from aiscrape.services.providers import ProviderResponse
from aiscrape.services.scrapers import FetchedPage, RetrievalMode


SCHEMA = {"title": "string", "price": "number"}


def page_for(url: str, content: str = "<html><body>Widget</body></html>") -> FetchedPage:
    return FetchedPage(url=url, content=content, mode=RetrievalMode.STATIC, status_code=200)


class TestExtractSuccess:
    """Test suite for successful single-URL extraction."""

    @pytest.mark.asyncio
    async def test_scenario_static_fetch_and_ai_extraction(
        self, make_pipeline, static_fetcher, stub_client
    ) -> None:
        """Test fixed HTML plus a stubbed AI answer yields a success result."""
        pipeline = make_pipeline()

        result = await pipeline.extract(
            ExtractionRequest(url="https://example.com", field_schema=SCHEMA)
        )

        assert result.success is True
        assert result.data == {"title": "Widget", "price": 9.99}
        assert result.error is None
        assert result.provider_id == "openai:gpt-4o-mini"
        assert result.url == "https://example.com"
        static_fetcher.fetch.assert_awaited_once_with("https://example.com")
        stub_client.extract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_schema_is_normalized_before_extraction(
        self, make_pipeline, stub_client
    ) -> None:
        """Test the AI client receives trimmed names and lower-case types."""
        pipeline = make_pipeline()

        await pipeline.extract_url("https://example.com", {" Title ": " STRING "})

        _, schema, _ = stub_client.extract.await_args.args
        assert schema == {"Title": "string"}

    @pytest.mark.asyncio
    async def test_custom_instructions_are_forwarded(self, make_pipeline, stub_client) -> None:
        """Test per-request instructions reach the generation options."""
        pipeline = make_pipeline()

        await pipeline.extract_url(
            "https://example.com", SCHEMA, custom_instructions="Prices in USD"
        )

        options = stub_client.extract.await_args.args[2]
        assert options.instructions == "Prices in USD"

    @pytest.mark.asyncio
    async def test_prefer_rendered_uses_rendered_fetch_first(
        self, make_pipeline, static_fetcher, rendered_fetcher
    ) -> None:
        """Test the per-request preference overrides the pipeline default."""
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, prefer_rendered=True)

        assert result.success is True
        rendered_fetcher.fetch.assert_awaited_once()
        static_fetcher.fetch.assert_not_awaited()


class TestExtractValidation:
    """Test suite for input validation at the pipeline boundary."""

    @pytest.mark.asyncio
    async def test_empty_url_raises(self, make_pipeline) -> None:
        """Test a blank URL is a contract violation and raises."""
        pipeline = make_pipeline()

        with pytest.raises(URLValidationError):
            await pipeline.extract(ExtractionRequest(url="  ", field_schema=SCHEMA))

    @pytest.mark.asyncio
    async def test_empty_schema_raises(self, make_pipeline) -> None:
        """Test an empty schema is a contract violation and raises."""
        pipeline = make_pipeline()

        with pytest.raises(SchemaValidationError):
            await pipeline.extract(ExtractionRequest(url="https://example.com", field_schema={}))

    @pytest.mark.asyncio
    async def test_malformed_url_returns_validation_failure(
        self, make_pipeline, static_fetcher
    ) -> None:
        """Test an unsupported scheme fails immediately without scraping."""
        pipeline = make_pipeline()

        result = await pipeline.extract_url("ftp://example.com/file", SCHEMA)

        assert result.success is False
        assert result.error_type == "validation_error"
        assert "scheme" in result.error
        static_fetcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_type_returns_validation_failure(
        self, make_pipeline, static_fetcher
    ) -> None:
        """Test an unsupported type token fails before any network call."""
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", {"title": "foo"})

        assert result.success is False
        assert result.error_type == "validation_error"
        assert "title" in result.error
        static_fetcher.fetch.assert_not_awaited()


class TestExtractRetry:
    """Test suite for the scrape retry loop."""

    @pytest.mark.asyncio
    async def test_retries_with_exponential_backoff(
        self, make_pipeline, static_fetcher, rendered_fetcher, sleep_recorder
    ) -> None:
        """Test attempts back off 1s, 2s and stop after max_retries + 1."""
        static_fetcher.fetch.side_effect = ScrapeError("connection refused", "https://example.com")
        rendered_fetcher.fetch.side_effect = RenderedScrapeError(
            "browser crashed", "https://example.com"
        )
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, max_retries=2)

        assert result.success is False
        assert static_fetcher.fetch.await_count == 3
        assert sleep_recorder.delays == [1.0, 2.0]
        assert "after 3 attempt(s)" in result.error

    @pytest.mark.asyncio
    async def test_retry_succeeds_via_rendered_fallback(
        self, make_pipeline, static_fetcher, rendered_fetcher, stub_client
    ) -> None:
        """Test the second attempt falls back to rendering and succeeds."""
        static_fetcher.fetch.side_effect = ScrapeError("connection reset", "https://example.com")
        rendered_fetcher.fetch.return_value = page_for("https://example.com")
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, max_retries=1)

        assert result.success is True
        assert static_fetcher.fetch.await_count == 2
        rendered_fetcher.fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_scenario_both_strategies_fail(
        self, make_pipeline, static_fetcher, rendered_fetcher
    ) -> None:
        """Test the final error names both the static and rendered failures."""
        static_fetcher.fetch.side_effect = ScrapeError(
            "HTTP request failed with status 503", "https://example.com", 503
        )
        rendered_fetcher.fetch.side_effect = RenderedScrapeError(
            "Playwright rendering failed: net::ERR_FAILED", "https://example.com"
        )
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, max_retries=1)

        assert result.success is False
        assert "status 503" in result.error
        assert "net::ERR_FAILED" in result.error
        assert result.data is None

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(
        self, make_pipeline, static_fetcher, rendered_fetcher
    ) -> None:
        """Test a timeout on the first attempt is retried like a scrape error."""
        static_fetcher.fetch.side_effect = [
            OperationTimeoutError("HTTP request timed out after 30s", 30, "GET"),
            page_for("https://example.com"),
        ]
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, max_retries=1)

        assert result.success is True
        assert static_fetcher.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_zero_retries_makes_one_attempt(
        self, make_pipeline, static_fetcher, sleep_recorder
    ) -> None:
        """Test max_retries=0 gives exactly one attempt and no sleep."""
        static_fetcher.fetch.side_effect = ScrapeError("HTTP 404", "https://example.com", 404)
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA, max_retries=0)

        assert result.success is False
        assert result.error_type == "scrape_error"
        assert static_fetcher.fetch.await_count == 1
        assert sleep_recorder.delays == []


class TestExtractProviderFailures:
    """Test suite for AI provider failures."""

    @pytest.mark.asyncio
    async def test_provider_error_is_not_retried(self, make_pipeline, stub_client) -> None:
        """Test a rate-limit failure becomes a failed result after one call."""
        stub_client.extract.side_effect = ProviderRateLimitError(
            "Rate limit exceeded", "OpenAI", 429
        )
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA)

        assert result.success is False
        assert result.error_type == "provider_error"
        assert "Rate limit" in result.error
        stub_client.extract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_parsing_error_is_reported(self, make_pipeline, stub_client) -> None:
        """Test an unparseable AI answer is reported as a parsing error."""
        stub_client.extract.side_effect = ParsingError("Failed to parse", "not json")
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA)

        assert result.success is False
        assert result.error_type == "parsing_error"
        assert "not json" in result.error

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_internal_error(
        self, make_pipeline, stub_client
    ) -> None:
        """Test a programming error in a collaborator never escapes extract()."""
        stub_client.extract.side_effect = KeyError("boom")
        pipeline = make_pipeline()

        result = await pipeline.extract_url("https://example.com", SCHEMA)

        assert result.success is False
        assert result.error_type == "internal_error"


class TestExtractCaching:
    """Test suite for response cache use."""

    @pytest.mark.asyncio
    async def test_second_extraction_hits_cache(self, make_pipeline, stub_client) -> None:
        """Test identical page content and schema reuse the cached result."""
        pipeline = make_pipeline()

        first = await pipeline.extract_url("https://example.com", SCHEMA)
        second = await pipeline.extract_url("https://example.com", SCHEMA)

        assert first.data == second.data
        stub_client.extract.assert_awaited_once()
        assert len(pipeline.cache) == 1

    @pytest.mark.asyncio
    async def test_different_schema_misses_cache(self, make_pipeline, stub_client) -> None:
        """Test changing the schema forces a new AI call."""
        pipeline = make_pipeline()

        await pipeline.extract_url("https://example.com", SCHEMA)
        await pipeline.extract_url("https://example.com", {"title": "string"})

        assert stub_client.extract.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_extraction_is_not_cached(self, make_pipeline, stub_client) -> None:
        """Test provider failures leave the cache empty."""
        stub_client.extract.side_effect = ProviderRateLimitError("slow down", "OpenAI", 429)
        pipeline = make_pipeline()

        await pipeline.extract_url("https://example.com", SCHEMA)

        assert len(pipeline.cache) == 0

    @pytest.mark.asyncio
    async def test_cache_disabled(self, make_pipeline, stub_client) -> None:
        """Test cache_enabled=False always calls the provider."""
        pipeline = make_pipeline(cache=None, cache_enabled=False)

        await pipeline.extract_url("https://example.com", SCHEMA)
        await pipeline.extract_url("https://example.com", SCHEMA)

        assert pipeline.cache is None
        assert stub_client.extract.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_file_loaded_on_enter(self, make_pipeline, stub_client, tmp_path) -> None:
        """Test a persisted entry is used by a fresh pipeline."""
        path = tmp_path / "cache.json"
        first = make_pipeline(cache=ResponseCache(file_path=path))
        await first.extract_url("https://example.com", SCHEMA)
        assert path.exists()

        stub_client.extract.reset_mock()
        async with make_pipeline(cache=ResponseCache(file_path=path)) as second:
            result = await second.extract_url("https://example.com", SCHEMA)

        assert result.data == {"title": "Widget", "price": 9.99}
        stub_client.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cached_result_is_isolated_from_callers(
        self, make_pipeline, stub_client
    ) -> None:
        """Test mutating nested result data never changes a later cache hit."""
        schema = {"title": "string", "tags": "array<string>"}
        stub_client.extract.return_value = ProviderResponse(
            data={"title": "Widget", "tags": ["a"]},
            raw_response='{"title": "Widget", "tags": ["a"]}',
            model="gpt-4o-mini",
        )
        pipeline = make_pipeline()

        first = await pipeline.extract_url("https://example.com", schema)
        first.data["tags"].append("changed")
        second = await pipeline.extract_url("https://example.com", schema)
        second.data["tags"].append("again")
        third = await pipeline.extract_url("https://example.com", schema)

        assert third.data["tags"] == ["a"]
        stub_client.extract.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_concurrent_first_extractions_load_cache_once(
        self, make_pipeline, stub_client, tmp_path
    ) -> None:
        """Test parallel first calls wait for one full cache load."""
        path = tmp_path / "cache.json"
        writer = make_pipeline(cache=ResponseCache(file_path=path))
        await writer.extract_url("https://example.com", SCHEMA)
        stub_client.extract.reset_mock()

        cache = ResponseCache(file_path=path)
        cache.load = AsyncMock(wraps=cache.load)
        pipeline = make_pipeline(cache=cache)

        results = await asyncio.gather(
            pipeline.extract_url("https://example.com", SCHEMA),
            pipeline.extract_url("https://example.com", SCHEMA),
        )

        assert all(r.data == {"title": "Widget", "price": 9.99} for r in results)
        cache.load.assert_awaited_once()
        stub_client.extract.assert_not_awaited()


class TestExtractBatch:
    """Test suite for batch extraction."""

    @pytest.mark.asyncio
    async def test_results_follow_input_order(self, make_pipeline, static_fetcher) -> None:
        """Test output order matches input even when completion order differs."""
        delays = {"https://a.example.com": 0.03, "https://b.example.com": 0.0,
                  "https://c.example.com": 0.01}

        async def fetch(url: str) -> FetchedPage:
            await asyncio.sleep(delays[url])
            return page_for(url, content=f"<html>{url}</html>")

        static_fetcher.fetch.side_effect = fetch
        pipeline = make_pipeline()

        results = await pipeline.extract_batch(list(delays), SCHEMA, concurrency=3)

        assert [r.url for r in results] == list(delays)
        assert all(r.success for r in results)

    @pytest.mark.asyncio
    async def test_continue_on_error_embeds_failures(
        self, make_pipeline, static_fetcher
    ) -> None:
        """Test one bad URL yields one failed result and leaves others intact."""

        async def fetch(url: str) -> FetchedPage:
            if "bad" in url:
                raise ScrapeError("HTTP request failed with status 404", url, 404)
            return page_for(url)

        static_fetcher.fetch.side_effect = fetch
        pipeline = make_pipeline()
        urls = ["https://ok.example.com", "https://bad.example.com", "", "https://ok2.example.com"]

        results = await pipeline.extract_batch(
            urls, SCHEMA, concurrency=2, continue_on_error=True, max_retries=0
        )

        assert len(results) == 4
        assert [r.success for r in results] == [True, False, False, True]
        assert results[1].error_type == "scrape_error"
        assert results[2].error_type == "validation_error"

    @pytest.mark.asyncio
    async def test_fail_fast_raises_batch_error(self, make_pipeline, static_fetcher) -> None:
        """Test continue_on_error=False raises on the first failed URL."""
        static_fetcher.fetch.side_effect = ScrapeError("HTTP 500", "https://x", 500)
        pipeline = make_pipeline()

        with pytest.raises(BatchError) as exc_info:
            await pipeline.extract_batch(
                ["https://a.example.com", "https://b.example.com"],
                SCHEMA,
                concurrency=1,
                continue_on_error=False,
                max_retries=0,
            )

        assert exc_info.value.total_count == 2
        assert exc_info.value.index == 0

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, make_pipeline, static_fetcher) -> None:
        """Test no more than `concurrency` fetches are in flight at once."""
        in_flight = 0
        peak = 0

        async def fetch(url: str) -> FetchedPage:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return page_for(url, content=url)

        static_fetcher.fetch.side_effect = fetch
        pipeline = make_pipeline()
        urls = [f"https://site{i}.example.com" for i in range(8)]

        results = await pipeline.extract_batch(urls, SCHEMA, concurrency=2)

        assert len(results) == 8
        assert peak == 2

    @pytest.mark.asyncio
    async def test_empty_url_list_raises(self, make_pipeline) -> None:
        """Test an empty batch is a contract violation."""
        pipeline = make_pipeline()

        with pytest.raises(ValueError):
            await pipeline.extract_batch([], SCHEMA)


class TestPipelineLifecycle:
    """Test suite for metadata and shutdown."""

    def test_provider_info(self, make_pipeline) -> None:
        """Test provider metadata comes from the AI client."""
        pipeline = make_pipeline()

        info = pipeline.provider_info

        assert info["provider"] == "openai"
        assert info["model"] == "gpt-4o-mini"
        assert pipeline.max_content_length == 50_000
        assert pipeline.validate_api_key() is True

    @pytest.mark.asyncio
    async def test_close_releases_collaborators(
        self, make_pipeline, static_fetcher, rendered_fetcher, stub_client
    ) -> None:
        """Test closing the pipeline closes fetchers, client and cache."""
        cache = ResponseCache()
        cache.close = AsyncMock()
        async with make_pipeline(cache=cache):
            pass

        static_fetcher.close.assert_awaited_once()
        rendered_fetcher.close.assert_awaited_once()
        stub_client.close.assert_awaited_once()
        cache.close.assert_awaited_once()

    def test_missing_api_key_raises(self) -> None:
        """Test building a client without any key fails loudly."""
        from aiscrape.core.config import Settings
        from aiscrape.services.pipeline import ExtractionPipeline

        config = Settings(openai_api_key=None, gemini_api_key=None)

        with pytest.raises(ValueError, match="No API key"):
            ExtractionPipeline(model="gpt-4o-mini", config=config)
