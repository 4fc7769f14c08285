"""Extraction pipeline orchestrating scraping, AI extraction and caching."""

from __future__ import annotations

import asyncio
import copy
import logging
import time
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

from aiscrape.core.config import Settings, settings as default_settings
from aiscrape.exceptions import (
    OperationTimeoutError,
    ScrapeError,
    ScraperError,
    SchemaValidationError,
    URLValidationError,
    ValidationError,
    error_type_for,
)
from aiscrape.schemas.extraction import ExtractionRequest, ExtractionResult
from aiscrape.services.cache import ResponseCache
from aiscrape.services.concurrency import run_batch
from aiscrape.services.providers import (
    AIClient,
    AIModel,
    AIProvider,
    GenerationOptions,
    create_client,
)
from aiscrape.services.retry import RetryPolicy, SleepFunc, retry_async
from aiscrape.services.schema import validate_and_normalize
from aiscrape.services.scrapers import (
    FallbackScraper,
    FetchedPage,
    RenderOptions,
    ScrapeConfig,
)
from aiscrape.services.url_validator import URLValidator

logger = logging.getLogger(__name__)

# Retried with backoff; every other error ends the run immediately
RETRYABLE_SCRAPE_ERRORS: tuple[type[Exception], ...] = (ScrapeError, OperationTimeoutError)


class ExtractionPipeline:
    """Extracts schema-shaped data from web pages.

    One run goes: validate -> scrape (retry + fallback) -> cache lookup ->
    AI extraction -> cache store -> result. ``extract`` never raises for
    runtime failures; they are reported on the returned ExtractionResult.

    The pipeline owns its scraper (and so the shared browser), its AI
    client and its cache. Use it as an async context manager, or call
    close() at shutdown.

    Usage:
        async with ExtractionPipeline(model="gpt-4o-mini", api_key=key) as pipeline:
            result = await pipeline.extract_url(
                "https://example.com", {"title": "string", "price": "number"}
            )
    """

    def __init__(
        self,
        client: AIClient | None = None,
        *,
        model: AIModel | str | None = None,
        api_key: str | None = None,
        scraper: FallbackScraper | None = None,
        cache: ResponseCache | None = None,
        options: GenerationOptions | None = None,
        render_options: RenderOptions | None = None,
        prefer_rendered: bool | None = None,
        cache_enabled: bool | None = None,
        retry_base_delay_seconds: float | None = None,
        retry_multiplier: float | None = None,
        url_validator: URLValidator | None = None,
        sleep: SleepFunc = asyncio.sleep,
        config: Settings | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            client: AI client. If None, one is created for ``model``.
            model: Model used when no client is given. Defaults to
                the configured default model.
            api_key: Key used when no client is given. Defaults to the
                configured key of the model's provider.
            scraper: Page retrieval policy. If None, built from settings.
            cache: Response cache. If None and caching is enabled, built
                from settings.
            options: Default generation options.
            render_options: Selector waits and node removal for rendered
                fetches.
            prefer_rendered: Default retrieval preference.
            cache_enabled: Whether to consult and fill the response cache.
            retry_base_delay_seconds: Backoff delay after the first failed
                scrape attempt.
            retry_multiplier: Backoff growth factor.
            url_validator: URL checks applied before scraping.
            sleep: Awaitable sleep used between attempts.
            config: Settings source. Defaults to the process settings.

        Raises:
            ValueError: If no client is given and no API key is available.
        """
        self.settings = config or default_settings
        self.options = options or GenerationOptions.from_settings(self.settings)
        self.client = client or self._create_client(model, api_key)
        self.scraper = scraper or FallbackScraper(ScrapeConfig.from_settings(self.settings))
        self.render_options = render_options
        self.prefer_rendered = (
            self.settings.prefer_rendered if prefer_rendered is None else prefer_rendered
        )
        self.cache_enabled = (
            self.settings.cache_enabled if cache_enabled is None else cache_enabled
        )
        self.cache = cache
        if self.cache is None and self.cache_enabled:
            self.cache = ResponseCache(
                ttl_seconds=self.settings.cache_ttl_seconds,
                max_entries=self.settings.cache_max_entries,
                file_path=self.settings.cache_file_path,
            )
        self.retry_base_delay_seconds = (
            self.settings.retry_base_delay_ms / 1000
            if retry_base_delay_seconds is None
            else retry_base_delay_seconds
        )
        self.retry_multiplier = (
            self.settings.retry_multiplier if retry_multiplier is None else retry_multiplier
        )
        self.url_validator = url_validator or URLValidator()
        self._sleep = sleep
        self._cache_loaded = False
        self._cache_load_lock = asyncio.Lock()

    def _create_client(self, model: AIModel | str | None, api_key: str | None) -> AIClient:
        ai_model = AIModel.from_name(model or self.settings.default_model)
        if api_key is None:
            if ai_model.provider is AIProvider.OPENAI:
                api_key = self.settings.openai_api_key
            else:
                api_key = self.settings.gemini_api_key
        if not api_key:
            raise ValueError(
                f"No API key configured for {ai_model.provider.display_name}"
            )
        return create_client(
            ai_model,
            api_key,
            timeout_seconds=self.settings.request_timeout_seconds,
            options=self.options,
        )

    # ------------------------------------------------------------------
    # Provider metadata
    # ------------------------------------------------------------------

    @property
    def provider_id(self) -> str:
        return self.client.provider_id

    @property
    def provider_info(self) -> dict[str, Any]:
        """Describe the AI client in use."""
        return {
            "provider": self.client.provider.value,
            "provider_name": self.client.provider_name,
            "model": self.client.model,
            "provider_id": self.client.provider_id,
            "max_content_length": self.client.max_content_length,
        }

    @property
    def max_content_length(self) -> int:
        return self.client.max_content_length

    def validate_api_key(self) -> bool:
        return self.client.validate_api_key()

    # ------------------------------------------------------------------
    # Single URL
    # ------------------------------------------------------------------

    async def extract(self, request: ExtractionRequest) -> ExtractionResult:
        """Run the pipeline for one request.

        Args:
            request: URL, field schema and per-call preferences.

        Returns:
            ExtractionResult. Runtime failures are captured in ``error``.

        Raises:
            URLValidationError: If the URL is blank.
            SchemaValidationError: If the field schema is empty.
        """
        if not request.url or not request.url.strip():
            raise URLValidationError("URL cannot be empty", request.url or "")
        if not request.field_schema:
            raise SchemaValidationError("Schema cannot be empty")

        start = time.perf_counter()
        url = request.url.strip()
        logger.info("Starting extraction for %s with %s", url, self.provider_id)

        try:
            return await self._run(request, url, start)
        except ValidationError as e:
            logger.warning("Validation failed for %s: %s", url, e)
            return self._failure(url, e, start)
        except Exception as e:
            logger.exception("Unexpected error extracting %s", url)
            return self._failure(url, e, start, message=f"Unexpected error: {e}")

    async def _run(
        self,
        request: ExtractionRequest,
        url: str,
        start: float,
    ) -> ExtractionResult:
        self.url_validator.validate(url)
        schema = validate_and_normalize(request.field_schema)

        prefer_rendered = (
            self.prefer_rendered if request.prefer_rendered is None else request.prefer_rendered
        )
        try:
            page = await self._scrape(url, prefer_rendered, request.max_retries)
        except RETRYABLE_SCRAPE_ERRORS as e:
            attempts = request.max_retries + 1
            return self._failure(
                url,
                e,
                start,
                message=f"Failed to scrape {url} after {attempts} attempt(s): {e}",
            )

        options = self.options.with_instructions(request.custom_instructions)
        data = await self._cached_extract(page, schema, options)
        if isinstance(data, ScraperError):
            return self._failure(url, data, start)

        elapsed = timedelta(seconds=time.perf_counter() - start)
        logger.info(
            "Extracted %d field(s) from %s in %.0fms",
            len(data),
            url,
            elapsed.total_seconds() * 1000,
        )
        return ExtractionResult.succeeded(
            data=data,
            elapsed=elapsed,
            provider_id=self.provider_id,
            url=url,
        )

    async def _scrape(self, url: str, prefer_rendered: bool, max_retries: int) -> FetchedPage:
        policy = RetryPolicy.from_retries(
            max_retries,
            base_delay_seconds=self.retry_base_delay_seconds,
            multiplier=self.retry_multiplier,
        )

        async def attempt(number: int) -> FetchedPage:
            return await self.scraper.fetch(
                url,
                prefer_rendered=prefer_rendered,
                is_retry=number > 0,
                render_options=self.render_options,
            )

        return await retry_async(
            attempt,
            policy,
            retry_on=RETRYABLE_SCRAPE_ERRORS,
            sleep=self._sleep,
            description=f"Scraping {url}",
        )

    async def _cached_extract(
        self,
        page: FetchedPage,
        schema: dict[str, str],
        options: GenerationOptions,
    ) -> dict[str, Any] | ScraperError:
        """Return extracted data, or the provider error that prevented it."""
        key = None
        if self.cache is not None and self.cache_enabled:
            await self._ensure_cache_loaded()
            key = self.cache.make_key(page.content, schema, self.provider_id, options.to_dict())
            entry = self.cache.get(key)
            if entry is not None:
                logger.info("Using cached extraction for %s", page.url)
                return copy.deepcopy(entry.data)

        try:
            response = await self.client.extract(page.content, schema, options)
        except ScraperError as e:
            logger.warning("AI extraction failed for %s: %s", page.url, e)
            return e

        if key is not None and self.cache is not None:
            await self.cache.store(key, response.data, response.raw_response)
        return response.data

    async def _ensure_cache_loaded(self) -> None:
        if self._cache_loaded or self.cache is None:
            return
        async with self._cache_load_lock:
            if not self._cache_loaded:
                await self.cache.load()
                self._cache_loaded = True

    def _failure(
        self,
        url: str,
        error: BaseException,
        start: float,
        message: str | None = None,
    ) -> ExtractionResult:
        return ExtractionResult.failed(
            error=message or str(error),
            error_type=error_type_for(error),
            elapsed=timedelta(seconds=time.perf_counter() - start),
            provider_id=self.provider_id,
            url=url,
        )

    async def extract_url(
        self,
        url: str,
        field_schema: dict[str, str],
        *,
        custom_instructions: str | None = None,
        prefer_rendered: bool | None = None,
        max_retries: int | None = None,
    ) -> ExtractionResult:
        """Build an ExtractionRequest and run it. See extract()."""
        request = ExtractionRequest(
            url=url,
            field_schema=field_schema,
            custom_instructions=custom_instructions,
            prefer_rendered=prefer_rendered,
            max_retries=self.settings.max_retries if max_retries is None else max_retries,
        )
        return await self.extract(request)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def extract_batch(
        self,
        urls: Sequence[str],
        field_schema: dict[str, str],
        *,
        concurrency: int | None = None,
        continue_on_error: bool | None = None,
        custom_instructions: str | None = None,
        prefer_rendered: bool | None = None,
        max_retries: int | None = None,
    ) -> list[ExtractionResult]:
        """Extract from many URLs with bounded concurrency.

        Args:
            urls: Pages to process.
            field_schema: Schema applied to every page.
            concurrency: Maximum simultaneous extractions.
            continue_on_error: Embed per-URL failures (True) or stop at the
                first failed URL (False).
            custom_instructions: Extra prompt instructions for every page.
            prefer_rendered: Retrieval preference for every page.
            max_retries: Scrape retries per page.

        Returns:
            One result per URL, in input order.

        Raises:
            ValueError: If urls is empty or concurrency is below 1.
            SchemaValidationError: If the field schema is empty.
            BatchError: In fail-fast mode, when any URL fails.
        """
        if not urls:
            raise ValueError("URL list cannot be empty")
        if not field_schema:
            raise SchemaValidationError("Schema cannot be empty")

        limit = self.settings.batch_concurrency if concurrency is None else concurrency
        keep_going = (
            self.settings.continue_on_error if continue_on_error is None else continue_on_error
        )
        logger.info(
            "Starting batch of %d URL(s) with concurrency %d (continue_on_error=%s)",
            len(urls),
            limit,
            keep_going,
        )

        async def extract_one(url: str) -> ExtractionResult:
            return await self.extract_url(
                url,
                field_schema,
                custom_instructions=custom_instructions,
                prefer_rendered=prefer_rendered,
                max_retries=max_retries,
            )

        def as_failed_result(index: int, url: str, error: Exception) -> ExtractionResult:
            return ExtractionResult.failed(
                error=str(error),
                error_type=error_type_for(error),
                elapsed=timedelta(0),
                provider_id=self.provider_id,
                url=url,
            )

        results = await run_batch(
            urls,
            extract_one,
            concurrency=limit,
            continue_on_error=keep_going,
            on_error=as_failed_result,
            is_failure=lambda result: not result.success,
        )

        succeeded = sum(1 for result in results if result.success)
        logger.info("Batch finished: %d/%d succeeded", succeeded, len(results))
        return results

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Release the browser, HTTP clients and cache."""
        await self.scraper.close()
        await self.client.close()
        if self.cache is not None:
            await self.cache.close()
        logger.debug("Extraction pipeline closed")

    async def __aenter__(self) -> ExtractionPipeline:
        await self._ensure_cache_loaded()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
