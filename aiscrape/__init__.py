"""aiscrape: schema-driven structured data extraction from web pages.

Pages are retrieved with plain HTTP or a headless browser (with fallback
and retry), then an AI provider extracts the fields named in a caller
supplied schema. Results are cached by content hash.

Usage:
    from aiscrape import ExtractionPipeline

    async with ExtractionPipeline(model="gpt-4o-mini", api_key=key) as pipeline:
        result = await pipeline.extract_url(
            "https://example.com", {"title": "string", "price": "number"}
        )
        print(result.data)
"""

from aiscrape.exceptions import (
    BatchError,
    OperationTimeoutError,
    ParsingError,
    ProviderError,
    RenderedScrapeError,
    SchemaValidationError,
    ScrapeError,
    ScraperError,
    URLValidationError,
    ValidationError,
)
from aiscrape.schemas.extraction import ExtractionRequest, ExtractionResult
from aiscrape.services.cache import ResponseCache
from aiscrape.services.concurrency import ConcurrencyLimiter, run_batch
from aiscrape.services.pipeline import ExtractionPipeline
from aiscrape.services.providers import AIModel, AIProvider, GenerationOptions
from aiscrape.services.retry import RetryPolicy

__version__ = "1.0.0"

__all__ = [
    # Pipeline
    "ExtractionPipeline",
    "ExtractionRequest",
    "ExtractionResult",
    "ConcurrencyLimiter",
    "ResponseCache",
    "RetryPolicy",
    "run_batch",
    # Providers
    "AIModel",
    "AIProvider",
    "GenerationOptions",
    # Exceptions
    "ScraperError",
    "ValidationError",
    "URLValidationError",
    "SchemaValidationError",
    "ScrapeError",
    "RenderedScrapeError",
    "OperationTimeoutError",
    "ProviderError",
    "ParsingError",
    "BatchError",
]
