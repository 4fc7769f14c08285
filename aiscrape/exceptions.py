"""Exception hierarchy for aiscrape.

Every error raised by the library derives from ScraperError. The pipeline
translates all of them into an ``ExtractionResult.error`` string plus a
stable ``error_type`` identifier (see error_type_for).
"""

from __future__ import annotations

from collections.abc import Sequence

RAW_DATA_PREVIEW_CHARS = 200


class ScraperError(Exception):
    """Base exception for all aiscrape errors."""

    pass


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ScraperError):
    """Raised for malformed input. Never retried."""

    pass


class URLValidationError(ValidationError):
    """Raised when a URL is blank, malformed or uses an unsupported scheme."""

    def __init__(self, message: str, url: str) -> None:
        self.url = url
        super().__init__(message)


class SchemaValidationError(ValidationError):
    """Raised when a field schema is empty or contains an invalid entry."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


class ScrapeError(ScraperError):
    """Raised when page content cannot be retrieved.

    Attributes:
        url: The URL that failed.
        status_code: HTTP status code, if one was received.
        causes: Underlying errors when several strategies failed.
    """

    def __init__(
        self,
        message: str,
        url: str,
        status_code: int | None = None,
        causes: Sequence[BaseException] = (),
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.causes = tuple(causes)
        super().__init__(message)


class RenderedScrapeError(ScrapeError):
    """Raised when headless-browser rendering fails."""

    pass


class OperationTimeoutError(ScraperError):
    """Raised when a network or browser operation exceeds its deadline.

    The underlying request is abandoned, not aborted on the remote side.
    """

    def __init__(self, message: str, timeout: float, operation: str) -> None:
        self.timeout = timeout
        self.operation = operation
        super().__init__(message)


# ---------------------------------------------------------------------------
# AI providers
# ---------------------------------------------------------------------------


class ProviderError(ScraperError):
    """Raised when the AI completion service fails.

    Attributes:
        provider: Provider display name (e.g. "OpenAI").
        status_code: HTTP-equivalent status, if known.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def from_status(
        cls,
        message: str,
        provider: str,
        status_code: int | None,
    ) -> ProviderError:
        """Build the ProviderError subclass matching an HTTP status code."""
        error_cls = _PROVIDER_ERRORS_BY_STATUS.get(status_code, ProviderError)
        return error_cls(message, provider, status_code)


class ProviderAuthError(ProviderError):
    """Raised on HTTP 401 (invalid or missing API key)."""

    pass


class ProviderForbiddenError(ProviderError):
    """Raised on HTTP 403 (key lacks permission, unsupported region)."""

    pass


class ProviderRateLimitError(ProviderError):
    """Raised on HTTP 429 (rate limit or quota exhausted)."""

    pass


class ProviderUnavailableError(ProviderError):
    """Raised on HTTP 500/502/503/504."""

    pass


_PROVIDER_ERRORS_BY_STATUS: dict[int | None, type[ProviderError]] = {
    401: ProviderAuthError,
    403: ProviderForbiddenError,
    429: ProviderRateLimitError,
    500: ProviderUnavailableError,
    502: ProviderUnavailableError,
    503: ProviderUnavailableError,
    504: ProviderUnavailableError,
}


class UnsupportedProviderError(ProviderError):
    """Raised when no client implementation exists for a provider."""

    def __init__(self, message: str, provider: str = "unknown") -> None:
        super().__init__(message, provider)


class InvalidApiKeyError(ProviderError):
    """Raised when an API key does not match the provider's key format."""

    def __init__(self, message: str, provider: str = "unknown") -> None:
        super().__init__(message, provider)


class ParsingError(ScraperError):
    """Raised when an AI response is not valid or salvageable JSON.

    The full payload is kept on ``raw_data``; the string form shows only a
    truncated preview.
    """

    def __init__(self, message: str, raw_data: str) -> None:
        self.message = message
        self.raw_data = raw_data
        super().__init__(message)

    def __str__(self) -> str:
        preview = self.raw_data
        if len(preview) > RAW_DATA_PREVIEW_CHARS:
            preview = f"{preview[:RAW_DATA_PREVIEW_CHARS]}..."
        return f"{self.message} (raw data: {preview})"


class BatchError(ScraperError):
    """Raised when a fail-fast batch stops on its first failed item."""

    def __init__(
        self,
        message: str,
        success_count: int,
        total_count: int,
        index: int | None = None,
    ) -> None:
        self.success_count = success_count
        self.total_count = total_count
        self.index = index
        super().__init__(f"{message} (processed {success_count}/{total_count})")


def error_type_for(error: BaseException) -> str:
    """Map an exception to a stable error type identifier.

    Args:
        error: Any exception caught at the pipeline boundary.

    Returns:
        Snake-case identifier used in ExtractionResult.error_type.
    """
    if isinstance(error, ValidationError):
        return "validation_error"
    if isinstance(error, RenderedScrapeError):
        return "rendered_scrape_error"
    if isinstance(error, ScrapeError):
        return "scrape_error"
    if isinstance(error, OperationTimeoutError):
        return "timeout_error"
    if isinstance(error, ParsingError):
        return "parsing_error"
    if isinstance(error, ProviderError):
        return "provider_error"
    if isinstance(error, BatchError):
        return "batch_error"
    return "internal_error"
