"""URL validation for extraction requests."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlparse

from aiscrape.exceptions import URLValidationError

logger = logging.getLogger(__name__)

SUPPORTED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

# Host prefixes and path fragments that usually indicate a client-rendered app
SPA_HOST_PREFIXES = ("app.", "admin.", "dashboard.")
SPA_PATH_MARKERS = ("/app/", "/admin/", "/dashboard/", "/#/")


class URLValidator:
    """Validates that URLs are absolute http(s) URLs with a host."""

    def validate(self, url: str) -> None:
        """Validate a URL string.

        Raises:
            URLValidationError: If the URL is blank, unparseable, uses an
                unsupported scheme or has no host.
        """
        if url is None or not url.strip():
            raise URLValidationError("URL cannot be empty", url or "")

        candidate = url.strip()
        try:
            parsed = urlparse(candidate)
            hostname = parsed.hostname
        except ValueError as e:
            raise URLValidationError(f"Invalid URL format: {e}", candidate) from e

        scheme = parsed.scheme.lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise URLValidationError(
                f'Unsupported URL scheme "{parsed.scheme}". '
                f"Supported schemes: {', '.join(sorted(SUPPORTED_SCHEMES))}",
                candidate,
            )

        if not hostname:
            raise URLValidationError("URL must have a valid host", candidate)

    def validate_all(self, urls: Iterable[str]) -> None:
        """Validate every URL, raising for the first invalid one."""
        for url in urls:
            self.validate(url)

    def is_valid(self, url: str) -> bool:
        """Return True if validate() would accept the URL."""
        try:
            self.validate(url)
        except URLValidationError:
            return False
        return True

    def normalize(self, url: str, default_scheme: str = "https") -> str:
        """Trim a URL and add ``default_scheme`` when it has none."""
        trimmed = url.strip()
        if trimmed and "://" not in trimmed:
            return f"{default_scheme}://{trimmed}"
        return trimmed

    def extract_domain(self, url: str) -> str | None:
        """Return the host of a URL (scheme optional), or None."""
        trimmed = url.strip()
        if not trimmed:
            return None
        try:
            host = urlparse(trimmed).hostname
            if not host and "://" not in trimmed and "." in trimmed.split("/")[0]:
                host = urlparse(f"http://{trimmed}").hostname
        except ValueError:
            return None
        return host or None

    def is_likely_spa(self, url: str) -> bool:
        """Heuristic: does the URL look like a single-page application?"""
        domain = (self.extract_domain(url) or "").lower()
        try:
            path = urlparse(url.strip()).path.lower()
        except ValueError:
            path = ""
        return (
            domain.startswith(SPA_HOST_PREFIXES)
            or any(marker in path for marker in SPA_PATH_MARKERS)
            or "#" in url
        )
