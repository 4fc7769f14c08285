"""Response cache for AI extraction results."""

from aiscrape.services.cache.response_cache import CacheEntry, ResponseCache

__all__ = ["CacheEntry", "ResponseCache"]
