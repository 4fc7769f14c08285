"""Content-addressable cache for AI extraction results.

Keys are SHA-256 digests of the canonical JSON encoding of
``{page_content, field_schema, provider_id, options}``, so identical inputs
always map to the same entry and changing any input yields a new one.

All mutations of the in-memory table run synchronously between suspension
points. The optional JSON file is rewritten wholesale after every store,
which is only safe for a single process with a low write rate.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CACHE_FILE_VERSION = "1.0"
DEFAULT_TTL_SECONDS = 3600
DEFAULT_MAX_ENTRIES = 1000

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _short(key: str) -> str:
    return key[:16]


@dataclass(frozen=True)
class CacheEntry:
    """One cached extraction result."""

    key: str
    data: dict[str, Any]
    raw_response: str
    timestamp: datetime

    def is_valid(self, ttl: timedelta, now: datetime) -> bool:
        """True while the entry is younger than ``ttl``."""
        return now - self.timestamp < ttl

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "rawResponse": self.raw_response,
            "inputHash": self.key,
        }

    @classmethod
    def from_dict(cls, key: str, payload: Mapping[str, Any]) -> CacheEntry:
        timestamp = datetime.fromisoformat(payload["timestamp"])
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        return cls(
            key=payload.get("inputHash", key),
            data=dict(payload["data"]),
            raw_response=payload.get("rawResponse", ""),
            timestamp=timestamp,
        )


class ResponseCache:
    """In-memory TTL cache with optional JSON file persistence.

    Usage:
        cache = ResponseCache(file_path="cache/extractions.json")
        await cache.load()
        entry = cache.lookup(html, schema, "openai:gpt-4o-mini")
        ...
        await cache.close()
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        file_path: str | Path | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_entries = max_entries
        self.file_path = Path(file_path) if file_path else None
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @staticmethod
    def make_key(
        page_content: str,
        field_schema: Mapping[str, str],
        provider_id: str,
        options: Mapping[str, Any] | None = None,
    ) -> str:
        """Derive the content-addressable key for an extraction input."""
        canonical = json.dumps(
            {
                "page_content": page_content,
                "field_schema": dict(field_schema),
                "provider_id": provider_id,
                "options": dict(options or {}),
            },
            sort_keys=True,
            ensure_ascii=False,
            separators=(",", ":"),
            default=str,
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def get(self, key: str) -> CacheEntry | None:
        """Return a live entry, evicting it if it has expired."""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss for %s", _short(key))
            return None

        if not entry.is_valid(self.ttl, self._clock()):
            del self._entries[key]
            logger.debug("Cache entry %s expired", _short(key))
            return None

        logger.debug("Cache hit for %s", _short(key))
        return entry

    async def store(
        self,
        key: str,
        data: Mapping[str, Any],
        raw_response: str = "",
    ) -> CacheEntry:
        """Insert or overwrite an entry, clean up, then persist if configured."""
        entry = CacheEntry(
            key=key,
            data=copy.deepcopy(dict(data)),
            raw_response=raw_response,
            timestamp=self._clock(),
        )
        self._entries[key] = entry
        self._cleanup()
        logger.debug("Cached response for %s", _short(key))

        if self.file_path is not None:
            # Serialize before suspending so the snapshot matches this store
            await self._write(self._serialize())
        return entry

    def lookup(
        self,
        page_content: str,
        field_schema: Mapping[str, str],
        provider_id: str,
        options: Mapping[str, Any] | None = None,
    ) -> CacheEntry | None:
        """get() with the key derived from the extraction inputs."""
        return self.get(self.make_key(page_content, field_schema, provider_id, options))

    async def save(
        self,
        page_content: str,
        field_schema: Mapping[str, str],
        provider_id: str,
        data: Mapping[str, Any],
        raw_response: str = "",
        options: Mapping[str, Any] | None = None,
    ) -> CacheEntry:
        """store() with the key derived from the extraction inputs."""
        key = self.make_key(page_content, field_schema, provider_id, options)
        return await self.store(key, data, raw_response)

    def stats(self) -> dict[str, Any]:
        """Return entry counts and configuration."""
        now = self._clock()
        valid = sum(1 for entry in self._entries.values() if entry.is_valid(self.ttl, now))
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
            "ttl_seconds": self.ttl.total_seconds(),
            "max_entries": self.max_entries,
            "file_path": str(self.file_path) if self.file_path else None,
        }

    async def load(self) -> int:
        """Load persisted entries, skipping expired or malformed ones.

        Keys already in memory are kept as they are.

        Returns:
            Number of entries loaded.
        """
        if self.file_path is None:
            return 0

        if not self.file_path.exists():
            logger.debug("Cache file %s does not exist, starting empty", self.file_path)
            return 0

        try:
            content = await asyncio.to_thread(self.file_path.read_text, encoding="utf-8")
            payload = json.loads(content)
            raw_entries = payload["entries"]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Failed to load cache file %s: %s", self.file_path, e)
            return 0

        now = self._clock()
        loaded = 0
        for key, raw in raw_entries.items():
            try:
                entry = CacheEntry.from_dict(key, raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed cache entry %s: %s", _short(key), e)
                continue
            # Entries stored since startup are newer than the file
            if key in self._entries:
                continue
            if entry.is_valid(self.ttl, now):
                self._entries[key] = entry
                loaded += 1

        self._cleanup()
        logger.info("Loaded %d valid cache entries from %s", loaded, self.file_path)
        return loaded

    async def clear(self) -> None:
        """Drop all entries and delete the cache file."""
        self._entries.clear()
        logger.info("Cache cleared")
        if self.file_path is not None and self.file_path.exists():
            await asyncio.to_thread(self.file_path.unlink)
            logger.debug("Cache file %s deleted", self.file_path)

    async def close(self) -> None:
        """Persist the table one last time, then empty it."""
        if self.file_path is not None:
            await self._write(self._serialize())
        self._entries.clear()

    def _cleanup(self) -> None:
        now = self._clock()
        expired = [
            key for key, entry in self._entries.items() if not entry.is_valid(self.ttl, now)
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Removed %d expired cache entries", len(expired))

        overflow = len(self._entries) - self.max_entries
        if overflow > 0:
            oldest = sorted(self._entries.values(), key=lambda entry: entry.timestamp)
            for entry in oldest[:overflow]:
                del self._entries[entry.key]
            logger.debug("Evicted %d oldest cache entries", overflow)

    def _serialize(self) -> str:
        return json.dumps(
            {
                "version": CACHE_FILE_VERSION,
                "timestamp": self._clock().isoformat(),
                "entries": {key: entry.to_dict() for key, entry in self._entries.items()},
            },
            ensure_ascii=False,
        )

    async def _write(self, content: str) -> None:
        assert self.file_path is not None
        path = self.file_path

        def write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            logger.warning("Failed to persist cache to %s: %s", path, e)
        else:
            logger.debug("Saved %d cache entries to %s", len(self._entries), path)
