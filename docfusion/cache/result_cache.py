"""Content-addressed cache of AI extraction results.

Entries are keyed by a hash of the normalized document text, expire after a
time-to-live, and are evicted least-recently-used first once the cache is
full. The whole cache is persisted as one snapshot on close.
"""

import asyncio
import hashlib
import re
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from docfusion.errors import CacheNotInitializedError
from docfusion.utils.logger import get_logger

from .snapshot import SnapshotStore

logger = get_logger(__name__)

_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Collapse whitespace runs and trim, so layout noise maps to one key."""
    return _WHITESPACE.sub(" ", text).strip()


def hash_text(text: str) -> str:
    """Compute the cache key of a document text.

    Args:
        text: Document text.

    Returns:
        Hex SHA-256 digest of the whitespace-normalized text.
    """
    return hashlib.sha256(normalize_text(text).encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    """One cached AI result."""

    key: str
    payload: dict[str, Any]
    created_at: float
    access_count: int = 0
    last_accessed: float = 0.0


@dataclass
class CacheStats:
    """Cache counters since the last clear."""

    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0


class ResultCache:
    """Bounded, expiring, persistent cache of AI results.

    Every mutation and the snapshot write happen under one lock, so a
    snapshot never observes a half-applied update.

    Args:
        store: Snapshot persistence backend.
        max_entries: Maximum number of entries kept in memory.
        ttl_seconds: Entry lifetime measured from insertion.
        clock: Time source returning seconds, injectable for tests.
    """

    def __init__(
        self,
        store: SnapshotStore,
        max_entries: int = 1000,
        ttl_seconds: float = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.store = store
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats()
        self._lock = asyncio.Lock()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def stats(self) -> CacheStats:
        """A copy of the current counters."""
        return CacheStats(**asdict(self._stats))

    def __len__(self) -> int:
        return len(self._entries)

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise CacheNotInitializedError(
                "ResultCache used before initialize() or after close()"
            )

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    async def initialize(self) -> None:
        """Load the persisted snapshot and drop expired entries."""
        async with self._lock:
            if self._initialized:
                return
            snapshot = await asyncio.to_thread(self.store.load)
            if snapshot:
                self._restore(snapshot)
            self._initialized = True
            removed = self._remove_expired(self.clock())
        logger.info(
            "Result cache ready with %d entries (%d expired on load)",
            len(self._entries),
            removed,
        )

    def _restore(self, snapshot: dict[str, Any]) -> None:
        raw_entries = snapshot.get("entries") or {}
        if not isinstance(raw_entries, dict):
            logger.warning("Ignoring malformed cache snapshot entries")
            raw_entries = {}

        entries: list[CacheEntry] = []
        for key, record in raw_entries.items():
            try:
                entries.append(
                    CacheEntry(
                        key=str(key),
                        payload=dict(record["payload"]),
                        created_at=float(record["created_at"]),
                        access_count=int(record.get("access_count", 0)),
                        last_accessed=float(record.get("last_accessed", 0.0)),
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed cache entry %s: %s", key, exc)
        for entry in sorted(entries, key=lambda e: e.last_accessed):
            self._entries[entry.key] = entry

        stats = snapshot.get("stats") or {}
        known = CacheStats.__dataclass_fields__
        try:
            self._stats = CacheStats(
                **{k: int(v) for k, v in stats.items() if k in known}
            )
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Ignoring malformed cache statistics: %s", exc)
            self._stats = CacheStats()
        self._evict_overflow()

    def _remove_expired(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        self._stats.evictions += len(expired)
        return len(expired)

    def _evict_overflow(self) -> None:
        while len(self._entries) > self.max_entries:
            key, _ = self._entries.popitem(last=False)
            self._stats.evictions += 1
            logger.debug("Evicted least recently used cache entry %s", key[:12])

    async def get(self, key: str) -> dict[str, Any] | None:
        """Look up a cached payload.

        An expired entry is removed and counted as an eviction, not a miss.

        Args:
            key: Cache key from :func:`hash_text`.

        Returns:
            The payload, or ``None`` when absent or expired.

        Raises:
            CacheNotInitializedError: If the cache is not initialized.
        """
        async with self._lock:
            self._require_initialized()
            entry = self._entries.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            now = self.clock()
            if self._expired(entry, now):
                del self._entries[key]
                self._stats.evictions += 1
                return None

            entry.access_count += 1
            entry.last_accessed = now
            self._entries.move_to_end(key)
            self._stats.hits += 1
            return dict(entry.payload)

    async def set(self, key: str, payload: dict[str, Any]) -> None:
        """Insert or overwrite a payload, evicting the oldest entries if full.

        Raises:
            CacheNotInitializedError: If the cache is not initialized.
        """
        async with self._lock:
            self._require_initialized()
            now = self.clock()
            self._entries[key] = CacheEntry(
                key=key, payload=dict(payload), created_at=now, last_accessed=now
            )
            self._entries.move_to_end(key)
            self._stats.sets += 1
            self._evict_overflow()

    async def has(self, key: str) -> bool:
        """Return True if a live entry exists, without touching counters."""
        async with self._lock:
            self._require_initialized()
            entry = self._entries.get(key)
            return entry is not None and not self._expired(entry, self.clock())

    async def cleanup(self) -> int:
        """Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            self._require_initialized()
            removed = self._remove_expired(self.clock())
        if removed:
            logger.info("Removed %d expired cache entries", removed)
        return removed

    async def clear(self) -> None:
        """Drop every entry and reset the counters."""
        async with self._lock:
            self._require_initialized()
            self._entries.clear()
            self._stats = CacheStats()
        logger.info("Result cache cleared")

    def _snapshot(self) -> dict[str, Any]:
        return {
            "entries": {
                key: {
                    "payload": e.payload,
                    "created_at": e.created_at,
                    "access_count": e.access_count,
                    "last_accessed": e.last_accessed,
                }
                for key, e in self._entries.items()
            },
            "stats": asdict(self._stats),
        }

    async def save(self) -> None:
        """Persist the current contents.

        Raises:
            CacheNotInitializedError: If the cache is not initialized.
            CacheError: If the snapshot cannot be written.
        """
        async with self._lock:
            self._require_initialized()
            await asyncio.to_thread(self.store.save, self._snapshot())

    async def close(self) -> None:
        """Persist a final snapshot and release all in-memory state.

        Closing an uninitialized cache does nothing.
        """
        async with self._lock:
            if not self._initialized:
                return
            try:
                await asyncio.to_thread(self.store.save, self._snapshot())
            finally:
                self._entries.clear()
                self._stats = CacheStats()
                self._initialized = False
        logger.info("Result cache closed")

    def get_stats(self) -> dict[str, Any]:
        """Summarize cache usage.

        Returns:
            Counters, hit rate, current size and capacity.
        """
        stats = self._stats
        return {
            "hits": stats.hits,
            "misses": stats.misses,
            "sets": stats.sets,
            "evictions": stats.evictions,
            "hit_rate": round(stats.hit_rate, 4),
            "size": len(self._entries),
            "max_size": self.max_entries,
            "ttl_seconds": self.ttl_seconds,
            "initialized": self._initialized,
        }
