"""Result cache shared by every connection.

Entries expire by age (checked lazily on lookup) and the store is capped
with least-recently-used eviction. Concurrent lookups of the same key while
a value is being computed wait for that single computation instead of
starting their own.
"""

import asyncio
import hashlib
import json
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 300
DEFAULT_MAX_ENTRIES = 1000

Compute = Callable[[], Awaitable[Any]]


def fingerprint(tool_name: str, arguments: dict[str, Any]) -> str:
    """Deterministic cache key for a tool call.

    Arguments are serialized with sorted keys so that two calls differing
    only in argument order map to the same key.
    """
    canonical = json.dumps(
        [tool_name, arguments],
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


@dataclass(frozen=True)
class CacheStats:
    entries: int
    in_flight: int
    hits: int
    misses: int
    enabled: bool
    max_entries: int

    def __str__(self) -> str:
        return (
            f"Cache Stats: {self.entries} entries, {self.in_flight} in flight, "
            f"{self.hits} hits, {self.misses} misses (enabled: {self.enabled})"
        )


class ResultCache:
    """TTL + LRU cache with single-flight computation per key."""

    def __init__(
        self,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, asyncio.Task] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._sweeper: asyncio.Task | None = None
        self.enabled = enabled
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        """Return the live value for key, or None."""
        entry = self._lookup(key)
        return entry.value if entry is not None else None

    async def get_or_compute(self, key: str, ttl: float, compute: Compute) -> Any:
        """
        Return the cached value for key, computing it at most once.

        Args:
            key: Cache key, usually from fingerprint().
            ttl: Seconds the computed value stays live. 0 disables storage.
            compute: Zero-argument coroutine factory producing the value.

        Raises:
            Whatever compute raised. Failures are never cached.
        """
        # No await between the lookups and installing the in-flight task:
        # check-then-install is atomic on the event loop.
        entry = self._lookup(key) if self.enabled else None
        if entry is not None:
            self.hits += 1
            logger.debug(f"Cache hit: {key[:12]}")
            return entry.value

        task = self._in_flight.get(key)
        if task is None:
            self.misses += 1
            # A disabled cache still collapses concurrent calls, it just stores nothing
            task = asyncio.ensure_future(self._run(key, ttl if self.enabled else 0, compute))
            task.add_done_callback(_consume_exception)
            self._in_flight[key] = task
        else:
            logger.debug(f"Joining in-flight computation: {key[:12]}")

        # Shielded: a waiter being cancelled (its connection went away) must
        # not cancel the computation other waiters depend on.
        return await asyncio.shield(task)

    async def _run(self, key: str, ttl: float, compute: Compute) -> Any:
        try:
            value = await compute()
            if ttl > 0:
                self._store(key, value, ttl)
            return value
        finally:
            self._in_flight.pop(key, None)

    def _lookup(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug(f"Cache entry expired: {key[:12]}")
            return None
        self._entries.move_to_end(key)
        return entry

    def _store(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(key, value, self._clock(), ttl)
        self._entries.move_to_end(key)
        if len(self._entries) > self._max_entries:
            self._evict()
        logger.debug(f"Cache set: {key[:12]} (TTL: {ttl}s)")

    def _evict(self) -> None:
        self.sweep_expired()
        while len(self._entries) > self._max_entries:
            key, _ = self._entries.popitem(last=False)
            logger.debug(f"Cache evicted (LRU): {key[:12]}")

    def sweep_expired(self) -> int:
        """Remove every expired entry, returning how many were dropped."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def invalidate(self, key: str) -> bool:
        """Drop a single entry. In-flight computations are left alone."""
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Clear all cached values."""
        self._entries.clear()
        logger.debug("Cache cleared")

    def stats(self) -> CacheStats:
        return CacheStats(
            entries=len(self._entries),
            in_flight=len(self._in_flight),
            hits=self.hits,
            misses=self.misses,
            enabled=self.enabled,
            max_entries=self._max_entries,
        )

    def start_sweeper(self, interval: float = 60.0) -> None:
        """Start a background task that periodically drops expired entries."""
        if self._sweeper is not None:
            return

        async def sweep_loop() -> None:
            while True:
                await asyncio.sleep(interval)
                removed = self.sweep_expired()
                if removed:
                    logger.info(f"Swept {removed} expired cache entries")

        self._sweeper = asyncio.create_task(sweep_loop())

    def stop_sweeper(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None


def _consume_exception(task: asyncio.Task) -> None:
    # Every waiter may have gone away; retrieve the exception so asyncio does
    # not report it as never retrieved.
    if not task.cancelled():
        task.exception()
