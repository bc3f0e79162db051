"""
Short-TTL dataset cache.

``TtlCache`` is an explicit object (no module-level state) with an injected
monotonic clock so tests control expiry deterministically.  Entries hold the
*normalized* table plus the upstream ``fetched_at`` timestamp, so cache hits
report when the data was really fetched.

Only redistributable data may be stored; the engine asks
``RedistributionPolicy.is_cacheable()`` before calling ``put()``.

Locking
-------
``lock_for(key)`` returns an ``asyncio.Lock`` per cache key.  The engine
holds it around check-then-fetch so two concurrent identical fetches collapse
into one upstream call.  Locks are tied to the event loop that created them;
a key first used under a previous ``asyncio.run()`` gets a fresh lock.
A lock is kept only while it is held or its key has a live entry;
``release_lock()`` and every removal path drop the rest.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Hashable, Optional

from report_kit.models.execution import NormalizedTable


@dataclass(frozen=True)
class CacheEntry:
    table: NormalizedTable
    fetched_at: datetime
    expires_at: float


class TtlCache:
    """In-memory TTL cache keyed by ``(kind, fetch params, provider)``.

    Args:
        clock:       Monotonic seconds source (``time.monotonic`` by default).
        max_entries: Oldest-expiring entries are evicted beyond this size.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        max_entries: int = 256,
    ) -> None:
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}.")
        self._clock = clock
        self._max_entries = max_entries
        self._entries: dict[Hashable, CacheEntry] = {}
        self._locks: dict[Hashable, tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}

    def __len__(self) -> int:
        self._purge_expired()
        return len(self._entries)

    def get(self, key: Hashable) -> Optional[CacheEntry]:
        """Return the live entry for ``key``, dropping it if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            self._drop(key)
            return None
        return entry

    def put(
        self,
        key: Hashable,
        table: NormalizedTable,
        fetched_at: datetime,
        ttl_seconds: float,
    ) -> None:
        """Store ``table`` for ``ttl_seconds``.  A non-positive TTL stores nothing."""
        if ttl_seconds <= 0:
            return
        self._entries[key] = CacheEntry(
            table=table,
            fetched_at=fetched_at,
            expires_at=self._clock() + ttl_seconds,
        )
        if len(self._entries) > self._max_entries:
            self._purge_expired()
        while len(self._entries) > self._max_entries:
            oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
            self._drop(oldest)
        self._prune_locks()

    def invalidate(self, key: Hashable) -> None:
        self._drop(key)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()

    @property
    def lock_count(self) -> int:
        return len(self._locks)

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        """Return the per-key lock for the running event loop."""
        loop = asyncio.get_running_loop()
        held = self._locks.get(key)
        if held is None or held[0] is not loop:
            held = (loop, asyncio.Lock())
            self._locks[key] = held
        return held[1]

    def release_lock(self, key: Hashable) -> None:
        """Forget the lock for ``key`` unless it is held or the key is cached."""
        held = self._locks.get(key)
        if held is not None and not held[1].locked() and key not in self._entries:
            del self._locks[key]

    def _drop(self, key: Hashable) -> None:
        self._entries.pop(key, None)
        self.release_lock(key)

    def _prune_locks(self) -> None:
        for key in [k for k in self._locks if k not in self._entries]:
            self.release_lock(key)

    def _purge_expired(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if e.expires_at <= now]:
            self._drop(key)
        self._prune_locks()
