"""ResultCache — memoise final summaries by a normalised task fingerprint."""

import hashlib
import logging
import math
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")

EVICT_FRACTION = 0.2


@dataclass
class CacheEntry:
    task: str
    result: str
    created_at: float
    hits: int = 0


def normalize(text: str | None) -> str:
    return _WS_RE.sub(" ", (text or "").strip().lower())


def fingerprint(task: str, context: str | None = None) -> str:
    """MD5 of the normalised task and context."""
    return hashlib.md5(f"{normalize(task)}|{normalize(context)}".encode()).hexdigest()


class ResultCache:
    """In-memory TTL cache bounded by ``max_size`` entries.

    Inserting a new key into a full cache purges expired entries first, then
    evicts the least-hit 20% (oldest first among equal hit counts). Only
    successful results are stored. ``enabled=False`` turns every call into a
    no-op.
    """

    def __init__(
        self,
        *,
        max_size: int = 100,
        ttl: float = 30 * 60,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.ttl = ttl
        self.enabled = enabled
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self.hits = 0
        self.misses = 0

    def _expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl

    def get(self, task: str, context: str | None = None) -> str | None:
        if not self.enabled:
            return None
        key = fingerprint(task, context)
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._expired(entry, self._clock()):
            del self._entries[key]
            self.misses += 1
            return None
        entry.hits += 1
        self.hits += 1
        return entry.result

    def set(self, task: str, result: str, context: str | None = None) -> None:
        if not self.enabled:
            return
        key = fingerprint(task, context)
        if key not in self._entries and len(self._entries) >= self.max_size:
            self._evict()
        self._entries[key] = CacheEntry(task=task, result=result, created_at=self._clock())

    def _evict(self) -> None:
        now = self._clock()
        for key in [k for k, e in self._entries.items() if self._expired(e, now)]:
            del self._entries[key]

        if len(self._entries) >= self.max_size:
            # sorted() is stable, so equal hit counts evict in insertion order
            by_hits = sorted(self._entries, key=lambda k: self._entries[k].hits)
            count = max(math.ceil(self.max_size * EVICT_FRACTION), len(self._entries) - self.max_size + 1)
            for key in by_hits[:count]:
                del self._entries[key]
            logger.debug("Evicted %d cache entries", count)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "enabled": self.enabled,
            "hits": self.hits,
            "misses": self.misses,
        }

    def __len__(self) -> int:
        return len(self._entries)
