"""Short-lived in-memory cache for assembled retrieval context."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class _Entry(Generic[T]):
    value: T
    stored_at: float


class QueryCache(Generic[T]):
    """TTL cache keyed by query text.

    Expired entries are dropped when read; once the cache grows past
    *max_entries* every expired entry is pruned on the next write.

    Parameters
    ----------
    ttl_seconds:
        Lifetime of an entry.
    max_entries:
        Size above which a write triggers pruning.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 60.0,
        max_entries: int = 100,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, _Entry[T]] = {}

    @staticmethod
    def normalize(query: str) -> str:
        return " ".join(query.lower().split())

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: str, value: T) -> None:
        self._entries[key] = _Entry(value=value, stored_at=self._clock())
        if len(self._entries) > self.max_entries:
            self.prune()

    def prune(self) -> int:
        """Drop expired entries; return how many were removed."""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if now - e.stored_at >= self.ttl_seconds]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> int:
        size = len(self._entries)
        self._entries.clear()
        return size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
