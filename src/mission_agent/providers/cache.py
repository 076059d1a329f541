"""Bounded read-through memoization of provider responses."""

from __future__ import annotations

import logging
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    evictions: int = 0


class ResponseCache:
    """TTL + max-size cache; entries only short-circuit identical calls."""

    def __init__(
        self,
        *,
        ttl_seconds: float = 300.0,
        max_entries: int = 256,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, object]] = OrderedDict()
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def get_or_call(
        self,
        key: Hashable,
        loader: Callable[[], T],
        *,
        refresh: bool = False,
    ) -> T:
        """Return fresh cached value for key, or call loader and remember its result.

        `refresh` skips the lookup but still stores the new value. Exceptions from
        loader propagate and are never cached.
        """

        if self.ttl_seconds <= 0:
            return loader()

        with self._lock:
            entry = None if refresh else self._entries.get(key)
            if entry is not None:
                expires_at, value = entry
                if expires_at > self._clock():
                    self.stats.hits += 1
                    return value  # type: ignore[return-value]
                del self._entries[key]
            self.stats.misses += 1

        value = loader()

        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self.stats.evictions += 1
                logger.debug("Evicted cached provider response %s", evicted)
        return value

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
