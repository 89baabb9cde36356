"""LRU + TTL cache of complete ranked responses."""

import copy
import json
import re
import threading
import time
from collections import OrderedDict
from typing import Callable, List, Optional

from loguru import logger

from .models import CacheEntry, RankedResult, SearchOptions


class ResultCache:
    """
    LRU cache for ranked search responses.

    Safe to share between threads and between concurrent coroutines;
    every operation holds the internal lock.
    """

    def __init__(self,
                 max_size: int = 1000,
                 ttl_seconds: float = 300,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize result cache.

        Args:
            max_size: Maximum cache entries
            ttl_seconds: Time to live for cache entries
            clock: Monotonic time source, in seconds
        """
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(query: str, options: SearchOptions) -> str:
        """
        Build a stable key from the normalized query and the options.

        Filters are serialized in the order given, so two calls that only
        differ in filter order get different keys.
        """
        key_data = {
            'query': query.lower().strip(),
            'top_k': options.top_k,
            'threshold': options.similarity_threshold,
            'filters': [f.to_dict() for f in options.filters],
            'context': options.include_context,
            'expansion': options.enable_query_expansion,
            'ranking': options.enable_ranking,
        }
        return json.dumps(key_data, sort_keys=True, separators=(',', ':'))

    def get(self, key: str) -> Optional[List[RankedResult]]:
        """Get cached results if present and not expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            if self._clock() - entry.timestamp >= self.ttl_seconds:
                del self._entries[key]
                logger.debug(f"Cache entry expired: {key}")
                return None

            self._entries.move_to_end(key)
            return copy.deepcopy(list(entry.results))

    def put(self, key: str, results: List[RankedResult]) -> None:
        """Insert or replace an entry, evicting the least recently used one."""
        with self._lock:
            if key in self._entries:
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry: {oldest}")

            self._entries[key] = CacheEntry(
                key=key,
                results=tuple(copy.deepcopy(results)),
                timestamp=self._clock()
            )

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """
        Remove all entries, or only those whose key matches ``pattern``.

        Returns the number of removed entries. A malformed pattern removes
        nothing.
        """
        with self._lock:
            if pattern is None:
                removed = len(self._entries)
                self._entries.clear()
                logger.info(f"Cleared all {removed} cache entries")
                return removed

            try:
                regex = re.compile(pattern)
            except re.error as e:
                logger.warning(f"Invalid cache invalidation pattern {pattern!r}: {e}")
                return 0

            doomed = [key for key in self._entries if regex.search(key)]
            for key in doomed:
                del self._entries[key]

        logger.info(f"Removed {len(doomed)} cache entries matching pattern: {pattern}")
        return len(doomed)

    def clear(self) -> None:
        self.invalidate()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
