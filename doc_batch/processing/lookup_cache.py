"""
Run-scoped memoization of auxiliary document lookups.
"""

import logging

from typing import Any, Callable, Dict, Hashable


class _Absent:
    """Sentinel for a lookup that ran and found nothing."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class LookupCache:
    """
    Memoizes point lookups for the lifetime of one run.

    At most one underlying fetch happens per distinct key. A fetch that finds
    nothing is cached as ABSENT, so "looked up and missing" is never confused
    with "not yet looked up". A fetcher that raises caches nothing.

    Not shared across workers: each shard owns its own cache.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._entries: Dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get_or_fetch(self, key: Hashable, fetcher: Callable[[], Any]) -> Any:
        """
        Return the cached value for key, fetching it once on first use.

        Args:
            key: Hashable lookup key
            fetcher: Zero-argument callable returning the value or None

        Returns:
            The fetched value, or ABSENT when the fetcher returned None
        """
        if key in self._entries:
            self.hits += 1
            return self._entries[key]

        value = fetcher()
        if value is None:
            value = ABSENT
        self._entries[key] = value
        self.misses += 1

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(f"Cached lookup {key!r} ({'missing' if value is ABSENT else 'found'})")
        return value

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
