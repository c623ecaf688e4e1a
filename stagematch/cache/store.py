"""
TTL result cache with stale reads and a bounded LRU footprint.
"""
import threading
import time
import logging
from collections import OrderedDict
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

from config.settings import settings
from ..models import Query, ResultEntry, ResultSource

logger = logging.getLogger("search.cache")


class ResultCache:
    """
    Maps a normalized Query to its most recent ResultEntry.

    - get() only returns entries still inside their TTL
    - get_stale() returns the last entry regardless of age, tagged STALE
    - At most max_entries queries are kept; the least recently used one
      is evicted when a new query is stored past the bound

    The lock only guards dictionary operations and is never held while
    fetching, so unrelated queries do not wait on each other.
    """

    def __init__(
        self,
        ttl_seconds: int = settings.cache_ttl_seconds,
        max_entries: int = settings.cache_max_entries,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[Query, ResultEntry]" = OrderedDict()
        self._lock = threading.RLock()

        self._stats = {
            "hits_fresh": 0,
            "stale_reads": 0,
            "misses": 0,
            "evictions": 0,
        }

    def get(self, query: Query) -> Optional[ResultEntry]:
        """Return the entry for query if it has not expired yet."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(query)
            if entry is None or not entry.is_fresh(now):
                self._stats["misses"] += 1
                if entry is not None:
                    logger.debug(f"CACHE EXPIRED: {query.cache_key} [age={entry.age_seconds(now):.1f}s]")
                return None
            self._entries.move_to_end(query)
            self._stats["hits_fresh"] += 1
        logger.debug(f"CACHE HIT (fresh): {query.cache_key} [age={entry.age_seconds(now):.1f}s]")
        return entry

    def get_stale(self, query: Query) -> Optional[ResultEntry]:
        """Return the last stored entry for query even past expiry, marked STALE."""
        with self._lock:
            entry = self._entries.get(query)
            if entry is None:
                return None
            self._entries.move_to_end(query)
            self._stats["stale_reads"] += 1
        return replace(entry, source=ResultSource.STALE)

    def put(self, query: Query, entry: ResultEntry) -> None:
        """Store entry for query, replacing any previous one."""
        with self._lock:
            self._entries[query] = entry
            self._entries.move_to_end(query)
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                self._stats["evictions"] += 1
                logger.info(f"Evicted cache entry: {evicted.cache_key}")

    def store(self, query: Query, results) -> ResultEntry:
        """Build a fresh entry stamped with the current time and store it."""
        now = self._clock()
        entry = ResultEntry(
            results=tuple(results),
            fetched_at=now,
            expires_at=now + self.ttl_seconds,
            source=ResultSource.FRESH,
        )
        self.put(query, entry)
        return entry

    def invalidate(self, query: Query) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        with self._lock:
            if query in self._entries:
                del self._entries[query]
                logger.info(f"Invalidated cache: {query.cache_key}")
                return True
            return False

    def purge(self, older_than_seconds: float = 0) -> int:
        """
        Drop entries that expired more than older_than_seconds ago.

        Purged entries can no longer serve as stale fallback.

        Returns:
            Number of entries removed
        """
        cutoff = self._clock() - older_than_seconds
        with self._lock:
            to_delete = [q for q, e in self._entries.items() if e.expires_at <= cutoff]
            for query in to_delete:
                del self._entries[query]
        if to_delete:
            logger.info(f"Purged {len(to_delete)} expired cache entries")
        return len(to_delete)

    def clear(self) -> int:
        """
        Clear all cache entries.

        Returns:
            Number of entries cleared
        """
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            logger.info(f"Cleared {count} cache entries")
            return count

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            lookups = self._stats["hits_fresh"] + self._stats["misses"]
            hit_rate = (self._stats["hits_fresh"] / lookups * 100) if lookups > 0 else 0

            return {
                "entries": len(self._entries),
                "max_entries": self.max_entries,
                "ttl_seconds": self.ttl_seconds,
                **self._stats,
                "hit_rate_percent": round(hit_rate, 1),
            }
