from __future__ import annotations

import time
from typing import Callable, Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger
from app.models.feeds import CacheEntry, NormalizedFeed

logger = get_logger()


class FeedCacheService:
    """
    In-process cache of parsed feeds keyed by URL.

    Entries are fresh for ``ttl_s``; after that they are kept for another
    ``stale_ttl_s`` so their ETag/Last-Modified can still be sent as
    conditional request headers. Writes are last-writer-wins per URL.
    """

    def __init__(
        self,
        *,
        ttl_s: Optional[float] = None,
        stale_ttl_s: Optional[float] = None,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_s = ttl_s if ttl_s is not None else settings.FEED_CACHE_TTL_S
        self.stale_ttl_s = stale_ttl_s if stale_ttl_s is not None else settings.FEED_CACHE_STALE_TTL_S
        self.max_entries = max(1, max_entries or settings.FEED_CACHE_MAX_ENTRIES)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get_entry(self, url: str, *, include_expired: bool = False) -> Optional[CacheEntry]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        now = self._clock()
        if entry.is_fresh(now):
            return entry
        if now >= entry.expires_at + self.stale_ttl_s:
            self._entries.pop(url, None)
            return None
        return entry if include_expired else None

    def set_with_headers(
        self,
        url: str,
        feed: NormalizedFeed,
        *,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> CacheEntry:
        now = self._clock()
        entry = CacheEntry(
            url=url,
            feed=feed,
            stored_at=now,
            expires_at=now + self.ttl_s,
            etag=etag,
            last_modified=last_modified,
        )
        self._entries.pop(url, None)
        self._entries[url] = entry
        self._evict_overflow()
        return entry

    def touch(self, url: str) -> None:
        """Extend an entry's freshness after the origin confirmed it with a 304."""
        entry = self._entries.get(url)
        if entry is not None:
            entry.expires_at = self._clock() + self.ttl_s

    def invalidate(self, url: str) -> None:
        self._entries.pop(url, None)

    def clear(self) -> None:
        self._entries.clear()

    def _evict_overflow(self) -> None:
        # dicts keep insertion order and set_with_headers re-inserts, so the
        # first keys are the least recently stored.
        while len(self._entries) > self.max_entries:
            oldest_url = next(iter(self._entries))
            self._entries.pop(oldest_url, None)
            logger.debug("feed_cache_evicted", url=oldest_url)
