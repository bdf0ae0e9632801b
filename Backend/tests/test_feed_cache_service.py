from __future__ import annotations

from fixtures import make_feed
from services.feed_cache_service import FeedCacheService


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_fresh_entry_is_returned():
    clock = FakeClock()
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=10, clock=clock)
    feed = make_feed()

    cache.set_with_headers("https://example.com/rss", feed, etag='"a"', last_modified="Mon, 01 Jan 2024 10:00:00 GMT")

    assert cache.get_entry("https://example.com/rss").feed == feed
    entry = cache.get_entry("https://example.com/rss")
    assert entry.etag == '"a"'
    assert entry.last_modified == "Mon, 01 Jan 2024 10:00:00 GMT"


def test_expired_entry_only_visible_for_revalidation():
    clock = FakeClock()
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=10, clock=clock)
    cache.set_with_headers("https://example.com/rss", make_feed(), etag='"a"')

    clock.now += 61

    assert cache.get_entry("https://example.com/rss") is None
    assert cache.get_entry("https://example.com/rss", include_expired=True).etag == '"a"'


def test_entry_dropped_after_stale_period():
    clock = FakeClock()
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=10, clock=clock)
    cache.set_with_headers("https://example.com/rss", make_feed())

    clock.now += 60 + 600

    assert cache.get_entry("https://example.com/rss", include_expired=True) is None
    assert len(cache) == 0


def test_touch_extends_freshness():
    clock = FakeClock()
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=10, clock=clock)
    cache.set_with_headers("https://example.com/rss", make_feed())

    clock.now += 61
    cache.touch("https://example.com/rss")

    assert cache.get_entry("https://example.com/rss") is not None


def test_oldest_entry_evicted_when_full():
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=2, clock=FakeClock())
    cache.set_with_headers("https://a.example/rss", make_feed())
    cache.set_with_headers("https://b.example/rss", make_feed())
    cache.set_with_headers("https://a.example/rss", make_feed())
    cache.set_with_headers("https://c.example/rss", make_feed())

    assert cache.get_entry("https://b.example/rss") is None
    assert cache.get_entry("https://a.example/rss") is not None
    assert cache.get_entry("https://c.example/rss") is not None


def test_invalidate_and_clear():
    cache = FeedCacheService(ttl_s=60, stale_ttl_s=600, max_entries=10, clock=FakeClock())
    cache.set_with_headers("https://a.example/rss", make_feed())
    cache.set_with_headers("https://b.example/rss", make_feed())

    cache.invalidate("https://a.example/rss")
    assert cache.get_entry("https://a.example/rss") is None

    cache.clear()
    assert len(cache) == 0
