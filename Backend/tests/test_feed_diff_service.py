from __future__ import annotations

from datetime import timedelta

import pytest

from fixtures import BASE_TIME, make_feed, make_item, make_timeline
from services.feed_diff_service import FeedDiffEngine

NOW = BASE_TIME + timedelta(minutes=5)


@pytest.fixture
def engine() -> FeedDiffEngine:
    return FeedDiffEngine(
        reference_time=BASE_TIME - timedelta(minutes=25),
        recent_window_s=3600,
        fallback_max_items=5,
        now=lambda: NOW,
    )


def test_checkpoint_found_returns_newer_items(engine):
    feed = make_feed(make_timeline(4))

    result = engine.diff(feed, "item-2")

    assert [item.id for item in result.new_items] == ["item-0", "item-1"]
    assert result.newest_id == "item-0"
    assert result.total_count == 4


def test_checkpoint_found_single_new_item(engine):
    a, b, c = make_timeline(3)

    result = engine.diff(make_feed([a, b, c]), b.id)

    assert result.new_items == [a]
    assert result.newest_id == a.id


def test_checkpoint_is_newest_returns_nothing(engine):
    feed = make_feed(make_timeline(3))

    result = engine.diff(feed, "item-0")

    assert result.new_items == []
    assert result.newest_id == "item-0"


def test_checkpoint_at_top_reports_out_of_order_newer_items(engine):
    top = make_item("top", published_at=BASE_TIME - timedelta(hours=1))
    late = make_item("late", published_at=BASE_TIME)

    result = engine.diff(make_feed([top, late]), "top")

    assert [item.id for item in result.new_items] == ["late"]


def test_first_observation_only_reports_items_since_startup(engine):
    feed = make_feed(make_timeline(6))  # 0, -10, -20, -30, -40, -50 minutes

    result = engine.diff(feed)

    assert [item.id for item in result.new_items] == ["item-0", "item-1", "item-2"]
    assert result.newest_id == "item-0"
    assert result.total_count == 6


def test_first_observation_skips_undated_items(engine):
    feed = make_feed([make_item("undated", published_at=None), make_item("dated", published_at=BASE_TIME)])

    result = engine.diff(feed)

    assert [item.id for item in result.new_items] == ["dated"]
    assert result.newest_id == "undated"


def test_force_catch_up_excludes_future_items(engine):
    future = make_item("future", published_at=NOW + timedelta(hours=1))
    current = make_item("current", published_at=BASE_TIME)
    old = make_item("old", published_at=BASE_TIME - timedelta(days=1))

    result = engine.diff(make_feed([future, current, old]), force_catch_up=True)

    assert [item.id for item in result.new_items] == ["current"]


def test_checkpoint_not_found_uses_recent_window(engine):
    items = [
        make_item("recent-1", published_at=NOW - timedelta(minutes=10)),
        make_item("recent-2", published_at=NOW - timedelta(minutes=50)),
        make_item("stale", published_at=NOW - timedelta(hours=3)),
    ]

    result = engine.diff(make_feed(items), "gone")

    assert [item.id for item in result.new_items] == ["recent-1", "recent-2"]


def test_checkpoint_not_found_falls_back_to_five_most_recent(engine):
    items = make_timeline(8, newest=NOW - timedelta(days=2))

    result = engine.diff(make_feed(items), "gone")

    assert [item.id for item in result.new_items] == [f"item-{i}" for i in range(5)]
    assert len(result.new_items) <= 5


def test_checkpoint_not_found_reddit_caps_at_three(engine):
    items = [
        make_item(f"reddit_{i}", link=f"https://www.reddit.com/r/x/comments/{i}/", published_at=NOW - timedelta(days=1))
        for i in range(6)
    ]

    result = engine.diff(make_feed(items), "reddit_gone", source_url="https://www.reddit.com/r/x/.rss")

    assert len(result.new_items) == 3


def test_recent_window_result_is_capped(engine):
    items = make_timeline(10, newest=NOW, step_minutes=1)

    result = engine.diff(make_feed(items), "gone")

    assert len(result.new_items) == 5


def test_empty_feed(engine):
    result = engine.diff(make_feed([]), "anything")

    assert result.new_items == []
    assert result.newest_id is None
    assert result.total_count == 0


def test_diff_does_not_mutate_feed(engine):
    feed = make_feed(make_timeline(3))
    before = [item.id for item in feed.items]

    engine.diff(feed, "item-1")

    assert [item.id for item in feed.items] == before
