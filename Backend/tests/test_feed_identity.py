from __future__ import annotations

from datetime import datetime, timezone

from services.feed_identity import assign_item_id
from services.feed_platforms import EntryFields, short_hash


def test_reddit_comment_link_wins_over_guid():
    entry = EntryFields(
        link="https://www.reddit.com/r/python/comments/1abcde/some_title/",
        guid="t3_zzzzzz",
    )

    assert assign_item_id(entry) == "reddit_1abcde"


def test_reddit_user_comment_link():
    entry = EntryFields(link="https://old.reddit.com/user/some-one/comments/xyz789/post/")

    assert assign_item_id(entry) == "reddit_xyz789"


def test_reddit_guid_tail_when_link_has_no_post_id():
    entry = EntryFields(link="https://www.reddit.com/r/python/", guid="t3_q1w2e3")

    assert assign_item_id(entry) == "reddit_guid_q1w2e3"


def test_reddit_link_hash_as_last_platform_resort():
    link = "https://www.reddit.com/r/python/wiki/index"

    assert assign_item_id(EntryFields(link=link)) == f"reddit_link_{short_hash(link)}"


def test_generic_guid_then_link():
    assert assign_item_id(EntryFields(link="https://example.com/a", guid="guid-1")) == "guid-1"
    assert assign_item_id(EntryFields(link="https://example.com/a")) == "https://example.com/a"


def test_whitespace_only_fields_are_ignored():
    entry = EntryFields(link="   ", guid="  ", title="Hello World")

    assert assign_item_id(entry) == "hello-world"


def test_title_and_date_slug():
    published = datetime(2024, 1, 1, 12, 30, tzinfo=timezone.utc)

    item_id = assign_item_id(EntryFields(title="Breaking: Big News!", published_at=published))

    assert item_id == "breaking-big-news-2024-01-01t12-30-00-00-00"


def test_untitled_fallback():
    assert assign_item_id(EntryFields()) == "untitled"


def test_identity_is_deterministic():
    entry = EntryFields(link="https://example.com/x", guid="", title="X")

    assert assign_item_id(entry) == assign_item_id(entry)
