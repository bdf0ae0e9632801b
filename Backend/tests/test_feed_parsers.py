from __future__ import annotations

import json

import pytest

from app.models.feeds import FeedFormat, RawDocument
from fixtures import atom_document, json_feed_document, rss_document
from services.feed_errors import FeedParseError
from services.feed_format_detector import detect_feed_format
from services.feed_parsers import parse_document


def _document(body: str, content_type: str = "", url: str = "https://example.com/feed") -> RawDocument:
    return RawDocument(
        url=url,
        body=body,
        content=body.encode("utf-8"),
        content_type=content_type,
        detection=detect_feed_format(body, content_type, url),
    )


def test_rss_normalization_happy_path():
    body = rss_document([("First item", "https://example.com/1", "Mon, 01 Jan 2024 10:00:00 GMT")])

    feed = parse_document(_document(body, "application/rss+xml"))

    assert feed.feed_format is FeedFormat.RSS_2_0
    assert feed.title == "Example RSS"
    assert len(feed.items) == 1
    item = feed.items[0]
    assert item.id == "https://example.com/1"
    assert item.title == "First item"
    assert item.link == "https://example.com/1"
    assert item.description == "First item body"
    assert item.published_at is not None
    assert item.published_at.tzinfo is not None
    assert item.published_at.hour == 10


def test_rss_entry_order_is_preserved():
    body = rss_document(
        [
            ("Newest", "https://example.com/3", "Mon, 01 Jan 2024 12:00:00 GMT"),
            ("Middle", "https://example.com/2", "Mon, 01 Jan 2024 11:00:00 GMT"),
            ("Oldest", "https://example.com/1", "Mon, 01 Jan 2024 10:00:00 GMT"),
        ]
    )

    feed = parse_document(_document(body))

    assert [item.title for item in feed.items] == ["Newest", "Middle", "Oldest"]


def test_atom_normalization_prefers_content_and_reads_author():
    feed = parse_document(_document(atom_document(), "application/atom+xml"))

    assert feed.feed_format is FeedFormat.ATOM_1_0
    assert "atom_self_link" in feed.detected_features
    item = feed.items[0]
    assert item.id == "urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a"
    assert item.link == "https://example.org/2024/01/atom-entry"
    assert item.description == "Full body"
    assert item.author == "Jane Doe"
    assert item.categories == ["news"]
    assert item.published_at is not None
    assert item.published_at.year == 2024


def test_json_feed_normalization():
    feed = parse_document(_document(json_feed_document(), "application/feed+json"))

    assert feed.feed_format is FeedFormat.JSON_FEED_1_1
    assert feed.title == "Example JSON Feed"
    assert feed.link == "https://example.net/"
    item = feed.items[0]
    assert item.id == "json-1"
    assert item.link == "https://example.net/posts/1"
    assert item.description == "Hello JSON"
    assert item.author == "Sam"
    assert item.categories == ["python", "feeds"]
    assert item.published_at is not None


def test_json_feed_bad_entry_is_skipped():
    body = json_feed_document(
        items=[
            "not an object",
            {"id": "ok", "url": "https://example.net/ok", "title": "Fine"},
        ]
    )

    feed = parse_document(_document(body, "application/json"))

    assert [item.id for item in feed.items] == ["ok"]


def test_json_feed_without_items_raises():
    body = json.dumps({"version": "https://jsonfeed.org/version/1.1", "title": "broken"})

    with pytest.raises(FeedParseError):
        parse_document(_document(body, "application/feed+json"))


def test_invalid_json_raises_parse_error():
    document = RawDocument(url="https://example.com/feed.json", body="{not json")

    with pytest.raises(FeedParseError) as excinfo:
        parse_document(document, FeedFormat.JSON_FEED_1_1)

    assert "parse error" in str(excinfo.value).lower()


def test_unparseable_text_raises_parse_error():
    with pytest.raises(FeedParseError):
        parse_document(_document("this is not a feed at all", "text/plain"))


def test_entry_without_title_gets_placeholder():
    body = rss_document([("", "https://example.com/untitled", "Mon, 01 Jan 2024 10:00:00 GMT")])

    feed = parse_document(_document(body))

    assert feed.items[0].title == "Untitled"


def test_reddit_entry_gets_platform_id_and_external_link():
    body = """<?xml version="1.0" encoding="UTF-8"?>
    <feed xmlns="http://www.w3.org/2005/Atom">
      <title>r/python</title>
      <entry>
        <id>t3_abc123</id>
        <title>Interesting article</title>
        <link href="https://www.reddit.com/r/python/comments/abc123/interesting_article/" />
        <updated>2024-01-01T12:00:00+00:00</updated>
        <content type="html">&lt;div&gt;Worth a read&lt;/div&gt; &lt;a href="https://blog.example.com/post"&gt;[link]&lt;/a&gt;
          submitted by /u/someone [link] [comments]</content>
      </entry>
    </feed>
    """

    feed = parse_document(_document(body, "application/atom+xml", "https://www.reddit.com/r/python/.rss"))

    item = feed.items[0]
    assert item.id == "reddit_abc123"
    assert item.link == "https://blog.example.com/post"
    assert item.description is not None
    assert "Worth a read" in item.description
    assert "submitted by" not in item.description


def test_parsing_twice_yields_same_ids():
    body = rss_document(
        [
            ("A", "https://example.com/a", "Mon, 01 Jan 2024 10:00:00 GMT"),
            ("B", "https://example.com/b", "Mon, 01 Jan 2024 09:00:00 GMT"),
        ]
    )

    first = parse_document(_document(body))
    second = parse_document(_document(body))

    assert [i.id for i in first.items] == [i.id for i in second.items]
