# Backend/tests/fixtures/__init__.py
"""
Test fixtures for the feed engine tests.

Factory functions for creating test data:
- make_item()
- make_feed()
- make_settings()
- rss_document() / atom_document() / json_feed_document()
"""

from typing import Any, List, Optional, Sequence, Tuple
from datetime import datetime, timedelta, timezone
import json

from app.core.config import Settings
from app.models.feeds import FeedFormat, FeedItem, NormalizedFeed

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_item(
    item_id: str = "item-1",
    *,
    published_at: Optional[datetime] = BASE_TIME,
    link: Optional[str] = None,
    title: str = "Test Item",
) -> FeedItem:
    """Factory function to create a normalized feed item."""
    return FeedItem(
        id=item_id,
        title=title,
        link=link or f"https://example.com/{item_id}",
        published_at=published_at,
    )


def make_feed(items: Sequence[FeedItem] = (), **kwargs: Any) -> NormalizedFeed:
    """Factory function to create a normalized feed."""
    return NormalizedFeed(
        title=kwargs.pop("title", "Example Feed"),
        feed_format=kwargs.pop("feed_format", FeedFormat.RSS_2_0),
        items=list(items),
        **kwargs,
    )


def make_timeline(count: int, *, newest: datetime = BASE_TIME, step_minutes: int = 10) -> List[FeedItem]:
    """Newest-first items ``item-0`` .. ``item-{count-1}``, ``step_minutes`` apart."""
    return [
        make_item(f"item-{i}", published_at=newest - timedelta(minutes=step_minutes * i))
        for i in range(count)
    ]


def make_settings(**overrides: Any) -> Settings:
    """Settings with small, test-friendly resilience values."""
    values = {
        "FEED_MAX_ATTEMPTS": 3,
        "FEED_BACKOFF_BASE_S": 1.0,
        "FEED_BACKOFF_CAP_S": 30.0,
        "CIRCUIT_FAILURE_THRESHOLD": 5,
        "CIRCUIT_COOLDOWN_S": 300.0,
        "FEED_USER_AGENTS": ["test-agent/1.0"],
    }
    values.update(overrides)
    return Settings(**values)


def rss_document(entries: Sequence[Tuple[str, str, str]] = (), *, title: str = "Example RSS") -> str:
    """RSS 2.0 body; each entry is ``(title, link, pubDate)``."""
    items = "".join(
        f"""
        <item>
          <title>{entry_title}</title>
          <link>{link}</link>
          <description><![CDATA[<p>{entry_title} body</p>]]></description>
          <pubDate>{pub_date}</pubDate>
        </item>"""
        for entry_title, link, pub_date in entries
    )
    return f"""<?xml version="1.0" encoding="UTF-8"?>
    <rss version="2.0">
      <channel>
        <title>{title}</title>
        <link>https://example.com/</link>
        <description>Example channel</description>{items}
      </channel>
    </rss>
    """.strip()


def atom_document() -> str:
    return """<?xml version="1.0" encoding="utf-8"?>
    <feed xmlns="http://www.w3.org/2005/Atom">
      <title>Example Atom</title>
      <link href="https://example.org/" />
      <link rel="self" href="https://example.org/atom.xml" />
      <updated>2024-01-01T12:00:00Z</updated>
      <entry>
        <title>Atom entry</title>
        <id>urn:uuid:1225c695-cfb8-4ebb-aaaa-80da344efa6a</id>
        <link href="https://example.org/2024/01/atom-entry" />
        <updated>2024-01-01T12:00:00Z</updated>
        <author><name>Jane Doe</name></author>
        <summary>Short &amp; sweet</summary>
        <content type="html">&lt;p&gt;Full &lt;b&gt;body&lt;/b&gt;&lt;/p&gt;</content>
        <category term="news" />
      </entry>
    </feed>
    """.strip()


def json_feed_document(**overrides: Any) -> str:
    document = {
        "version": "https://jsonfeed.org/version/1.1",
        "title": "Example JSON Feed",
        "home_page_url": "https://example.net/",
        "items": [
            {
                "id": "json-1",
                "url": "https://example.net/posts/1",
                "title": "First JSON item",
                "content_html": "<p>Hello <em>JSON</em></p>",
                "date_published": "2024-01-01T12:00:00Z",
                "authors": [{"name": "Sam"}],
                "tags": ["python", "feeds"],
            }
        ],
    }
    document.update(overrides)
    return json.dumps(document)
