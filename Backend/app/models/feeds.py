from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class FeedFormat(str, Enum):
    RSS_2_0 = "rss_2_0"
    ATOM_1_0 = "atom_1_0"
    JSON_FEED_1_1 = "json_feed_1_1"
    UNKNOWN = "unknown"

    @property
    def description(self) -> str:
        return _FORMAT_DESCRIPTIONS[self]


_FORMAT_DESCRIPTIONS = {
    FeedFormat.RSS_2_0: "RSS 2.0",
    FeedFormat.ATOM_1_0: "Atom 1.0",
    FeedFormat.JSON_FEED_1_1: "JSON Feed 1.1",
    FeedFormat.UNKNOWN: "Unknown format",
}


class FeedItem(BaseModel):
    """
    One normalized feed entry. ``id`` is derived from entry content only,
    so re-fetching an unchanged feed yields the same ids.
    """

    id: str
    title: str
    link: str
    description: Optional[str] = None
    published_at: Optional[datetime] = None
    author: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    guid: Optional[str] = None


class NormalizedFeed(BaseModel):
    """Parsed feed; ``items`` keep the order the source declared (usually newest first)."""

    title: str = ""
    description: str = ""
    link: str = ""
    feed_format: FeedFormat = FeedFormat.UNKNOWN
    detected_features: List[str] = Field(default_factory=list)
    items: List[FeedItem] = Field(default_factory=list)


@dataclass
class DetectionResult:
    format: FeedFormat
    confidence: float
    features: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)


@dataclass
class RawDocument:
    """A fetched response body; lives only for the duration of one fetch attempt."""

    url: str
    body: str
    # Undecoded payload; XML parsers need it to honour the declared encoding.
    content: bytes = b""
    content_type: str = ""
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    detection: Optional[DetectionResult] = None


@dataclass
class CacheEntry:
    url: str
    feed: NormalizedFeed
    stored_at: float
    expires_at: float
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at


class FetchResult(BaseModel):
    success: bool
    url: str
    feed: Optional[NormalizedFeed] = None
    error: Optional[str] = None
    from_cache: bool = False
    not_modified: bool = False


class DiffResult(BaseModel):
    new_items: List[FeedItem] = Field(default_factory=list)
    newest_id: Optional[str] = None
    total_count: int = 0


class FeedCheckRequest(BaseModel):
    url: str
    last_seen_id: Optional[str] = None
    failure_count: int = 0
    force_catch_up: bool = False


class FeedCheckResult(BaseModel):
    """What a scheduler gets back from one feed check."""

    success: bool
    url: str
    new_items: List[FeedItem] = Field(default_factory=list)
    # Checkpoint to persist for the next check.
    last_item_id: Optional[str] = None
    total_count: int = 0
    error: Optional[str] = None
    failure_count: int = 0
    next_check_delay_s: float = 0.0
