"""
Platform-specific rules for entry identity, link rewriting and content enrichment.

Rules are tried in PLATFORM_RULES order; the first one whose ``matches``
accepts an entry link handles it, otherwise GENERIC_RULE applies. Adding a
platform means adding one rule class here.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import datetime
from html import unescape
from typing import List, Optional, Pattern, Sequence, Tuple
from urllib.parse import urlparse

from services.feed_content import sanitize_text

_URL_RE = re.compile(r"https?://[^\s<>\"'{}|\\^`\[\]]+")
_IMAGE_URL_RE = re.compile(
    r"https?://[^\s<>\"'{}|\\^`\[\]]*\.(?:jpg|jpeg|png|gif|webp)(?:\?[^\s<>\"'{}|\\^`\[\]]*)?",
    re.IGNORECASE,
)
_VIDEO_URL_RE = re.compile(
    r"https?://[^\s<>\"'{}|\\^`\[\]]*\.(?:mp4|webm|mov|avi)(?:\?[^\s<>\"'{}|\\^`\[\]]*)?",
    re.IGNORECASE,
)

MAX_IMAGES = 3
MAX_VIDEOS = 2


@dataclass(frozen=True)
class EntryFields:
    """The raw entry fields identity is derived from."""

    link: str = ""
    guid: str = ""
    title: str = ""
    published_at: Optional[datetime] = None


def short_hash(value: str) -> str:
    return hashlib.sha1(value.encode("utf-8", "ignore")).hexdigest()[:12]


def _hostname(url: str) -> str:
    try:
        return (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""


def _host_in(host: str, domains: Sequence[str]) -> bool:
    return any(host == domain or host.endswith("." + domain) for domain in domains)


def _unique(values: Sequence[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def format_media_section(label: str, urls: Sequence[str]) -> str:
    lines = [f"{label}:"]
    lines.extend(f"• {url}" for url in urls)
    return "\n".join(lines)


class PlatformRule:
    """Default behaviour: no platform ids, no link rewriting, plain sanitization."""

    name = "generic"
    # Not-found diff fallback tuning; None means "use the configured default".
    recent_window_s: Optional[float] = None
    fallback_max_items: Optional[int] = None

    def matches(self, link: str) -> bool:
        return True

    def extract_id(self, entry: EntryFields) -> Optional[str]:
        return None

    def canonical_link(self, link: str, content: str) -> Optional[str]:
        return None

    def enrich_content(self, link: str, content: str) -> str:
        return sanitize_text(content)


class RedditRule(PlatformRule):
    name = "reddit"
    domains: Tuple[str, ...] = ("reddit.com",)
    media_domains: Tuple[str, ...] = (
        "reddit.com",
        "redd.it",
        "redditmedia.com",
        "redditstatic.com",
    )
    id_patterns: Tuple[Pattern[str], ...] = (
        re.compile(r"/comments/([a-zA-Z0-9]+)"),
        re.compile(r"/r/\w+/comments/([a-zA-Z0-9]+)"),
        re.compile(r"/user/[\w-]+/comments/([a-zA-Z0-9]+)"),
        re.compile(r"/u/[\w-]+/comments/([a-zA-Z0-9]+)"),
    )
    _guid_tail_re = re.compile(r"([a-zA-Z0-9]+)$")
    _footer_res: Tuple[Pattern[str], ...] = (
        re.compile(r"submitted by\s+/u/[\w-]+\s*\[link\]\s*\[comments\]", re.IGNORECASE),
        re.compile(r"submitted by\s+/u/[\w-]+", re.IGNORECASE),
        re.compile(r"\[link\]\s*\[comments\]", re.IGNORECASE),
    )

    recent_window_s = 3600.0
    fallback_max_items = 3

    def matches(self, link: str) -> bool:
        return _host_in(_hostname(link), self.domains)

    def extract_id(self, entry: EntryFields) -> Optional[str]:
        for pattern in self.id_patterns:
            match = pattern.search(entry.link)
            if match:
                return f"reddit_{match.group(1)}"

        if entry.guid:
            tail = self._guid_tail_re.search(entry.guid)
            if tail:
                return f"reddit_guid_{tail.group(1)}"
            return f"reddit_guid_{short_hash(entry.guid)}"

        return f"reddit_link_{short_hash(entry.link)}"

    def canonical_link(self, link: str, content: str) -> Optional[str]:
        for raw_url in _URL_RE.findall(content or ""):
            url = unescape(raw_url)
            if not _host_in(_hostname(url), self.media_domains):
                return url
        return None

    def enrich_content(self, link: str, content: str) -> str:
        text = sanitize_text(content)
        for footer in self._footer_res:
            text = footer.sub("", text)
        text = " ".join(text.split())

        sections: List[str] = []
        if len(text) > 5:
            sections.append(text)

        images = _unique([unescape(url) for url in _IMAGE_URL_RE.findall(content or "")])
        if images:
            sections.append(format_media_section("Images", images[:MAX_IMAGES]))

        videos = _unique([unescape(url) for url in _VIDEO_URL_RE.findall(content or "")])
        if videos:
            sections.append(format_media_section("Videos", videos[:MAX_VIDEOS]))

        return "\n\n".join(sections)


GENERIC_RULE = PlatformRule()
PLATFORM_RULES: Tuple[PlatformRule, ...] = (RedditRule(),)


def rule_for_link(link: Optional[str]) -> PlatformRule:
    if link:
        for rule in PLATFORM_RULES:
            if rule.matches(link):
                return rule
    return GENERIC_RULE
