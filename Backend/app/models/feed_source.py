from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

BLOGGER_HOST_MARKERS: Tuple[str, ...] = ("blogspot.com", "blogger.com")
WORDPRESS_HOST_MARKERS: Tuple[str, ...] = ("wordpress.com", "wp.com")
BLOGGER_FEED_PATH = "/feeds/posts/default"
WORDPRESS_FEED_PATH = "/feed/"


def extract_domain(url: str) -> str:
    """Lower-cased hostname of ``url``; ``"unknown"`` when it cannot be parsed."""
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return "unknown"
    return hostname.lower() if hostname else "unknown"


def _replace_host(parsed, new_host: str) -> str:
    netloc = new_host
    if parsed.port:
        netloc = f"{new_host}:{parsed.port}"
    return urlunparse(parsed._replace(netloc=netloc))


def build_alternate_urls(url: str) -> List[str]:
    """
    Mechanical guesses to try when ``url`` fails: the www/no-www twin and
    well-known feed paths for Blogger and WordPress hosts.
    """
    try:
        parsed = urlparse(url)
        parsed.port  # raises on a malformed port
    except ValueError:
        return []
    hostname = (parsed.hostname or "").lower()
    if not hostname or parsed.scheme not in ("http", "https"):
        return []

    alternates: List[str] = []
    if hostname.startswith("www."):
        alternates.append(_replace_host(parsed, hostname[4:]))
    else:
        alternates.append(_replace_host(parsed, f"www.{hostname}"))

    if any(marker in hostname for marker in BLOGGER_HOST_MARKERS):
        if BLOGGER_FEED_PATH not in parsed.path:
            alternates.append(urlunparse(parsed._replace(path=BLOGGER_FEED_PATH)))
        query = dict(parse_qsl(parsed.query))
        query["alt"] = "rss"
        alternates.append(urlunparse(parsed._replace(path=BLOGGER_FEED_PATH, query=urlencode(query))))

    if any(marker in hostname for marker in WORDPRESS_HOST_MARKERS):
        alternates.append(urlunparse(parsed._replace(path=WORDPRESS_FEED_PATH)))

    return alternates


@dataclass(frozen=True)
class FeedSource:
    """A feed URL plus what the fetcher derives from it for one fetch."""

    url: str
    domain: str
    alternate_urls: Tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_url(cls, url: str) -> "FeedSource":
        return cls(
            url=url,
            domain=extract_domain(url),
            alternate_urls=tuple(build_alternate_urls(url)),
        )

    @property
    def candidates(self) -> List[str]:
        """The original URL first, then each distinct alternate."""
        seen = {self.url}
        ordered = [self.url]
        for alt in self.alternate_urls:
            if alt not in seen:
                seen.add(alt)
                ordered.append(alt)
        return ordered
