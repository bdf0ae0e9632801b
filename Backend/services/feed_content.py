from __future__ import annotations

import calendar
import re
import time
import warnings
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning
from dateutil import parser as date_parser

# Feed bodies are often short strings that merely look like URLs.
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

_WHITESPACE_RE = re.compile(r"\s+")
_SLUG_RE = re.compile(r"[^a-z0-9-]+")


def sanitize_text(value: Optional[str]) -> str:
    """Strip HTML tags, decode entities and collapse whitespace."""
    if not value:
        return ""
    text = str(value)
    if "<" in text or "&" in text:
        text = BeautifulSoup(text, "html.parser").get_text(" ")
    text = text.replace("\xa0", " ")
    return _WHITESPACE_RE.sub(" ", text).strip()


def first_non_empty(values: Iterable[Any]) -> str:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _struct_time_to_datetime(value: time.struct_time) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
    except (OverflowError, ValueError, TypeError):
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a feed date into an aware UTC datetime.

    Accepts datetimes, ``time.struct_time`` (feedparser's ``*_parsed``),
    ISO 8601 strings and RFC 822/2822 strings. Returns None when nothing
    parses.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, time.struct_time):
        return _struct_time_to_datetime(value)
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00").replace("z", "+00:00")))
    except ValueError:
        pass
    try:
        return _as_utc(date_parser.parse(text))
    except (ValueError, OverflowError):
        return None


def slugify(value: str) -> str:
    slug = _SLUG_RE.sub("-", value.lower())
    return re.sub(r"-{2,}", "-", slug).strip("-")
