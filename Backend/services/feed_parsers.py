from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import feedparser

from app.core.logging import get_logger
from app.models.feeds import FeedFormat, FeedItem, NormalizedFeed, RawDocument
from services.feed_content import first_non_empty, parse_date, sanitize_text
from services.feed_errors import FeedParseError
from services.feed_identity import assign_item_id
from services.feed_platforms import EntryFields, rule_for_link

logger = get_logger()

# feedparser keeps both the parsed struct_time and the raw string. Atom
# <updated> wins over <published>; RSS <pubDate> lands in "published".
_XML_DATE_FIELDS = ("updated_parsed", "updated", "published_parsed", "published", "pubDate")
_JSON_DATE_FIELDS = ("date_published", "date_modified")


class FeedEntryError(Exception):
    """
    A single entry that could not be normalized. Logged and counted, never
    fatal for the rest of the feed.
    """

    def __init__(self, message: str, entry_raw: Any = None):
        super().__init__(message)
        self.entry_raw = entry_raw


def _field(entry: Any, key: str) -> Any:
    # dict.get bypasses FeedParserDict's key aliasing (e.g. updated → published).
    if isinstance(entry, dict):
        return dict.get(entry, key)
    return getattr(entry, key, None)


def _first_content_value(entry: Any) -> str:
    content = _field(entry, "content")
    if isinstance(content, list):
        for block in content:
            value = _field(block, "value")
            if isinstance(value, str) and value.strip():
                return value
    if isinstance(content, dict):
        value = content.get("value")
        if isinstance(value, str):
            return value
    if isinstance(content, str):
        return content
    return ""


def _extract_xml_link(entry: Any) -> str:
    link = _field(entry, "link")
    if isinstance(link, str) and link.strip():
        return link.strip()

    links = _field(entry, "links")
    if isinstance(links, list):
        for link_entry in links:
            rel = str(_field(link_entry, "rel") or "").lower()
            href = _field(link_entry, "href")
            if isinstance(href, str) and href.strip() and rel in ("", "alternate"):
                return href.strip()
    return ""


def _extract_xml_date(entry: Any):
    for key in _XML_DATE_FIELDS:
        parsed = parse_date(_field(entry, key))
        if parsed is not None:
            return parsed
    return None


def _extract_xml_author(entry: Any) -> str:
    detail = _field(entry, "author_detail")
    if isinstance(detail, dict) and (detail.get("name") or detail.get("email")):
        return sanitize_text(detail.get("name") or detail.get("email"))
    author = _field(entry, "author")
    if isinstance(author, dict):
        return sanitize_text(author.get("name") or author.get("email") or "")
    creator = _field(entry, "dc_creator") or _field(entry, "creator")
    if isinstance(creator, str) and creator.strip():
        return sanitize_text(creator)
    if isinstance(author, str):
        return sanitize_text(author)
    return ""


def _extract_xml_categories(entry: Any) -> List[str]:
    tags = _field(entry, "tags") or []
    categories = []
    for tag in tags:
        term = _field(tag, "term") if not isinstance(tag, str) else tag
        if isinstance(term, str) and term.strip():
            categories.append(term.strip())
    return categories


def _build_item(
    *,
    title: str,
    declared_link: str,
    guid: str,
    raw_body: str,
    published_at,
    author: str,
    categories: List[str],
) -> FeedItem:
    rule = rule_for_link(declared_link)
    link = rule.canonical_link(declared_link, raw_body) or declared_link
    description = rule.enrich_content(declared_link, raw_body) if raw_body else ""
    item_id = assign_item_id(
        EntryFields(link=declared_link, guid=guid, title=title, published_at=published_at)
    )
    return FeedItem(
        id=item_id,
        title=sanitize_text(title) or "Untitled",
        link=link,
        description=description or None,
        published_at=published_at,
        author=author or None,
        categories=categories,
        guid=guid or None,
    )


def _normalize_xml_entry(entry: Any) -> FeedItem:
    title = _field(entry, "title")
    guid = _field(entry, "id") or _field(entry, "guid")
    raw_body = first_non_empty(
        [
            _first_content_value(entry),
            _field(entry, "summary"),
            _field(entry, "content_snippet"),
            _field(entry, "description"),
        ]
    )
    return _build_item(
        title=title if isinstance(title, str) else "",
        declared_link=_extract_xml_link(entry),
        guid=str(guid).strip() if guid else "",
        raw_body=raw_body,
        published_at=_extract_xml_date(entry),
        author=_extract_xml_author(entry),
        categories=_extract_xml_categories(entry),
    )


def _normalize_entries(
    entries: List[Any],
    normalize: Callable[[Any], FeedItem],
) -> Tuple[List[FeedItem], List[FeedEntryError]]:
    items: List[FeedItem] = []
    errors: List[FeedEntryError] = []
    for entry in entries:
        try:
            items.append(normalize(entry))
        except Exception as exc:
            errors.append(FeedEntryError(str(exc), entry_raw=entry))
    return items, errors


def _feedparser_document(document: RawDocument):
    payload = document.content or document.body.encode("utf-8")
    headers = {"content-type": document.content_type} if document.content_type else None
    return feedparser.parse(payload, response_headers=headers)


def _normalize_feedparser_result(parsed: Any, url: str) -> NormalizedFeed:
    feed_meta = _field(parsed, "feed") or {}
    entries = _field(parsed, "entries") or []
    items, errors = _normalize_entries(list(entries), _normalize_xml_entry)
    _log_entry_errors(errors, url)
    return NormalizedFeed(
        title=sanitize_text(_field(feed_meta, "title") or ""),
        description=sanitize_text(_field(feed_meta, "subtitle") or _field(feed_meta, "description") or ""),
        link=_field(feed_meta, "link") or "",
        items=items,
    )


def _parse_xml_feed(document: RawDocument) -> NormalizedFeed:
    parsed = _feedparser_document(document)
    if _field(parsed, "bozo") and not _field(parsed, "entries") and not _field(parsed, "version"):
        raise FeedParseError(str(_field(parsed, "bozo_exception") or "malformed XML"), url=document.url)
    if _field(parsed, "bozo"):
        logger.warning(
            "feed_parse_recovered",
            url=document.url,
            error=str(_field(parsed, "bozo_exception")),
        )
    return _normalize_feedparser_result(parsed, document.url)


def _parse_unknown_feed(document: RawDocument) -> NormalizedFeed:
    parsed = _feedparser_document(document)
    if not _field(parsed, "version") and not _field(parsed, "entries"):
        raise FeedParseError("Invalid feed: no RSS, Atom or JSON Feed structure found", url=document.url)
    return _normalize_feedparser_result(parsed, document.url)


def _json_author(entry: Mapping[str, Any]) -> str:
    authors = entry.get("authors")
    if isinstance(authors, list):
        for author in authors:
            if isinstance(author, dict) and (author.get("name") or author.get("url")):
                return sanitize_text(author.get("name") or author.get("url"))
    author = entry.get("author")
    if isinstance(author, dict):
        return sanitize_text(author.get("name") or author.get("url") or "")
    if isinstance(author, str):
        return sanitize_text(author)
    return ""


def _normalize_json_entry(entry: Any) -> FeedItem:
    if not isinstance(entry, dict):
        raise FeedEntryError("JSON Feed item is not an object", entry_raw=entry)
    published_at = None
    for key in _JSON_DATE_FIELDS:
        published_at = parse_date(entry.get(key))
        if published_at is not None:
            break
    guid = entry.get("id")
    tags = entry.get("tags") if isinstance(entry.get("tags"), list) else []
    return _build_item(
        title=entry.get("title") if isinstance(entry.get("title"), str) else "",
        declared_link=str(entry.get("url") or entry.get("external_url") or "").strip(),
        guid=str(guid).strip() if guid is not None else "",
        raw_body=first_non_empty([entry.get("content_html"), entry.get("content_text"), entry.get("summary")]),
        published_at=published_at,
        author=_json_author(entry),
        categories=[str(tag).strip() for tag in tags if str(tag).strip()],
    )


def _parse_json_feed(document: RawDocument) -> NormalizedFeed:
    try:
        data = json.loads(document.body)
    except ValueError as exc:
        raise FeedParseError(f"invalid JSON: {exc}", url=document.url) from exc
    if not isinstance(data, dict):
        raise FeedParseError("JSON Feed root is not an object", url=document.url)
    entries = data.get("items")
    if not isinstance(entries, list):
        raise FeedParseError("JSON Feed has no items array", url=document.url)

    items, errors = _normalize_entries(entries, _normalize_json_entry)
    _log_entry_errors(errors, document.url)
    return NormalizedFeed(
        title=sanitize_text(data.get("title") or ""),
        description=sanitize_text(data.get("description") or ""),
        link=str(data.get("home_page_url") or ""),
        items=items,
    )


def _log_entry_errors(errors: List[FeedEntryError], url: str) -> None:
    for err in errors:
        entry_raw = err.entry_raw if isinstance(err.entry_raw, dict) else {}
        logger.warning(
            "feed_entry_normalization_error",
            url=url,
            entry_link=entry_raw.get("link") or entry_raw.get("url") or entry_raw.get("id"),
            error=str(err),
        )


PARSERS: Dict[FeedFormat, Callable[[RawDocument], NormalizedFeed]] = {
    FeedFormat.RSS_2_0: _parse_xml_feed,
    FeedFormat.ATOM_1_0: _parse_xml_feed,
    FeedFormat.JSON_FEED_1_1: _parse_json_feed,
    FeedFormat.UNKNOWN: _parse_unknown_feed,
}


def parse_document(document: RawDocument, feed_format: Optional[FeedFormat] = None) -> NormalizedFeed:
    """
    Parse a fetched document with the parser registered for its detected
    format and stamp the detection outcome onto the result.
    """
    detection = document.detection
    feed_format = feed_format or (detection.format if detection else FeedFormat.UNKNOWN)
    feed = PARSERS[feed_format](document)
    feed.feed_format = feed_format
    feed.detected_features = list(detection.features) if detection else []
    return feed
