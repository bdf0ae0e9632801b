from __future__ import annotations

import json
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from app.models.feeds import DetectionResult, FeedFormat

ATOM_NAMESPACE = "http://www.w3.org/2005/Atom"
JSON_FEED_VERSION_MARKER = "jsonfeed.org/version/"
JSON_FEED_CURRENT_VERSION = "https://jsonfeed.org/version/1.1"
JSON_CONTENT_TYPES = ("application/feed+json", "application/json")

_XML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_ROOT_ELEMENT_RE = re.compile(r"<(?![?!])([A-Za-z_][\w.\-]*(?::[A-Za-z_][\w.\-]*)?)")
_RSS_VERSION_RE = re.compile(r"<rss\b[^>]*?\sversion\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)

_XML_FEATURE_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("itunes", "xmlns:itunes"),
    ("media_rss", "xmlns:media"),
    ("dublin_core", "xmlns:dc"),
    ("content_encoded", "<content:encoded"),
)


def _root_element(body: str) -> str:
    match = _ROOT_ELEMENT_RE.search(_XML_COMMENT_RE.sub("", body))
    if not match:
        return ""
    return match.group(1).split(":")[-1].lower()


def _xml_features(body: str) -> List[str]:
    lowered = body.lower()
    features = [name for name, marker in _XML_FEATURE_MARKERS if marker in lowered]
    if re.search(r"<(?:atom:)?link\b[^>]*rel\s*=\s*[\"']self[\"']", lowered):
        features.append("atom_self_link")
    if "<enclosure" in lowered or re.search(r"rel\s*=\s*[\"']enclosure[\"']", lowered):
        features.append("enclosures")
    if re.search(r"rel\s*=\s*[\"']hub[\"']", lowered):
        features.append("hubs")
    return features


def _json_features(document: Dict[str, Any]) -> List[str]:
    features: List[str] = []
    items = document.get("items")
    if isinstance(items, list) and any(isinstance(i, dict) and i.get("attachments") for i in items):
        features.append("json_attachments")
    if document.get("hubs"):
        features.append("hubs")
    if document.get("authors") or document.get("author"):
        features.append("authors")
    return features


def _load_json_object(body: str) -> Optional[Dict[str, Any]]:
    if not body.startswith("{"):
        return None
    try:
        document = json.loads(body)
    except ValueError:
        return None
    return document if isinstance(document, dict) else None


def detect_feed_format(body: str, content_type: str = "", url: str = "") -> DetectionResult:
    """
    Classify a response body.

    Evidence is weighed in order: JSON Feed version field, JSON content type,
    Atom namespace on a <feed> root, <rss> root. Anything else is unknown.
    """
    text = (body or "").lstrip("\ufeff").strip()
    content_type = (content_type or "").lower()

    document = _load_json_object(text)
    if document is not None:
        version = str(document.get("version") or "")
        if JSON_FEED_VERSION_MARKER in version:
            issues = []
            if version.rstrip("/") != JSON_FEED_CURRENT_VERSION:
                issues.append(f"JSON Feed version {version} parsed as 1.1")
            return DetectionResult(FeedFormat.JSON_FEED_1_1, 0.95, _json_features(document), issues)
        if any(ct in content_type for ct in JSON_CONTENT_TYPES):
            return DetectionResult(
                FeedFormat.JSON_FEED_1_1,
                0.7,
                _json_features(document),
                ["Missing JSON Feed version field"],
            )
        path = urlparse(url).path.lower() if url else ""
        if path.endswith(".json") and isinstance(document.get("items"), list):
            return DetectionResult(
                FeedFormat.JSON_FEED_1_1,
                0.6,
                _json_features(document),
                ["Missing JSON Feed version field", f"Unexpected content type: {content_type or 'none'}"],
            )
    elif any(ct in content_type for ct in JSON_CONTENT_TYPES):
        return DetectionResult(
            FeedFormat.UNKNOWN,
            0.1,
            [],
            [f"Content type {content_type} declared but body is not a JSON object"],
        )

    root = _root_element(text)
    if root == "feed":
        features = _xml_features(text)
        if ATOM_NAMESPACE in text:
            return DetectionResult(FeedFormat.ATOM_1_0, 0.9, features, [])
        return DetectionResult(FeedFormat.ATOM_1_0, 0.6, features, ["Missing Atom namespace declaration"])

    if root == "rss":
        issues = []
        match = _RSS_VERSION_RE.search(text)
        if not match:
            issues.append("Missing RSS version attribute")
        elif match.group(1).strip() != "2.0":
            issues.append(f"RSS version {match.group(1).strip()} parsed as RSS 2.0")
        return DetectionResult(FeedFormat.RSS_2_0, 0.9, _xml_features(text), issues)

    return DetectionResult(
        FeedFormat.UNKNOWN,
        0.1,
        [],
        [f"Unrecognized content type: {content_type or 'none'}"],
    )
