from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx

NON_RETRYABLE_STATUS_CODES = frozenset({401, 403, 404, 410})

_NON_RETRYABLE_PATTERNS = (
    "not found",
    "unauthorized",
    "forbidden",
    "invalid url",
    "invalid feed",
    "parse error",
)
_RATE_LIMIT_PATTERNS = (
    "status code 429",
    "too many requests",
    "rate limit",
)


class ErrorKind(str, Enum):
    NETWORK = "network"
    HTTP_STATUS = "http_status"
    RATE_LIMIT = "rate_limit"
    HTML_PAGE = "html_page"
    BLOCKED = "blocked"
    CIRCUIT_OPEN = "circuit_open"
    INVALID_URL = "invalid_url"
    PARSE = "parse"
    UNKNOWN = "unknown"


class FeedFetchError(Exception):
    """Base class for everything that can go wrong while fetching one feed URL."""

    kind: ErrorKind = ErrorKind.UNKNOWN
    retryable: bool = True

    def __init__(self, message: str, *, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FeedNetworkError(FeedFetchError):
    kind = ErrorKind.NETWORK


class FeedHTTPStatusError(FeedFetchError):
    kind = ErrorKind.HTTP_STATUS

    def __init__(self, status_code: int, reason: str = "", *, url: Optional[str] = None):
        reason = reason or httpx.codes.get_reason_phrase(status_code) or "Unknown status"
        super().__init__(f"HTTP {status_code}: {reason}", url=url)
        self.status_code = status_code
        self.retryable = status_code not in NON_RETRYABLE_STATUS_CODES


class FeedRateLimitError(FeedHTTPStatusError):
    kind = ErrorKind.RATE_LIMIT

    def __init__(
        self,
        status_code: int = 429,
        reason: str = "",
        *,
        retry_after: Optional[float] = None,
        url: Optional[str] = None,
    ):
        super().__init__(status_code, reason, url=url)
        self.retry_after = retry_after
        self.retryable = True


class FeedHTMLPageError(FeedFetchError):
    kind = ErrorKind.HTML_PAGE
    retryable = False

    def __init__(self, *, url: Optional[str] = None):
        super().__init__(
            "Received HTML page instead of a feed. Possible redirect or error page.",
            url=url,
        )


class FeedBlockedError(FeedFetchError):
    kind = ErrorKind.BLOCKED
    retryable = False

    def __init__(self, *, url: Optional[str] = None):
        super().__init__("URL is known to be problematic and has been skipped", url=url)


class CircuitOpenError(FeedFetchError):
    kind = ErrorKind.CIRCUIT_OPEN
    retryable = False

    def __init__(self, domain: str, *, url: Optional[str] = None):
        super().__init__(f"Circuit breaker is open for {domain}", url=url)
        self.domain = domain


class FeedInvalidURLError(FeedFetchError):
    kind = ErrorKind.INVALID_URL
    retryable = False

    def __init__(self, detail: str = "", *, url: Optional[str] = None):
        message = f"Invalid URL: {url}" if url else "Invalid URL"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, url=url)


class FeedParseError(FeedFetchError):
    kind = ErrorKind.PARSE
    retryable = False

    def __init__(self, message: str, *, url: Optional[str] = None):
        if "parse error" not in message.lower():
            message = f"Feed parse error: {message}"
        super().__init__(message, url=url)


def classify_error(exc: BaseException) -> ErrorKind:
    """Map any exception raised inside a fetch attempt onto the error taxonomy."""
    if isinstance(exc, FeedFetchError):
        return exc.kind
    if isinstance(exc, (httpx.InvalidURL, httpx.UnsupportedProtocol)):
        return ErrorKind.INVALID_URL
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.NETWORK

    message = str(exc).lower()
    if any(pattern in message for pattern in _RATE_LIMIT_PATTERNS):
        return ErrorKind.RATE_LIMIT
    if "invalid url" in message:
        return ErrorKind.INVALID_URL
    if "parse error" in message or "invalid feed" in message:
        return ErrorKind.PARSE
    if any(pattern in message for pattern in _NON_RETRYABLE_PATTERNS):
        return ErrorKind.HTTP_STATUS
    return ErrorKind.UNKNOWN


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, FeedFetchError):
        return exc.retryable
    kind = classify_error(exc)
    if kind in (ErrorKind.INVALID_URL, ErrorKind.PARSE):
        return False
    message = str(exc).lower()
    return not any(pattern in message for pattern in _NON_RETRYABLE_PATTERNS)


def is_rate_limit_error(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.RATE_LIMIT
