from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Optional

import httpx

from app.core.circuit_breaker import CircuitBreaker
from app.core.config import Settings, settings as default_settings
from app.core.domain_policies import DomainPolicies, get_domain_policies
from app.core.logging import get_logger
from app.core.rate_limiting import RateLimiter
from app.models.feed_source import FeedSource, extract_domain
from app.models.feeds import FetchResult, RawDocument
from services.feed_cache_service import FeedCacheService
from services.feed_errors import (
    CircuitOpenError,
    ErrorKind,
    FeedBlockedError,
    FeedHTMLPageError,
    FeedHTTPStatusError,
    FeedInvalidURLError,
    FeedNetworkError,
    FeedRateLimitError,
    classify_error,
    is_rate_limit_error,
    is_retryable,
)
from services.feed_format_detector import detect_feed_format
from services.feed_parsers import parse_document
from services.header_provider import HeaderProvider

logger = get_logger()

Sleep = Callable[[float], Awaitable[None]]

_NO_CIRCUIT_RECORD = (ErrorKind.CIRCUIT_OPEN, ErrorKind.BLOCKED)


def backoff_delay(attempt: int, base_s: float = 1.0, cap_s: float = 30.0) -> float:
    """Delay before attempt ``attempt + 1``: ``min(base * 2**(attempt - 1), cap)``."""
    return min(base_s * 2 ** (max(1, attempt) - 1), cap_s)


def looks_like_html_page(body: str) -> bool:
    head = body.lstrip("\ufeff \t\r\n")[:64].lower()
    return head.startswith("<!doctype html") or head.startswith("<html")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


@dataclass
class _CallState:
    """Book-keeping for one fetch_url call."""

    failure_recorded: bool = False
    attempts: int = 0


class FeedFetchService:
    """
    Resilient feed fetcher: cache, block-list, circuit breaker, rate limiter,
    conditional GET, format detection and parsing, with retries and
    alternate-URL fallback.

    Use as an async context manager; it owns one httpx.AsyncClient unless a
    client is passed in.
    """

    def __init__(
        self,
        *,
        cache: Optional[FeedCacheService] = None,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        header_provider: Optional[HeaderProvider] = None,
        domain_policies: Optional[DomainPolicies] = None,
        cfg: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.cfg = cfg or default_settings
        self.cache = cache if cache is not None else FeedCacheService()
        self._domain_policies = domain_policies
        self.rate_limiter = rate_limiter or RateLimiter(domain_policies)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.cfg.CIRCUIT_FAILURE_THRESHOLD,
            cooldown_s=self.cfg.CIRCUIT_COOLDOWN_S,
        )
        self.header_provider = header_provider or HeaderProvider(
            self.cfg.FEED_USER_AGENTS,
            accept_language=self.cfg.FEED_ACCEPT_LANGUAGE,
        )
        self.timeout_s = self.cfg.FEED_HTTP_TIMEOUT_S
        self.max_attempts = max(1, self.cfg.FEED_MAX_ATTEMPTS)
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    @property
    def domain_policies(self) -> DomainPolicies:
        if self._domain_policies is None:
            self._domain_policies = get_domain_policies()
        return self._domain_policies

    async def __aenter__(self) -> "FeedFetchService":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                follow_redirects=True,
            )
            self._owns_client = True
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------ public

    async def fetch(self, url: str, *, revalidate: bool = False) -> FetchResult:
        """
        Fetch ``url``, falling back to its alternate URLs in order. Reports
        the original URL's failure when every candidate fails.
        """
        source = FeedSource.from_url(url)
        original_result = await self.fetch_url(url, revalidate=revalidate)
        if original_result.success:
            return original_result

        for candidate in source.candidates[1:]:
            result = await self.fetch_url(candidate, revalidate=revalidate)
            if result.success:
                logger.info("feed_fetch_alternate_url_succeeded", url=url, alternate_url=candidate)
                return result

        logger.error(
            "feed_fetch_failed",
            url=url,
            candidates=len(source.candidates),
            error=original_result.error,
        )
        return original_result

    async def fetch_url(self, url: str, *, revalidate: bool = False) -> FetchResult:
        """Fetch exactly one URL with caching, gating and bounded retries."""
        self._require_client()

        if not revalidate:
            cached = self.cache.get_entry(url)
            if cached is not None:
                logger.debug("feed_cache_hit", url=url)
                return FetchResult(success=True, url=url, feed=cached.feed, from_cache=True)

        if self._is_blocked(url):
            logger.warning("feed_fetch_blocked_url", url=url)
            return FetchResult(success=False, url=url, error=str(FeedBlockedError(url=url)))

        domain = extract_domain(url)
        state = _CallState()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            state.attempts = attempt
            client = self._require_client()
            try:
                return await self._fetch_once(client, url, domain, state)
            except CircuitOpenError as exc:
                if last_error is None:
                    last_error = exc
                else:
                    # The circuit refused this call's own retry (its half-open
                    # trial or a concurrent opening): report the earlier error.
                    logger.warning(
                        "feed_fetch_circuit_open_on_retry",
                        url=url,
                        attempt=attempt,
                        error=str(last_error),
                    )
                    break
            except Exception as exc:
                last_error = exc

            kind = classify_error(last_error)
            if not is_retryable(last_error):
                logger.warning(
                    "feed_fetch_non_retryable_error",
                    url=url,
                    attempt=attempt,
                    kind=kind.value,
                    error=str(last_error),
                )
                if kind not in _NO_CIRCUIT_RECORD:
                    await self._record_failure(domain, state)
                break

            if attempt >= self.max_attempts:
                logger.warning(
                    "feed_fetch_attempt_failed",
                    url=url,
                    attempt=attempt,
                    kind=kind.value,
                    error=str(last_error),
                )
                break

            delay = self._retry_delay(last_error, domain, attempt)
            logger.warning(
                "feed_fetch_attempt_failed",
                url=url,
                attempt=attempt,
                kind=kind.value,
                error=str(last_error),
                retry_in_s=delay,
            )
            await self._sleep(delay)

        if last_error is not None and is_retryable(last_error):
            await self._record_failure(domain, state)
            logger.error(
                "feed_fetch_retries_exhausted",
                url=url,
                attempts=state.attempts,
                error=str(last_error),
            )

        message = str(last_error) if last_error is not None else "Unknown error occurred"
        return FetchResult(success=False, url=url, error=message or last_error.__class__.__name__)

    async def validate_feed_url(self, url: str) -> bool:
        """True when ``url`` (or one of its alternates) serves a parseable feed."""
        result = await self.fetch(url)
        return result.success

    # ---------------------------------------------------------------- internal

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(f"{self.__class__.__name__} HTTP client not initialized")
        return self._client

    def _is_blocked(self, url: str) -> bool:
        lowered = url.lower()
        return any(pattern and pattern.lower() in lowered for pattern in self.cfg.FEED_BLOCKED_URL_PATTERNS)

    async def _record_failure(self, domain: str, state: _CallState) -> None:
        if state.failure_recorded:
            return
        state.failure_recorded = True
        await self.circuit_breaker.record_failure(domain)

    def _retry_delay(self, exc: Exception, domain: str, attempt: int) -> float:
        if is_rate_limit_error(exc):
            delay = self.domain_policies.for_domain(domain).rate_limit_delay(attempt)
            retry_after = getattr(exc, "retry_after", None)
            if retry_after:
                delay = max(delay, min(retry_after, self.cfg.FEED_RETRY_AFTER_CAP_S))
            return delay
        return backoff_delay(attempt, self.cfg.FEED_BACKOFF_BASE_S, self.cfg.FEED_BACKOFF_CAP_S)

    def _request_headers(self, url: str):
        headers = self.header_provider.headers_for(url)
        cached = self.cache.get_entry(url, include_expired=True)
        if cached is not None:
            if cached.etag:
                headers["If-None-Match"] = cached.etag
            if cached.last_modified:
                headers["If-Modified-Since"] = cached.last_modified
        return headers, cached

    async def _fetch_once(
        self, client: httpx.AsyncClient, url: str, domain: str, state: _CallState
    ) -> FetchResult:
        if not await self.circuit_breaker.may_execute(domain):
            raise CircuitOpenError(domain, url=url)

        await self.rate_limiter.wait_if_needed(domain)

        headers, cached = self._request_headers(url)
        try:
            response = await client.get(url, headers=headers, timeout=self.timeout_s)
        except httpx.TimeoutException as exc:
            raise FeedNetworkError(f"Request timed out after {self.timeout_s:g}s", url=url) from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise FeedInvalidURLError(str(exc), url=url) from exc
        except httpx.TransportError as exc:
            raise FeedNetworkError(f"Network error: {str(exc) or exc.__class__.__name__}", url=url) from exc

        if response.status_code == 304 and cached is not None:
            self.cache.touch(url)
            logger.debug("feed_not_modified", url=url)
            return FetchResult(success=True, url=url, feed=cached.feed, from_cache=True, not_modified=True)

        if not response.is_success:
            await self._record_failure(domain, state)
            if response.status_code == 429:
                raise FeedRateLimitError(
                    response.status_code,
                    response.reason_phrase,
                    retry_after=parse_retry_after(response.headers.get("retry-after")),
                    url=url,
                )
            raise FeedHTTPStatusError(response.status_code, response.reason_phrase, url=url)

        await self.circuit_breaker.record_success(domain)

        body = response.text
        if looks_like_html_page(body):
            raise FeedHTMLPageError(url=url)

        content_type = response.headers.get("content-type", "")
        detection = detect_feed_format(body, content_type, url)
        logger.info(
            "feed_format_detected",
            url=url,
            feed_format=detection.format.description,
            confidence=detection.confidence,
            features=detection.features,
        )
        if detection.issues:
            logger.warning("feed_format_issues", url=url, issues=detection.issues)

        document = RawDocument(
            url=url,
            body=body,
            content=response.content,
            content_type=content_type,
            etag=response.headers.get("etag"),
            last_modified=response.headers.get("last-modified"),
            detection=detection,
        )
        feed = parse_document(document)

        self.cache.set_with_headers(
            url,
            feed,
            etag=document.etag,
            last_modified=document.last_modified,
        )
        logger.info("feed_fetch_succeeded", url=url, items=len(feed.items), attempt=state.attempts)
        return FetchResult(success=True, url=url, feed=feed)
