from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.core.config import Settings, settings as default_settings
from app.core.logging import get_logger
from app.core.run_context import with_feed_url
from app.models.feeds import FeedCheckRequest, FeedCheckResult, FeedItem
from services.feed_diff_service import FeedDiffEngine
from services.feed_fetch_service import FeedFetchService

logger = get_logger()


def process_items(items: Iterable[FeedItem]) -> List[FeedItem]:
    """Drop repeated ids within one batch, keeping the first occurrence."""
    seen = set()
    unique: List[FeedItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def next_check_delay(failure_count: int, interval_s: float, max_interval_s: float) -> float:
    return min(interval_s * 2 ** max(0, failure_count), max_interval_s)


class FeedCheckService:
    """
    One feed check: fetch, diff against the caller's checkpoint, dedupe, and
    tell the scheduler when to come back.

    The caller persists ``last_item_id`` and ``failure_count`` between checks;
    nothing here is durable.
    """

    def __init__(
        self,
        fetcher: FeedFetchService,
        diff_engine: Optional[FeedDiffEngine] = None,
        *,
        cfg: Optional[Settings] = None,
    ) -> None:
        self.cfg = cfg or default_settings
        self.fetcher = fetcher
        self.diff_engine = diff_engine or FeedDiffEngine(cfg=self.cfg)

    async def check_feed(
        self,
        url: str,
        last_seen_id: Optional[str] = None,
        *,
        failure_count: int = 0,
        force_catch_up: bool = False,
    ) -> FeedCheckResult:
        with with_feed_url(url):
            fetched = await self.fetcher.fetch(url)

            if not fetched.success or fetched.feed is None:
                failures = failure_count + 1
                delay = next_check_delay(failures, self.cfg.FEED_CHECK_INTERVAL_S, self.cfg.FEED_CHECK_MAX_INTERVAL_S)
                logger.warning(
                    "feed_check_failed",
                    url=url,
                    error=fetched.error,
                    failure_count=failures,
                    next_check_delay_s=delay,
                )
                return FeedCheckResult(
                    success=False,
                    url=url,
                    last_item_id=last_seen_id,
                    error=fetched.error or "Unknown error occurred",
                    failure_count=failures,
                    next_check_delay_s=delay,
                )

            diff = self.diff_engine.diff(
                fetched.feed,
                last_seen_id,
                force_catch_up,
                source_url=url,
            )
            new_items = process_items(diff.new_items)
            logger.info(
                "feed_check_completed",
                url=url,
                total_count=diff.total_count,
                new_items=len(new_items),
                from_cache=fetched.from_cache,
                not_modified=fetched.not_modified,
            )
            return FeedCheckResult(
                success=True,
                url=url,
                new_items=new_items,
                last_item_id=diff.newest_id or last_seen_id,
                total_count=diff.total_count,
                failure_count=0,
                next_check_delay_s=self.cfg.FEED_CHECK_INTERVAL_S,
            )

    async def check_feeds(self, requests: Sequence[FeedCheckRequest]) -> List[FeedCheckResult]:
        if not requests:
            logger.info("feed_check_no_feeds_configured")
            return []

        results = await asyncio.gather(
            *(
                self.check_feed(
                    req.url,
                    req.last_seen_id,
                    failure_count=req.failure_count,
                    force_catch_up=req.force_catch_up,
                )
                for req in requests
            )
        )

        summary = summarize_results(results)
        logger.info("feed_check_summary", **summary)
        return list(results)


def summarize_results(results: Sequence[FeedCheckResult]) -> Dict[str, Any]:
    failed_feeds = sum(1 for r in results if not r.success)
    return {
        "total_feeds": len(results),
        "total_new_items": sum(len(r.new_items) for r in results),
        "failed_feeds": failed_feeds,
        "degraded": bool(results) and failed_feeds / len(results) > 0.5,
    }
