from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from app.core.config import Settings, get_startup_reference_time, settings as default_settings
from app.core.logging import get_logger
from app.models.feeds import DiffResult, FeedItem, NormalizedFeed
from services.feed_platforms import PlatformRule, rule_for_link

logger = get_logger()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FeedDiffEngine:
    """
    Decides which entries of a freshly fetched feed are new relative to the
    caller's checkpoint (the id of the newest entry seen last time).

    Items are assumed newest first, which is what RSS, Atom and JSON Feed
    publishers emit in practice.
    """

    def __init__(
        self,
        reference_time: Optional[datetime] = None,
        *,
        recent_window_s: Optional[float] = None,
        fallback_max_items: Optional[int] = None,
        cfg: Optional[Settings] = None,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        cfg = cfg or default_settings
        self.reference_time = reference_time or get_startup_reference_time(cfg)
        self.recent_window_s = recent_window_s if recent_window_s is not None else cfg.DIFF_RECENT_WINDOW_S
        self.fallback_max_items = fallback_max_items if fallback_max_items is not None else cfg.DIFF_FALLBACK_MAX_ITEMS
        self._now = now

    def diff(
        self,
        feed: NormalizedFeed,
        last_seen_id: Optional[str] = None,
        force_catch_up: bool = False,
        *,
        source_url: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DiffResult:
        items = list(feed.items)
        newest_id = items[0].id if items else None
        now = now or self._now()

        if not last_seen_id:
            new_items = self._first_observation(items, force_catch_up, now)
            logger.info(
                "feed_diff_first_observation",
                items=len(items),
                new_items=len(new_items),
                force_catch_up=force_catch_up,
            )
            return DiffResult(new_items=new_items, newest_id=newest_id, total_count=len(items))

        index = next((i for i, item in enumerate(items) if item.id == last_seen_id), -1)
        if index > 0:
            new_items = items[:index]
        elif index == 0:
            new_items = self._newer_than(items, items[0])
        else:
            rule = rule_for_link(source_url or (items[0].link if items else None))
            new_items = self._checkpoint_missing(items, rule, now)
            logger.info(
                "feed_diff_checkpoint_not_found",
                last_seen_id=last_seen_id,
                platform=rule.name,
                new_items=len(new_items),
            )

        return DiffResult(new_items=new_items, newest_id=newest_id, total_count=len(items))

    def _first_observation(self, items: List[FeedItem], force_catch_up: bool, now: datetime) -> List[FeedItem]:
        # Undated entries cannot be placed relative to startup and are skipped.
        if force_catch_up:
            return [
                item for item in items
                if item.published_at is not None and self.reference_time <= item.published_at <= now
            ]
        return [
            item for item in items
            if item.published_at is not None and item.published_at >= self.reference_time
        ]

    @staticmethod
    def _newer_than(items: List[FeedItem], checkpoint: FeedItem) -> List[FeedItem]:
        if checkpoint.published_at is None:
            return []
        return [
            item for item in items
            if item.published_at is not None and item.published_at > checkpoint.published_at
        ]

    def _checkpoint_missing(self, items: List[FeedItem], rule: PlatformRule, now: datetime) -> List[FeedItem]:
        window_s = rule.recent_window_s if rule.recent_window_s is not None else self.recent_window_s
        limit = rule.fallback_max_items if rule.fallback_max_items is not None else self.fallback_max_items
        cutoff = now - timedelta(seconds=window_s)

        recent = [
            item for item in items
            if item.published_at is not None and cutoff <= item.published_at <= now
        ]
        if recent:
            return recent[:limit]
        return items[:limit]
