from __future__ import annotations

import argparse
import asyncio
import sys
from typing import List, Optional

from app.core.config import settings
from app.core.logging import configure_logging, get_logger
from app.core.run_context import with_run_id
from app.models.feeds import FeedCheckResult
from services.feed_check_service import FeedCheckService
from services.feed_fetch_service import FeedFetchService

configure_logging(service_name="worker", level=settings.LOG_LEVEL)
logger = get_logger().bind(worker="feed_check_bot")


def _non_negative_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("failure-count must be an integer") from exc
    if number < 0:
        raise argparse.ArgumentTypeError("failure-count must be >= 0")
    return number


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="FeedCheckBot: fetch one feed and report entries new since a checkpoint.")
    parser.add_argument("--url", required=True, help="Feed URL to check.")
    parser.add_argument(
        "--last-seen-id",
        default=None,
        help="Id of the newest entry seen on the previous check.",
    )
    parser.add_argument(
        "--force-catch-up",
        action="store_true",
        help="On a first check, report every entry published since startup.",
    )
    parser.add_argument(
        "--failure-count",
        type=_non_negative_int,
        default=0,
        help="Consecutive failures so far; drives the next-check backoff.",
    )
    return parser.parse_args(argv)


async def run_check(args: argparse.Namespace) -> FeedCheckResult:
    async with FeedFetchService() as fetcher:
        service = FeedCheckService(fetcher)
        return await service.check_feed(
            args.url,
            args.last_seen_id,
            failure_count=args.failure_count,
            force_catch_up=args.force_catch_up,
        )


async def main_async(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    with with_run_id():
        result = await run_check(args)
    sys.stdout.write(result.model_dump_json(indent=2) + "\n")
    if result.success:
        logger.info("feed_check_bot_finished", url=result.url, new_items=len(result.new_items))
        return 0
    logger.error("feed_check_bot_failed", url=result.url, error=result.error)
    return 1


def main() -> None:
    exit_code = asyncio.run(main_async())
    raise SystemExit(exit_code)


if __name__ == "__main__":
    main()
