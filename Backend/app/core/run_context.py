# Backend/app/core/run_context.py
from __future__ import annotations

import contextvars
import uuid
from contextlib import contextmanager
from typing import Iterator, Optional

_run_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("run_id", default=None)
_feed_url_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("feed_url", default=None)


def get_run_id() -> Optional[str]:
    return _run_id_ctx.get()


def get_feed_url() -> Optional[str]:
    return _feed_url_ctx.get()


@contextmanager
def with_run_id(run_id: Optional[str] = None) -> Iterator[str]:
    """
    Tag every log event emitted inside the block with one run id:

        with with_run_id():
            await service.check_feeds(requests)
    """
    token = _run_id_ctx.set(run_id or uuid.uuid4().hex)
    try:
        yield _run_id_ctx.get()  # type: ignore[misc]
    finally:
        _run_id_ctx.reset(token)


@contextmanager
def with_feed_url(url: str) -> Iterator[str]:
    # Each asyncio task copies the context, so concurrent checks don't clobber each other.
    token = _feed_url_ctx.set(url)
    try:
        yield url
    finally:
        _feed_url_ctx.reset(token)
