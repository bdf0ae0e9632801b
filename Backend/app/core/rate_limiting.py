# Backend/app/core/rate_limiting.py
"""
Per-domain request pacing using a sliding window.

Every domain keeps the start times of its recent requests. A request may start
once fewer than ``limit`` requests started within the last ``window_seconds``.
Slots are reserved under the domain's lock and waited for outside it, so a
cancelled waiter only wastes its own slot and never blocks other domains.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional

from app.core.domain_policies import DomainPolicies, get_domain_policies
from app.core.logging import get_logger
from app.models.feed_source import extract_domain

logger = get_logger()

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def _normalize_key(domain_or_url: str) -> str:
    if "://" in domain_or_url:
        return extract_domain(domain_or_url)
    return (domain_or_url or "unknown").strip().lower()


class RateLimiter:
    def __init__(
        self,
        policies: Optional[DomainPolicies] = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._policies = policies
        self._clock = clock
        self._sleep = sleep
        self._slots: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    @property
    def policies(self) -> DomainPolicies:
        if self._policies is None:
            self._policies = get_domain_policies()
        return self._policies

    def _lock_for(self, domain: str) -> asyncio.Lock:
        return self._locks.setdefault(domain, asyncio.Lock())

    async def reserve(self, domain_or_url: str) -> float:
        """
        Reserve the next request slot for the domain.

        Returns the number of seconds the caller has to wait before its
        request may start (0 when it can go right away).
        """
        domain = _normalize_key(domain_or_url)
        policy = self.policies.for_domain(domain)
        async with self._lock_for(domain):
            now = self._clock()
            slots = self._slots.setdefault(domain, deque())
            while slots and slots[0] <= now - policy.window_seconds:
                slots.popleft()

            start_at = now
            if len(slots) >= policy.limit:
                start_at = max(now, slots[-policy.limit] + policy.window_seconds)
            slots.append(start_at)
            return start_at - now

    async def wait_if_needed(self, domain_or_url: str) -> None:
        """Suspend until it is safe to send another request to the domain."""
        delay = await self.reserve(domain_or_url)
        if delay > 0:
            logger.debug(
                "rate_limiter_wait",
                domain=_normalize_key(domain_or_url),
                delay_s=round(delay, 3),
            )
            await self._sleep(delay)

    def pending(self, domain_or_url: str) -> int:
        """Number of request starts currently counted against the domain's window."""
        domain = _normalize_key(domain_or_url)
        policy = self.policies.for_domain(domain)
        now = self._clock()
        slots = self._slots.get(domain) or ()
        return sum(1 for start in slots if start > now - policy.window_seconds)

    def reset(self, domain_or_url: Optional[str] = None) -> None:
        if domain_or_url is None:
            self._slots.clear()
            return
        self._slots.pop(_normalize_key(domain_or_url), None)
