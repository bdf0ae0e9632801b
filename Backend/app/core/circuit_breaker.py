# Backend/app/core/circuit_breaker.py
"""
Per-domain circuit breaker.

closed     normal operation, failures are counted
open       requests are rejected until the cooldown has elapsed
half_open  one probe request is admitted; its outcome closes or re-opens

Each domain has its own asyncio.Lock, so a gate check and a counter update for
one domain are indivisible without serializing unrelated domains.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Dict, Optional

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger()

Clock = Callable[[], float]


class CircuitMode(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    mode: CircuitMode = CircuitMode.CLOSED
    failures: int = 0
    opened_at: Optional[float] = None
    probe_started_at: Optional[float] = None


class CircuitBreaker:
    def __init__(
        self,
        *,
        failure_threshold: Optional[int] = None,
        cooldown_s: Optional[float] = None,
        clock: Clock = time.monotonic,
    ) -> None:
        self.failure_threshold = max(1, failure_threshold or settings.CIRCUIT_FAILURE_THRESHOLD)
        self.cooldown_s = cooldown_s if cooldown_s is not None else settings.CIRCUIT_COOLDOWN_S
        self._clock = clock
        self._states: Dict[str, CircuitState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, domain: str) -> asyncio.Lock:
        return self._locks.setdefault(domain, asyncio.Lock())

    def _state_for(self, domain: str) -> CircuitState:
        return self._states.setdefault(domain, CircuitState())

    def state(self, domain: str) -> CircuitState:
        """Copy of the domain's current state."""
        return replace(self._states.get(domain) or CircuitState())

    async def may_execute(self, domain: str) -> bool:
        async with self._lock_for(domain):
            state = self._state_for(domain)
            now = self._clock()

            if state.mode is CircuitMode.CLOSED:
                return True

            if state.mode is CircuitMode.OPEN:
                if state.opened_at is not None and now - state.opened_at < self.cooldown_s:
                    return False
                state.mode = CircuitMode.HALF_OPEN
                state.probe_started_at = now
                logger.info("circuit_half_open", domain=domain, failures=state.failures)
                return True

            # half_open: one probe at a time; a probe that never reported back
            # (cancelled, crashed caller) is replaced after a cooldown.
            if state.probe_started_at is not None and now - state.probe_started_at < self.cooldown_s:
                return False
            state.probe_started_at = now
            return True

    async def record_success(self, domain: str) -> None:
        async with self._lock_for(domain):
            state = self._state_for(domain)
            if state.mode is not CircuitMode.CLOSED:
                logger.info("circuit_closed", domain=domain, failures=state.failures)
            state.mode = CircuitMode.CLOSED
            state.failures = 0
            state.opened_at = None
            state.probe_started_at = None

    async def record_failure(self, domain: str) -> None:
        async with self._lock_for(domain):
            state = self._state_for(domain)
            now = self._clock()
            state.failures += 1

            if state.mode is CircuitMode.HALF_OPEN:
                state.mode = CircuitMode.OPEN
                state.opened_at = now
                state.probe_started_at = None
                logger.warning("circuit_probe_failed", domain=domain, failures=state.failures)
                return

            if state.mode is CircuitMode.OPEN:
                state.opened_at = now
                return

            if state.failures >= self.failure_threshold:
                state.mode = CircuitMode.OPEN
                state.opened_at = now
                logger.warning(
                    "circuit_opened",
                    domain=domain,
                    failures=state.failures,
                    cooldown_s=self.cooldown_s,
                )

    def reset(self, domain: Optional[str] = None) -> None:
        if domain is None:
            self._states.clear()
            return
        self._states.pop(domain, None)
