from __future__ import annotations

import itertools
import threading
from typing import Dict, Iterator, List, Optional, Sequence

from app.core.config import settings

FEED_ACCEPT = (
    "application/rss+xml, application/atom+xml, application/feed+json, "
    "application/xml;q=0.9, text/xml;q=0.9, application/json;q=0.8, */*;q=0.5"
)


class HeaderProvider:
    """
    Content-negotiation headers for feed requests with a rotating User-Agent.
    """

    def __init__(
        self,
        user_agents: Optional[Sequence[str]] = None,
        *,
        accept_language: Optional[str] = None,
    ) -> None:
        agents: List[str] = [ua for ua in (user_agents or settings.FEED_USER_AGENTS) if ua]
        if not agents:
            raise ValueError("HeaderProvider needs at least one User-Agent")
        self.user_agents = agents
        self.accept_language = accept_language or settings.FEED_ACCEPT_LANGUAGE
        self._cycle: Iterator[str] = itertools.cycle(agents)
        self._lock = threading.Lock()

    def next_user_agent(self) -> str:
        with self._lock:
            return next(self._cycle)

    def headers_for(self, url: str) -> Dict[str, str]:
        return {
            "User-Agent": self.next_user_agent(),
            "Accept": FEED_ACCEPT,
            "Accept-Language": self.accept_language,
            "Cache-Control": "no-cache",
        }
