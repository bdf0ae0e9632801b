# Backend/app/core/config.py
from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Backend/app/core/config.py → parents[2] = Backend
BACKEND_DIR = Path(__file__).resolve().parents[2]
REPO_ROOT = BACKEND_DIR.parent
ENV_FILE = BACKEND_DIR / ".env"
DEFAULT_DOMAIN_POLICIES_PATH = REPO_ROOT / "configs" / "domain_policies.yml"

load_dotenv(ENV_FILE, override=False)

# Reference point for first-observation filtering when FEED_STARTUP_TIME is unset.
PROCESS_STARTED_AT = datetime.now(timezone.utc)

DEFAULT_USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_6) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.6 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64; rv:130.0) Gecko/20100101 Firefox/130.0",
    "feed-watch-engine/0.1",
]


class Settings(BaseSettings):
    # ---- App ----
    LOG_LEVEL: str = "INFO"

    # ---- HTTP fetch ----
    FEED_HTTP_TIMEOUT_S: float = 30.0
    FEED_MAX_ATTEMPTS: int = 3
    FEED_BACKOFF_BASE_S: float = 1.0
    FEED_BACKOFF_CAP_S: float = 30.0
    FEED_RETRY_AFTER_CAP_S: float = 300.0
    FEED_USER_AGENTS: List[str] = Field(default_factory=lambda: list(DEFAULT_USER_AGENTS))
    FEED_ACCEPT_LANGUAGE: str = "en-US,en;q=0.9"
    FEED_BLOCKED_URL_PATTERNS: List[str] = Field(default_factory=lambda: ["reddit.com.br"])

    # ---- Cache ----
    FEED_CACHE_TTL_S: float = 300.0
    # Expired entries stay around this long so their validators can be revalidated.
    FEED_CACHE_STALE_TTL_S: float = 86400.0
    FEED_CACHE_MAX_ENTRIES: int = 1000

    # ---- Circuit breaker ----
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_COOLDOWN_S: float = 300.0

    # ---- Rate limiting ----
    DOMAIN_POLICIES_PATH: Path = DEFAULT_DOMAIN_POLICIES_PATH

    # ---- Diff ----
    FEED_STARTUP_TIME: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("FEED_STARTUP_TIME", "BOT_STARTUP_TIME"),
    )
    DIFF_RECENT_WINDOW_S: float = 3600.0
    DIFF_FALLBACK_MAX_ITEMS: int = 5

    # ---- Scheduling hints returned to the caller ----
    FEED_CHECK_INTERVAL_S: float = 300.0
    FEED_CHECK_MAX_INTERVAL_S: float = 3600.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("FEED_STARTUP_TIME")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("FEED_MAX_ATTEMPTS", "CIRCUIT_FAILURE_THRESHOLD", "DIFF_FALLBACK_MAX_ITEMS")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        return max(1, value)


settings = Settings()


def get_startup_reference_time(cfg: Optional[Settings] = None) -> datetime:
    """Point in time from which entries count as new on a feed's first check."""
    cfg = cfg or settings
    return cfg.FEED_STARTUP_TIME or PROCESS_STARTED_AT
