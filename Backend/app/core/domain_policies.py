# Backend/app/core/domain_policies.py
"""
Per-domain pacing and rate-limit retry policies.

Parses configs/domain_policies.yml into DomainPolicy objects. A missing or
broken file is logged and replaced by built-in defaults so feed checks keep
running.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger()

DEFAULT_RATE_LIMIT: Tuple[int, int] = (10, 60)
DEFAULT_RETRY_BASE_S = 5.0
DEFAULT_RETRY_MAX_S = 60.0

BUILTIN_DOMAIN_CONFIG: Dict[str, Any] = {
    "domains": {
        "reddit.com": {
            "rate_limit": {"limit": 6, "window_seconds": 60},
            "retry_delays": [5, 15, 30],
        },
    },
}


@dataclass(frozen=True)
class DomainPolicy:
    """Pacing for one domain suffix."""

    domain: str
    limit: int = DEFAULT_RATE_LIMIT[0]
    window_seconds: float = DEFAULT_RATE_LIMIT[1]
    retry_delays: Tuple[float, ...] = ()
    retry_base_s: float = DEFAULT_RETRY_BASE_S
    retry_max_s: float = DEFAULT_RETRY_MAX_S

    def rate_limit_delay(self, attempt: int) -> float:
        """
        Seconds to wait after a rate-limit response on ``attempt`` (1-based).

        A configured table is walked step by step and its last value repeats;
        otherwise the delay doubles from ``retry_base_s`` up to ``retry_max_s``.
        """
        attempt = max(1, attempt)
        if self.retry_delays:
            index = min(attempt - 1, len(self.retry_delays) - 1)
            return float(self.retry_delays[index])
        return min(self.retry_base_s * 2 ** (attempt - 1), self.retry_max_s)


def load_domain_policies_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load raw YAML config.

    Returns empty dict if file is missing or invalid.
    """
    cfg_path = Path(path) if path else settings.DOMAIN_POLICIES_PATH
    try:
        text = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.error("domain_policies_config_not_found", path=str(cfg_path))
        return {}
    except OSError as exc:
        logger.error("domain_policies_config_read_error", path=str(cfg_path), error=str(exc))
        return {}

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        logger.error("domain_policies_config_parse_error", path=str(cfg_path), error=str(exc))
        return {}

    if not isinstance(data, dict):
        logger.error("domain_policies_config_invalid_root", path=str(cfg_path))
        return {}
    return data


def _build_policy(domain: str, raw: Mapping[str, Any], defaults: Mapping[str, Any]) -> DomainPolicy:
    merged_rate = dict(defaults.get("rate_limit") or {})
    merged_rate.update(raw.get("rate_limit") or {})

    delays_raw = raw.get("retry_delays", defaults.get("retry_delays"))
    retry_delays: Tuple[float, ...] = ()
    retry_base = DEFAULT_RETRY_BASE_S
    retry_max = DEFAULT_RETRY_MAX_S
    if isinstance(delays_raw, list):
        retry_delays = tuple(float(value) for value in delays_raw)
    elif isinstance(delays_raw, dict):
        retry_base = float(delays_raw.get("base_seconds", retry_base))
        retry_max = float(delays_raw.get("max_seconds", retry_max))

    return DomainPolicy(
        domain=domain,
        limit=max(1, int(merged_rate.get("limit", DEFAULT_RATE_LIMIT[0]))),
        window_seconds=max(0.001, float(merged_rate.get("window_seconds", DEFAULT_RATE_LIMIT[1]))),
        retry_delays=retry_delays,
        retry_base_s=retry_base,
        retry_max_s=retry_max,
    )


class DomainPolicies:
    """Suffix-matched lookup: a policy for ``reddit.com`` also covers ``old.reddit.com``."""

    def __init__(self, config: Optional[Mapping[str, Any]] = None) -> None:
        config = config if config is not None else {}
        defaults = config.get("_defaults") if isinstance(config.get("_defaults"), dict) else {}
        self.default = _build_policy("*", {}, defaults)
        self._policies: Dict[str, DomainPolicy] = {}

        domains = config.get("domains") or {}
        if not isinstance(domains, dict):
            logger.warning("domain_policies_invalid_domains_section")
            domains = {}
        for domain, raw in domains.items():
            key = str(domain).strip().lower()
            if not key or not isinstance(raw, dict):
                logger.warning("domain_policies_invalid_entry", domain=domain)
                continue
            try:
                self._policies[key] = _build_policy(key, raw, defaults)
            except (TypeError, ValueError) as exc:
                logger.warning("domain_policies_invalid_entry", domain=key, error=str(exc))

    def for_domain(self, domain: str) -> DomainPolicy:
        domain = (domain or "").lower()
        best: Optional[DomainPolicy] = None
        for key, policy in self._policies.items():
            if domain == key or domain.endswith("." + key):
                if best is None or len(key) > len(best.domain):
                    best = policy
        return best or self.default


@lru_cache(maxsize=1)
def get_domain_policies() -> DomainPolicies:
    config = load_domain_policies_config()
    if not config:
        logger.warning("domain_policies_using_builtin_defaults")
        config = BUILTIN_DOMAIN_CONFIG
    return DomainPolicies(config)
