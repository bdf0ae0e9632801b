# Backend/app/core/logging.py
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

import structlog

from app.core.run_context import get_feed_url, get_run_id


# -------- Processors ---------------------------------------------------------

def _add_ts(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("ts", datetime.now(timezone.utc).isoformat(timespec="milliseconds"))
    return event_dict


def _add_level(_: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    level = event_dict.get("level") or method_name or "info"
    event_dict["level"] = str(level).lower()
    return event_dict


def _add_service(service_name: str):
    def _inner(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict
    return _inner


def _add_run_context(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    run_id = get_run_id()
    if run_id:
        event_dict.setdefault("run_id", run_id)
    feed_url = get_feed_url()
    if feed_url:
        event_dict.setdefault("feed_url", feed_url)
    return event_dict


# Request headers end up in debug events; never print credentials.
_SECRET_KEYS = {
    "authorization", "proxy-authorization", "cookie", "set-cookie",
    "token", "access_token", "api_key", "apikey", "password", "secret",
}


def _redact_secrets(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in list(event_dict.items()):
        if str(key).lower() in _SECRET_KEYS:
            event_dict[key] = "***redacted***"
        elif isinstance(value, dict):
            event_dict[key] = {
                k: ("***redacted***" if str(k).lower() in _SECRET_KEYS else v)
                for k, v in value.items()
            }
    return event_dict


# -------- Public API ---------------------------------------------------------

_logger: structlog.BoundLogger | None = None


def configure_logging(service_name: str = "feed-engine", *, level: int | str = logging.INFO) -> None:
    """
    Configure the single structlog stack shared by the engine and its workers.
    """
    global _logger

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(message)s",
        stream=sys.stderr,
        force=True,
    )

    processors = [
        _add_ts,
        _add_level,
        _add_service(service_name),
        _add_run_context,
        _redact_secrets,
        structlog.processors.EventRenamer("event"),
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )

    _logger = structlog.get_logger()


def get_logger() -> structlog.BoundLogger:
    global _logger
    if _logger is None:
        configure_logging("feed-engine")
    return _logger


logger = get_logger()
