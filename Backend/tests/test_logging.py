from __future__ import annotations

import io
import json
import sys

import pytest

from app.core import logging as app_logging
from app.core.run_context import with_feed_url, with_run_id


@pytest.fixture(autouse=True)
def _restore_logging():
    yield
    app_logging.configure_logging()


@pytest.fixture
def log_stream(monkeypatch) -> io.StringIO:
    stream = io.StringIO()
    monkeypatch.setattr(sys, "stderr", stream)
    app_logging.configure_logging(service_name="test-service", level="INFO")
    return stream


def _last_event(stream: io.StringIO) -> dict:
    return json.loads(stream.getvalue().strip().splitlines()[-1])


def test_log_lines_carry_service_and_run_context(log_stream):
    logger = app_logging.get_logger()

    with with_run_id("run-123"), with_feed_url("https://example.com/rss"):
        logger.info("feed_check_completed", new_items=2)

    payload = _last_event(log_stream)
    assert payload["event"] == "feed_check_completed"
    assert payload["service"] == "test-service"
    assert payload["level"] == "info"
    assert payload["run_id"] == "run-123"
    assert payload["feed_url"] == "https://example.com/rss"
    assert payload["new_items"] == 2


def test_debug_is_filtered_at_info_level(log_stream):
    app_logging.get_logger().debug("feed_cache_hit", url="https://example.com/rss")

    assert log_stream.getvalue() == ""


def test_secrets_are_redacted(log_stream):
    app_logging.get_logger().info("config_loaded", api_key="abc", nested={"password": "x", "ok": 1})

    payload = _last_event(log_stream)
    assert payload["api_key"] != "abc"
    assert payload["nested"]["password"] != "x"
    assert payload["nested"]["ok"] == 1
