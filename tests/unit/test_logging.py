"""Unit tests for the shared logging setup."""

from __future__ import annotations

import json
import logging

import structlog

from shoutout.core.logging import configure_logging


def _lines(capsys) -> list[dict]:
    return [json.loads(line) for line in capsys.readouterr().out.splitlines() if line]


def test_stdlib_records_render_as_json(capsys):
    configure_logging("INFO", json_logs=True)

    logging.getLogger("shoutout.pipeline.jobs").info("Poll finished: %d new", 3)

    [record] = _lines(capsys)
    assert record["event"] == "Poll finished: 3 new"
    assert record["level"] == "info"
    assert record["logger"] == "shoutout.pipeline.jobs"
    assert "timestamp" in record


def test_structlog_context_is_rendered(capsys):
    configure_logging("INFO", json_logs=True)

    structlog.get_logger("shoutout.web").info("request_started", path="/settings")

    [record] = _lines(capsys)
    assert record["event"] == "request_started"
    assert record["path"] == "/settings"


def test_level_comes_from_argument(capsys):
    configure_logging("warning", json_logs=True)

    logger = logging.getLogger("shoutout.pipeline.ingestion")
    logger.info("hidden")
    logger.warning("shown")

    assert [record["event"] for record in _lines(capsys)] == ["shown"]
    assert logging.getLogger().level == logging.WARNING


def test_reconfiguring_replaces_its_own_handler(capsys):
    root = logging.getLogger()
    before = len(root.handlers)

    configure_logging("INFO", json_logs=True)
    configure_logging("INFO", json_logs=True)

    assert len(root.handlers) == before + 1
    logging.getLogger("shoutout").info("once")
    assert [record["event"] for record in _lines(capsys)] == ["once"]


def test_noisy_libraries_are_quieted():
    configure_logging("DEBUG")

    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
