"""
Tests for logging configuration.
"""

import json
import logging
import sys

from todo_api.logger import LOGGER_NAME, JSONFormatter, logger


def test_logger_is_named_and_has_console_handler():
    assert logger.name == LOGGER_NAME
    stream_handlers = [h for h in logger.handlers if isinstance(h, logging.StreamHandler)]
    assert len(stream_handlers) >= 1


def test_json_formatter_fields():
    record = logging.LogRecord(LOGGER_NAME, logging.WARNING, __file__, 10, "User not found: id=%s", (5,), None)

    data = json.loads(JSONFormatter().format(record))

    assert data["level"] == "WARNING"
    assert data["logger"] == LOGGER_NAME
    assert data["message"] == "User not found: id=5"
    assert data["line"] == 10
    assert "exception" not in data


def test_json_formatter_includes_exception():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        exc_info = sys.exc_info()
    record = logging.LogRecord(LOGGER_NAME, logging.ERROR, __file__, 1, "failed", (), exc_info)

    data = json.loads(JSONFormatter().format(record))

    assert "RuntimeError: boom" in data["exception"]
