"""Tests for logging setup."""

import json
import logging

import pytest

from opencode_slack.observability import JSONFormatter, configure_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_format_installs_single_handler(restore_root_logger):
    configure_logging(level="debug", format="json")
    root = restore_root_logger
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert root.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_human_format(restore_root_logger):
    configure_logging(format="human")
    assert not isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)


def test_json_formatter_output():
    record = logging.LogRecord("opencode_slack.x", logging.WARNING, __file__, 1, "run %s", ("A",), None)
    data = json.loads(JSONFormatter().format(record))
    assert data["level"] == "WARNING"
    assert data["logger"] == "opencode_slack.x"
    assert data["message"] == "run A"
