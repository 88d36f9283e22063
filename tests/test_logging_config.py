"""
Tests for assetgate_core.logging_config.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from assetgate_core.logging_config import (
    ACCESS_LOG_FORMAT,
    _HumanFormatter,
    _JSONFormatter,
    setup_logging,
)


@pytest.fixture(autouse=True)
def _restore_root():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg="hello", exc_info=None):
    return logging.LogRecord("assetgate.tx", logging.INFO, __file__, 1, msg, None, exc_info)


def test_json_formatter():
    out = json.loads(_JSONFormatter().format(_record()))
    assert out["level"] == "INFO"
    assert out["logger"] == "assetgate.tx"
    assert out["msg"] == "hello"


def test_json_formatter_exception():
    try:
        raise ValueError("bad")
    except ValueError:
        rec = _record(exc_info=sys.exc_info())
    out = json.loads(_JSONFormatter().format(rec))
    assert "ValueError: bad" in out["exception"]


def test_human_formatter():
    line = _HumanFormatter().format(_record())
    assert "assetgate.tx: hello" in line
    assert "[INFO   ]" in line


def test_setup_logging_console_and_file(tmp_path):
    log_file = tmp_path / "logs" / "gateway.log"
    setup_logging(level="debug", fmt="json", log_file=str(log_file))
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    assert isinstance(root.handlers[0].formatter, _JSONFormatter)
    assert log_file.parent.is_dir()
    for h in root.handlers[1:]:
        h.close()


def test_access_logger_level():
    setup_logging(level="WARNING")
    assert logging.getLogger("aiohttp.access").level == logging.INFO


def test_access_format_is_combined():
    assert ACCESS_LOG_FORMAT.startswith("%a - - %t")
    assert '"%{User-Agent}i"' in ACCESS_LOG_FORMAT


def test_sdk_loggers_quiet_unless_debug():
    setup_logging(level="INFO")
    assert logging.getLogger("hfc").level == logging.WARNING
    setup_logging(level="DEBUG")
    assert logging.getLogger("grpc").level == logging.DEBUG
