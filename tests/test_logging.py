"""Tests for structured log formatting."""
import json
import logging
import sys

import pytest

from tosguardian.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    configure_logging,
    request_context,
    request_id_var,
)


@pytest.fixture
def record():
    rec = logging.LogRecord("tosguardian.pipeline", logging.INFO, __file__, 1, "Check %s", ("complete",), None)
    rec.platform = "etsy"
    rec.level_result = "red"
    return rec


@pytest.fixture
def no_request_id():
    token = request_id_var.set(None)
    yield
    request_id_var.reset(token)


def test_json_formatter(record, no_request_id):
    out = json.loads(JSONFormatter().format(record))
    assert out["level"] == "info"
    assert out["logger"] == "tosguardian.pipeline"
    assert out["msg"] == "Check complete"
    assert out["platform"] == "etsy"
    assert out["level_result"] == "red"
    assert out["t"].endswith("Z")
    assert "request_id" not in out


def test_json_formatter_request_id(record, no_request_id):
    with request_context() as rid:
        out = json.loads(JSONFormatter().format(record))
    assert out["request_id"] == rid


def test_request_context_restores_previous(no_request_id):
    with request_context() as outer:
        with request_context() as inner:
            assert request_id_var.get() == inner
        assert request_id_var.get() == outer
    assert request_id_var.get() is None
    assert outer != inner


def test_json_formatter_exception(no_request_id):
    try:
        raise ValueError("boom")
    except ValueError:
        rec = logging.LogRecord("t", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    out = json.loads(JSONFormatter().format(rec))
    assert "ValueError: boom" in out["exception"]


def test_pretty_formatter(record, no_request_id):
    line = PrettyFormatter().format(record)
    assert " INFO Check complete " in line
    assert line.endswith('{"platform": "etsy", "level_result": "red"}')


def test_pretty_formatter_plain(no_request_id):
    rec = logging.LogRecord("t", logging.WARNING, __file__, 1, "hello", (), None)
    assert PrettyFormatter().format(rec).endswith(" WARNING hello")


def test_configure_logging_single_handler():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging(json_format=False, level="debug")
        configure_logging(json_format=True, level="warning")
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for h in root.handlers[:]:
            root.removeHandler(h)
        for h in saved_handlers:
            root.addHandler(h)
        root.setLevel(saved_level)
