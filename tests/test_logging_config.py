"""
Unit tests for structured logging configuration.
"""

import io
import json
import logging
import sys
import time

import pytest

from livesession.debugging.logging_config import (
    TRACE,
    NonBlockingHandler,
    StructuredFormatter,
    configure_logging,
    resolve_level,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(message="hello", name="livesession.infrastructure.live_client", **extra):
    record = logging.LogRecord(name, logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# ── StructuredFormatter ──

def test_formatter_emits_json():
    entry = json.loads(StructuredFormatter().format(make_record()))
    assert entry["level"] == "INFO"
    assert entry["component"] == "live_client"
    assert entry["event"] == "hello"
    assert "session_id" not in entry


def test_formatter_includes_extra_fields():
    record = make_record(session_id="s-1", extra_fields={"frames": 3}, component="engine")
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["session_id"] == "s-1"
    assert entry["frames"] == 3
    assert entry["component"] == "engine"


def test_formatter_includes_exception():
    try:
        raise ValueError("bad frame")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())
    entry = json.loads(StructuredFormatter().format(record))
    assert entry["exception"] == "ValueError: bad frame"


# ── resolve_level ──

def test_resolve_level_argument(monkeypatch):
    monkeypatch.delenv("LIVESESSION_DEBUG", raising=False)
    assert resolve_level("warn") == logging.WARNING
    assert resolve_level("TRACE") == TRACE


def test_resolve_level_environment(monkeypatch):
    monkeypatch.delenv("LIVESESSION_DEBUG", raising=False)
    monkeypatch.setenv("LIVESESSION_LOG_LEVEL", "ERROR")
    assert resolve_level() == logging.ERROR


def test_resolve_level_default(monkeypatch):
    monkeypatch.delenv("LIVESESSION_DEBUG", raising=False)
    monkeypatch.delenv("LIVESESSION_LOG_LEVEL", raising=False)
    assert resolve_level() == logging.INFO
    assert resolve_level("nonsense") == logging.INFO


def test_debug_mode_forces_debug(monkeypatch):
    monkeypatch.setenv("LIVESESSION_DEBUG", "1")
    assert resolve_level("ERROR") == logging.DEBUG


# ── Handlers ──

def test_non_blocking_handler_writes_through():
    stream = io.StringIO()
    target = logging.StreamHandler(stream)
    target.setFormatter(StructuredFormatter())
    handler = NonBlockingHandler(target)

    handler.emit(make_record("first"))
    handler.emit(make_record("second"))
    handler.close()

    events = [json.loads(line)["event"] for line in stream.getvalue().splitlines()]
    assert events == ["first", "second"]
    assert handler.dropped_count == 0


def test_non_blocking_handler_drops_when_full():
    class SlowHandler(logging.Handler):
        def emit(self, record):
            time.sleep(0.05)

    handler = NonBlockingHandler(SlowHandler(), capacity=1)
    for i in range(20):
        handler.emit(make_record(str(i)))
    assert handler.dropped_count > 0
    handler.close()


def test_configure_logging_json(monkeypatch, restore_root_logger):
    monkeypatch.delenv("LIVESESSION_DEBUG", raising=False)
    stream = io.StringIO()
    handler = configure_logging(level="INFO", json_format=True, non_blocking=False, stream=stream)

    assert restore_root_logger.handlers == [handler]
    assert restore_root_logger.level == logging.INFO
    assert logging.getLogger("websockets").level == logging.WARNING

    logging.getLogger("livesession.test").info("connected")
    entry = json.loads(stream.getvalue().strip())
    assert entry["event"] == "connected"
    assert entry["component"] == "test"


def test_configure_logging_plain_text(monkeypatch, restore_root_logger):
    monkeypatch.delenv("LIVESESSION_DEBUG", raising=False)
    stream = io.StringIO()
    configure_logging(level="DEBUG", json_format=False, non_blocking=False, stream=stream)
    logging.getLogger("livesession.test").debug("frame routed")
    assert "[livesession.test] frame routed" in stream.getvalue()
