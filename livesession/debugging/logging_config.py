"""
Structured Logging Configuration for the Live Session Engine

Logs are JSON lines by default. The non-blocking handler keeps the PortAudio
callback thread from ever waiting on a log write (playback demand and capture
callbacks may log).

Log levels:
- ERROR: Invalid state transitions, transport failures, API errors, device errors
- WARN: Dropped frames, ring buffer overflow, malformed inbound frames
- INFO: Connection state transitions, capture/playback start and stop
- DEBUG: Per-frame routing, playback buffer fill, handshake details
- TRACE (=5): Individual audio chunk sizes

Debug mode (LIVESESSION_DEBUG=1) forces DEBUG level.
"""

import json
import logging
import os
import queue
import sys
import threading
import time
from typing import Optional

# Custom TRACE level (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Log queue capacity for non-blocking handler
LOG_QUEUE_CAPACITY = 10_000

NOISY_LOGGERS = ("websockets", "asyncio")

_LEVELS = {
    "TRACE": TRACE,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def debug_enabled() -> bool:
    return os.environ.get("LIVESESSION_DEBUG", "0") == "1"


class StructuredFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": time.time(),
            "level": record.levelname,
            "component": getattr(record, "component", record.name.split(".")[-1]),
            "event": record.getMessage(),
        }

        session_id = getattr(record, "session_id", None)
        if session_id is not None:
            log_entry["session_id"] = session_id

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_entry.update(extra_fields)

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = f"{type(record.exc_info[1]).__name__}: {record.exc_info[1]}"

        return json.dumps(log_entry, default=str)


class NonBlockingHandler(logging.Handler):
    """
    Log handler that never blocks the producer.

    Records go into a bounded queue drained by a writer thread. When the
    queue is full the record is dropped and counted.
    """

    def __init__(self, target_handler: logging.Handler, capacity: int = LOG_QUEUE_CAPACITY):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=capacity)
        self._target = target_handler
        self._dropped_count = 0
        self._running = True
        self._thread = threading.Thread(target=self._writer_loop, name="log-writer", daemon=True)
        self._thread.start()

    def emit(self, record: logging.LogRecord):
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped_count += 1

    def _writer_loop(self):
        while self._running or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.handle(record)
            except Exception:
                self.handleError(record)

    def close(self):
        self._running = False
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        self._target.close()
        super().close()

    @property
    def dropped_count(self) -> int:
        return self._dropped_count


def resolve_level(level: Optional[str] = None) -> int:
    """Level from the argument, else LIVESESSION_LOG_LEVEL, else INFO."""
    if debug_enabled():
        return logging.DEBUG
    name = level or os.environ.get("LIVESESSION_LOG_LEVEL", "INFO")
    return _LEVELS.get(name.upper(), logging.INFO)


def configure_logging(
    level: Optional[str] = None,
    json_format: bool = True,
    non_blocking: bool = True,
    stream=None,
) -> logging.Handler:
    """
    Configure root logging for an application embedding the engine.

    Args:
        level: Log level name. Defaults to LIVESESSION_LOG_LEVEL or INFO.
        json_format: Emit structured JSON lines instead of plain text.
        non_blocking: Write through a queue and background thread.
        stream: Output stream, stdout by default.

    Returns:
        The handler installed on the root logger.
    """
    stream_handler = logging.StreamHandler(stream or sys.stdout)

    if json_format:
        stream_handler.setFormatter(StructuredFormatter())
    else:
        stream_handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))

    handler = NonBlockingHandler(stream_handler) if non_blocking else stream_handler

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolve_level(level))

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return handler


__all__ = [
    "TRACE",
    "LOG_QUEUE_CAPACITY",
    "NOISY_LOGGERS",
    "debug_enabled",
    "StructuredFormatter",
    "NonBlockingHandler",
    "resolve_level",
    "configure_logging",
]
