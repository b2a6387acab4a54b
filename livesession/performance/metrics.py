"""
Prometheus Metrics for the Live Session Engine

Exposes session metrics on http://localhost:9464/metrics when the server is
started. The HTTP server runs in a background thread so it never blocks the
asyncio event loop.

Metrics:
- livesession_messages_sent_total (Counter, per message variant)
- livesession_frames_received_total (Counter, per response variant)
- livesession_parse_errors_total (Counter)
- livesession_handshake_latency_ms (Histogram)
- livesession_connection_state (Gauge, one series per state, 1 = current)
- livesession_playback_chunks_total (Counter, per outcome)
- livesession_errors_total (Counter, per error type)
"""

import logging
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    start_http_server,
)

logger = logging.getLogger(__name__)

DEFAULT_METRICS_PORT = 9464

CONNECTION_STATES = ("disconnected", "connecting", "connected", "error")


class MetricsCollector:
    """
    Prometheus metrics collector for one process.

    All metrics live in a private CollectorRegistry, so several collectors
    (one per test, say) never collide on metric names.
    """

    def __init__(self, port: Optional[int] = None, registry: Optional[CollectorRegistry] = None):
        self._port = port or int(os.environ.get("LIVESESSION_METRICS_PORT", DEFAULT_METRICS_PORT))
        self._server_started = False
        self.registry = registry or CollectorRegistry()

        self.messages_sent = Counter(
            "livesession_messages_sent_total",
            "Messages written to the transport",
            labelnames=["kind"],
            registry=self.registry,
        )
        self.frames_received = Counter(
            "livesession_frames_received_total",
            "Inbound frames routed after parsing",
            labelnames=["kind"],
            registry=self.registry,
        )
        self.parse_errors = Counter(
            "livesession_parse_errors_total",
            "Inbound frames dropped because they could not be parsed",
            registry=self.registry,
        )
        self.handshake_latency = Histogram(
            "livesession_handshake_latency_ms",
            "Time from transport open to setupComplete in milliseconds",
            buckets=[50, 100, 200, 300, 500, 800, 1000, 2000, 5000, 10000],
            registry=self.registry,
        )
        self.connection_state = Gauge(
            "livesession_connection_state",
            "Current connection state (1 for the active state)",
            labelnames=["state"],
            registry=self.registry,
        )
        self.playback_chunks = Counter(
            "livesession_playback_chunks_total",
            "Audio chunks handled by the playback buffer",
            labelnames=["outcome"],
            registry=self.registry,
        )
        self.errors = Counter(
            "livesession_errors_total",
            "Errors reported by the engine",
            labelnames=["type"],
            registry=self.registry,
        )

        self.set_connection_state("disconnected")

    def start_server(self, port: Optional[int] = None):
        """Start the metrics HTTP server in a background thread."""
        if self._server_started:
            return
        port = port or self._port
        try:
            start_http_server(port, registry=self.registry)
            self._server_started = True
            logger.info("Prometheus metrics server started on port %d", port)
        except OSError as e:
            logger.error("Failed to start metrics server: %s", e)

    # ── Convenience methods ──

    def record_message_sent(self, kind: str):
        self.messages_sent.labels(kind=kind).inc()

    def record_frame_received(self, kind: str):
        self.frames_received.labels(kind=kind).inc()

    def record_parse_error(self):
        self.parse_errors.inc()

    def record_handshake_latency(self, latency_ms: float):
        self.handshake_latency.observe(latency_ms)

    def set_connection_state(self, state: str):
        for name in CONNECTION_STATES:
            self.connection_state.labels(state=name).set(1 if name == state else 0)

    def record_playback_chunk(self, outcome: str):
        self.playback_chunks.labels(outcome=outcome).inc()

    def record_error(self, error_type: str):
        self.errors.labels(type=error_type).inc()

    def get_sample(self, name: str, labels: Optional[dict] = None) -> Optional[float]:
        """Current value of a sample, mainly for tests and status output."""
        return self.registry.get_sample_value(name, labels or {})

    def render(self) -> bytes:
        """Exposition-format snapshot of every metric."""
        return generate_latest(self.registry)


# Singleton instance
_metrics: Optional[MetricsCollector] = None


def get_metrics() -> MetricsCollector:
    """Get the global MetricsCollector singleton."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


__all__ = [
    "DEFAULT_METRICS_PORT",
    "CONNECTION_STATES",
    "MetricsCollector",
    "get_metrics",
]
