"""
WebSocket transport for the Live API.

The engine talks to a Transport; WebSocketTransport is the production
implementation over the `websockets` client. A normal or abnormal close by
the peer ends frames() without raising; any other receive failure propagates.
"""

import logging
from typing import AsyncIterator, Optional, Protocol

import websockets
from websockets.exceptions import ConnectionClosed

from ..core.responses import Frame

logger = logging.getLogger(__name__)


# Live API frames may carry several seconds of base64 audio
DEFAULT_MAX_MESSAGE_BYTES = 16 * 1024 * 1024
DEFAULT_PING_INTERVAL_S = 20.0
DEFAULT_PING_TIMEOUT_S = 20.0


class Transport(Protocol):
    """Bidirectional frame stream consumed by the engine."""

    async def open(self, url: str) -> None:
        """Open the connection. Raises on failure."""

    async def send_text(self, text: str) -> None:
        """Write one text frame."""

    async def send_binary(self, data: bytes) -> None:
        """Write one binary frame."""

    def frames(self) -> AsyncIterator[Frame]:
        """Inbound frames until the connection closes."""

    async def close(self) -> None:
        """Close the connection. Safe to call more than once."""


class WebSocketTransport:
    """Transport over a websockets client connection."""

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_MESSAGE_BYTES,
        ping_interval: Optional[float] = DEFAULT_PING_INTERVAL_S,
        ping_timeout: Optional[float] = DEFAULT_PING_TIMEOUT_S,
        open_timeout: Optional[float] = 10.0,
    ):
        self._options = {
            "max_size": max_size,
            "ping_interval": ping_interval,
            "ping_timeout": ping_timeout,
            "open_timeout": open_timeout,
        }
        self._ws = None
        self.close_code: Optional[int] = None
        self.close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None

    async def open(self, url: str):
        if self._ws is not None:
            await self.close()
        self.close_code = None
        self.close_reason = None
        self._ws = await websockets.connect(url, **self._options)
        logger.debug("WebSocket opened")

    def _require_open(self):
        if self._ws is None:
            raise ConnectionError("WebSocket is not open")
        return self._ws

    async def send_text(self, text: str):
        await self._require_open().send(text)

    async def send_binary(self, data: bytes):
        await self._require_open().send(data)

    async def frames(self) -> AsyncIterator[Frame]:
        ws = self._require_open()
        try:
            async for message in ws:
                yield message
        except ConnectionClosed as exc:
            logger.debug(f"Receive ended: {exc}")
        self.close_code = ws.close_code
        self.close_reason = ws.close_reason
        logger.info(f"WebSocket closed by peer (code={self.close_code}, reason={self.close_reason!r})")

    async def close(self):
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except Exception as e:
            logger.warning(f"Error closing WebSocket: {e}")


__all__ = [
    "Frame",
    "Transport",
    "WebSocketTransport",
]
