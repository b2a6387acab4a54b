"""
Test Fixtures for the Live Session Engine

In-memory stand-ins for the three collaborators the engine drives, plus
builders for server frames:
- FakeTransport: scripted inbound frames, recorded outbound frames
- FakeAudioSink: records setup/feeds/releases, demand triggered by hand
- FakeMicrophone: scripted chunk stream with an optional failure

No network, no audio hardware.
"""

import asyncio
import base64
import json
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..config import LiveConfig
from ..core.playback_buffer import DemandCallback
from ..infrastructure.live_client import LiveSessionEngine
from ..performance.metrics import MetricsCollector

SETUP_COMPLETE_FRAME = '{"setupComplete":{}}'

_CLOSE = object()
_END = object()


class FakeTransport:
    """
    Transport driven by the test.

    With auto_setup, a setupComplete frame is queued as soon as the setup
    frame is sent. Inbound frames are queued with push(); close_from_peer()
    ends the stream as a peer close would.
    """

    def __init__(
        self,
        auto_setup: bool = True,
        open_error: Optional[BaseException] = None,
        send_error: Optional[BaseException] = None,
    ):
        self.auto_setup = auto_setup
        self.open_error = open_error
        self.send_error = send_error

        self.url: Optional[str] = None
        self.is_open = False
        self.sent: List[str] = []
        self.sent_binary: List[bytes] = []
        self.open_count = 0
        self.close_count = 0
        self._inbound: asyncio.Queue = asyncio.Queue()

    async def open(self, url: str):
        self.open_count += 1
        if self.open_error is not None:
            raise self.open_error
        if self.close_count:
            self._inbound = asyncio.Queue()
        self.url = url
        self.is_open = True

    async def send_text(self, text: str):
        if self.send_error is not None:
            raise self.send_error
        if not self.is_open:
            raise ConnectionError("transport closed")
        self.sent.append(text)
        if self.auto_setup and "setup" in json.loads(text):
            self.push(SETUP_COMPLETE_FRAME)

    async def send_binary(self, data: bytes):
        if self.send_error is not None:
            raise self.send_error
        self.sent_binary.append(bytes(data))

    async def frames(self):
        while True:
            item = await self._inbound.get()
            if item is _CLOSE:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def close(self):
        self.close_count += 1
        if self.is_open:
            self.is_open = False
            self._inbound.put_nowait(_CLOSE)

    # ── Test controls ──

    def push(self, frame):
        self._inbound.put_nowait(frame)

    def push_json(self, payload: Dict[str, Any]):
        self.push(json.dumps(payload))

    def close_from_peer(self):
        self.is_open = False
        self._inbound.put_nowait(_CLOSE)

    def fail_receive(self, error: BaseException):
        self._inbound.put_nowait(error)

    @property
    def sent_json(self) -> List[Dict[str, Any]]:
        return [json.loads(text) for text in self.sent]


class FakeAudioSink:
    """AudioSink that records calls; demand() plays the part of the audio thread."""

    def __init__(self, setup_error: Optional[BaseException] = None, feed_error: Optional[BaseException] = None):
        self.setup_error = setup_error
        self.feed_error = feed_error
        self.setup_calls: List[Tuple[int, int, int]] = []
        self.fed: List[bytes] = []
        self.release_count = 0
        self.demand_callback: Optional[DemandCallback] = None

    def setup(self, sample_rate: int, channels: int, feed_threshold: int):
        if self.setup_error is not None:
            raise self.setup_error
        self.setup_calls.append((sample_rate, channels, feed_threshold))

    def set_demand_callback(self, callback: DemandCallback):
        self.demand_callback = callback

    def feed(self, pcm: bytes):
        if self.feed_error is not None:
            raise self.feed_error
        self.fed.append(bytes(pcm))

    def release(self):
        self.release_count += 1

    def demand(self, remaining_frames: int = 0):
        if self.demand_callback is not None:
            self.demand_callback(remaining_frames)

    def demand_from_thread(self, remaining_frames: int = 0):
        """Invoke the demand callback from a separate thread, like PortAudio does."""
        thread = threading.Thread(target=self.demand, args=(remaining_frames,))
        thread.start()
        thread.join()


class FakeMicrophone:
    """MicrophoneSource yielding scripted chunks, then an error or end of stream."""

    def __init__(
        self,
        chunks: Optional[List[bytes]] = None,
        error: Optional[BaseException] = None,
        start_error: Optional[BaseException] = None,
        end_after_chunks: bool = False,
    ):
        self.scripted = list(chunks or [])
        self.error = error
        self.start_error = start_error
        self.end_after_chunks = end_after_chunks
        self.start_count = 0
        self.stop_count = 0
        self._queue: Optional[asyncio.Queue] = None

    async def start(self):
        if self.start_error is not None:
            raise self.start_error
        self.start_count += 1
        self._queue = asyncio.Queue()
        for chunk in self.scripted:
            self._queue.put_nowait(chunk)
        if self.error is not None:
            self._queue.put_nowait(self.error)
        elif self.end_after_chunks:
            self._queue.put_nowait(_END)

    def push(self, chunk: bytes):
        self._queue.put_nowait(chunk)

    async def chunks(self):
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, BaseException):
                raise item
            yield item

    async def stop(self):
        self.stop_count += 1
        if self._queue is not None:
            self._queue.put_nowait(_END)


# ── Builders ──

def make_live_config(**overrides) -> LiveConfig:
    values = {"api_key": "test-key", "handshake_timeout_seconds": 1.0}
    values.update(overrides)
    return LiveConfig(**values)


def make_engine(
    config: Optional[LiveConfig] = None,
    transport: Optional[FakeTransport] = None,
    sink: Optional[FakeAudioSink] = None,
    **kwargs,
) -> Tuple[LiveSessionEngine, FakeTransport]:
    """Engine wired to a FakeTransport and a private metrics registry."""
    transport = transport or FakeTransport()
    engine = LiveSessionEngine(
        config or make_live_config(),
        transport=transport,
        audio_sink=sink,
        metrics=kwargs.pop("metrics", None) or MetricsCollector(),
        **kwargs,
    )
    return engine, transport


def server_content_frame(
    text_parts: Optional[List[str]] = None,
    audio_parts: Optional[List[bytes]] = None,
    turn_complete: bool = False,
    interrupted: bool = False,
    input_transcript: Optional[str] = None,
    output_transcript: Optional[str] = None,
) -> str:
    parts: List[Dict[str, Any]] = [{"text": text} for text in text_parts or []]
    for pcm in audio_parts or []:
        parts.append({
            "inlineData": {"mimeType": "audio/pcm;rate=24000", "data": base64.b64encode(pcm).decode("ascii")}
        })
    body: Dict[str, Any] = {}
    if parts:
        body["modelTurn"] = {"parts": parts}
    if turn_complete:
        body["turnComplete"] = True
    if interrupted:
        body["interrupted"] = True
    if input_transcript is not None:
        body["inputTranscription"] = {"text": input_transcript}
    if output_transcript is not None:
        body["outputTranscription"] = {"text": output_transcript}
    return json.dumps({"serverContent": body})


def tool_call_frame(call_id: str, name: str, args: Optional[Dict[str, Any]] = None) -> str:
    return json.dumps({
        "toolCall": {"functionCalls": [{"id": call_id, "name": name, "args": args or {}}]}
    })


def error_frame(message: str, code: Optional[int] = None, status: Optional[str] = None) -> str:
    body: Dict[str, Any] = {"message": message}
    if code is not None:
        body["code"] = code
    if status is not None:
        body["status"] = status
    return json.dumps({"error": body})


__all__ = [
    "SETUP_COMPLETE_FRAME",
    "FakeTransport",
    "FakeAudioSink",
    "FakeMicrophone",
    "make_live_config",
    "make_engine",
    "server_content_frame",
    "tool_call_frame",
    "error_frame",
]
