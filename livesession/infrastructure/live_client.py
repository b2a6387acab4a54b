"""
Live Session Engine.

Owns one bidirectional Live API session:
- Connection lifecycle with a bounded setup handshake
- Outbound message encoding and send accounting
- Inbound frame parsing and routing onto typed event channels
- Audio state tracking from capture and playback events

There is no automatic reconnection. A server error frame is fatal to the
session; a single malformed inbound frame is not.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional

from ..config import AudioConfig, EngineConfig, LiveConfig, ResponseModality
from ..core.capture_relay import AudioCaptureRelay, MicrophoneSource
from ..core.errors import (
    AlreadyConnectedError,
    AudioPlaybackError,
    ConnectionFailedError,
    DisconnectedError,
    FormatError,
    HandshakeTimeoutError,
    LiveApiError,
    LiveError,
    MessageFormatError,
    NotConnectedError,
)
from ..core.events import Channel, Event, EventHub, EventType, TextPayload
from ..core.messages import (
    AudioChunk,
    ConfigUpdate,
    EndOfTurn,
    Interrupt,
    OutgoingMessage,
    TextTurn,
    ToolResult,
    encode,
    encode_setup,
    message_kind,
)
from ..core.playback_buffer import AudioPlaybackBuffer, AudioSink
from ..core.responses import (
    ApiError,
    BinaryAudio,
    Frame,
    GoAway,
    ServerContent,
    SessionResumptionUpdate,
    SetupComplete,
    ToolCall,
    ToolCallCancellation,
    Unknown,
    parse_frame,
    response_kind,
)
from ..core.state_machine import AudioState, ConnectionState, SessionState, SessionStateMachine
from ..performance.metrics import MetricsCollector, get_metrics
from .transport import Transport, WebSocketTransport

logger = logging.getLogger(__name__)

DISCONNECT_REASON_USER = "user requested"
DISCONNECT_REASON_PEER = "closed by peer"
DISCONNECT_REASON_DISPOSED = "disposed"
DISCONNECT_REASON_HANDSHAKE_TIMEOUT = "setup timeout"


class LiveSessionEngine:
    """
    Client engine for one Live API session.

    Everything observable is published on `events`. Operations that fail
    raise to the caller; failures observed on the receive path are published
    as ERROR events on the diagnostic channel.
    """

    def __init__(
        self,
        config: LiveConfig,
        transport: Optional[Transport] = None,
        audio_sink: Optional[AudioSink] = None,
        audio_config: Optional[AudioConfig] = None,
        events: Optional[EventHub] = None,
        metrics: Optional[MetricsCollector] = None,
        play_inline_audio: bool = True,
    ):
        """
        Initialize the engine.

        Args:
            config: Session configuration (model, key, setup options)
            transport: Frame transport (WebSocketTransport by default)
            audio_sink: Speaker; when omitted no audio is played locally
            audio_config: Audio formats and playback buffering
            events: Event hub to publish on (a private one by default)
            metrics: Metrics collector (process singleton by default)
            play_inline_audio: Also play base64 audio parts of serverContent
        """
        self.config = config
        self.audio_config = audio_config or AudioConfig()
        self._transport = transport or WebSocketTransport()
        self._events = events or EventHub()
        self._metrics = metrics or get_metrics()
        self._play_inline_audio = play_inline_audio

        self._machine = SessionStateMachine()
        self._playback: Optional[AudioPlaybackBuffer] = None
        if audio_sink is not None:
            self._playback = AudioPlaybackBuffer(audio_sink, self.audio_config, self._events)

        # Task management
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._setup_future: Optional[asyncio.Future] = None

        self._relays: List[AudioCaptureRelay] = []
        self._recording = False
        self._disposed = False
        self._last_handshake_ms: Optional[float] = None
        self._handshake_started: float = 0.0

        self._routes: Dict[type, Callable[[Any], None]] = {
            SetupComplete: self._on_setup_complete,
            ServerContent: self._on_server_content,
            ToolCall: self._on_tool_call,
            ToolCallCancellation: self._on_tool_call_cancellation,
            BinaryAudio: self._on_binary_audio,
            ApiError: self._on_api_error,
            SessionResumptionUpdate: self._on_session_resumption_update,
            GoAway: self._on_go_away,
            Unknown: self._on_unknown,
        }

        self._unsubscribe_audio = self._events.subscribe(Channel.AUDIO, self._on_audio_event)

        logger.info(f"LiveSessionEngine initialized ({config!r}, playback={audio_sink is not None})")

    @classmethod
    def from_engine_config(cls, engine_config: EngineConfig, **kwargs) -> "LiveSessionEngine":
        return cls(engine_config.live, audio_config=engine_config.audio, **kwargs)

    # ── Properties ──

    @property
    def state(self) -> SessionState:
        return self._machine.state

    @property
    def is_connected(self) -> bool:
        return self._machine.state.is_connected

    @property
    def events(self) -> EventHub:
        return self._events

    @property
    def playback(self) -> Optional[AudioPlaybackBuffer]:
        return self._playback

    # ── State ──

    def _update(self, **changes) -> SessionState:
        """Apply a state change and notify observers of what actually changed."""
        old, new = self._machine.apply(**changes)

        if new.connection_state is not old.connection_state:
            self._metrics.set_connection_state(new.connection_state.value)
            self._events.emit(EventType.CONNECTION_STATE_CHANGED, new.connection_state)
        if new.audio_state is not old.audio_state:
            logger.debug(f"Audio state: {old.audio_state.value} -> {new.audio_state.value}")
            self._events.emit(EventType.AUDIO_STATE_CHANGED, new.audio_state)
        if new != old:
            self._events.emit(EventType.SESSION_STATE_CHANGED, new)
        return new

    def _report(self, error: LiveError):
        self._metrics.record_error(error.type.value)
        self._events.emit(EventType.ERROR, error)

    # ── Connection lifecycle ──

    async def connect(self):
        """
        Open the transport and complete the setup handshake.

        Raises:
            AlreadyConnectedError: if connected or connecting (no I/O is done).
            HandshakeTimeoutError: if setupComplete does not arrive in time.
            ConnectionFailedError: if the transport fails before setup completes.
        """
        current = self._machine.state.connection_state
        if current in (ConnectionState.CONNECTED, ConnectionState.CONNECTING):
            raise AlreadyConnectedError()
        if self._disposed:
            raise ConnectionFailedError("Engine has been disposed")

        self._loop = asyncio.get_running_loop()
        await self._cancel_receive_task()
        self._update(connection_state=ConnectionState.CONNECTING)

        timeout = self.config.handshake_timeout_seconds
        self._handshake_started = time.monotonic()
        self._setup_future = self._loop.create_future()

        try:
            await self._transport.open(self.config.websocket_url)
        except asyncio.CancelledError:
            await self._abort_connect()
            raise
        except Exception as e:
            error = ConnectionFailedError.from_exception(e)
            await self._fail_connect(error)
            raise error from e

        self._receive_task = asyncio.create_task(self._receive_loop())

        try:
            await self._transport.send_text(encode_setup(self.config))
            await asyncio.wait_for(self._setup_future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.error(f"No setupComplete within {timeout}s")
            await self._abort_connect(DISCONNECT_REASON_HANDSHAKE_TIMEOUT)
            raise HandshakeTimeoutError(timeout_seconds=timeout)
        except asyncio.CancelledError:
            await self._abort_connect()
            raise
        except LiveError as e:
            await self._fail_connect(e)
            raise
        except Exception as e:
            error = ConnectionFailedError.from_exception(e)
            await self._fail_connect(error)
            raise error from e
        finally:
            self._setup_future = None

        # CONNECTED was entered by the receive task when setupComplete arrived;
        # a peer close in the same burst may already have ended the session.
        if not self.is_connected:
            logger.warning("Session ended right after setup completed")

    def _complete_handshake(self):
        """Enter CONNECTED on the receive path, before any later frame is dispatched."""
        self._last_handshake_ms = (time.monotonic() - self._handshake_started) * 1000
        self._metrics.record_handshake_latency(self._last_handshake_ms)
        state = self._update(connection_state=ConnectionState.CONNECTED)
        logger.info(f"Connected to Live API (model={self.config.model}, handshake={self._last_handshake_ms:.0f}ms)")
        self._events.emit(EventType.CONNECTED, state)

    async def _fail_connect(self, error: LiveError):
        logger.error(f"Connection failed: {error}")
        await self._teardown()
        self._update(connection_state=ConnectionState.ERROR, error_message=error.message)
        self._report(error)

    async def _abort_connect(self, reason: Optional[str] = None):
        await self._teardown()
        self._update(connection_state=ConnectionState.DISCONNECTED)
        if reason:
            self._events.emit(EventType.DISCONNECTED, reason)

    async def disconnect(self):
        """Close the session. No-op unless connected."""
        if not self.is_connected:
            return
        await self._teardown()
        self._update(connection_state=ConnectionState.DISCONNECTED)
        logger.info("Disconnected from Live API")
        self._events.emit(EventType.DISCONNECTED, DISCONNECT_REASON_USER)

    async def _cancel_receive_task(self):
        task, self._receive_task = self._receive_task, None
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _teardown(self):
        """Stop receiving, close the transport and silence playback."""
        await self._cancel_receive_task()
        try:
            await self._transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")
        if self._setup_future is not None and not self._setup_future.done():
            self._setup_future.cancel()
        if self._playback is not None:
            self._playback.stop()

    async def dispose(self):
        """Release everything: capture relays, connection, playback, subscriptions."""
        if self._disposed:
            return

        for relay in list(self._relays):
            await relay.stop()
        self._relays.clear()

        was_connected = self.is_connected
        await self._teardown()
        if self._machine.state.connection_state is not ConnectionState.DISCONNECTED:
            self._update(connection_state=ConnectionState.DISCONNECTED)
        if was_connected:
            self._events.emit(EventType.DISCONNECTED, DISCONNECT_REASON_DISPOSED)

        if self._playback is not None:
            self._playback.dispose()
        self._unsubscribe_audio()
        self._disposed = True
        logger.info("LiveSessionEngine disposed")

    # ── Sending ──

    async def send(self, message: OutgoingMessage):
        """
        Encode and write one message.

        Raises:
            NotConnectedError: unless connected.
            FormatError: if the message cannot be encoded.
            MessageFormatError: if the transport write fails; the session stays open.
        """
        if not self._machine.state.can_send_messages:
            raise NotConnectedError()

        text = encode(message)
        try:
            await self._transport.send_text(text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to send {message_kind(message)}: {e}")
            raise MessageFormatError.from_exception(e) from e

        kind = message_kind(message)
        self._metrics.record_message_sent(kind)
        self._update(messages_sent=self._machine.state.messages_sent + 1)

        completes_turn = isinstance(message, EndOfTurn) or (
            isinstance(message, TextTurn) and message.turn_complete
        )
        if completes_turn:
            self._set_audio_state(AudioState.PROCESSING)

    async def send_text(self, text: str, turn_complete: bool = True):
        await self.send(TextTurn(text=text, turn_complete=turn_complete))

    async def send_audio(self, pcm: bytes):
        await self.send(AudioChunk(pcm=pcm))

    async def send_tool_response(self, call_id: str, response: Dict[str, Any]):
        await self.send(ToolResult(call_id=call_id, response=response))

    async def send_tool_error(self, call_id: str, message: str):
        await self.send(ToolResult.error(call_id, message))

    async def send_end_of_turn(self):
        if not self.is_connected:
            return
        await self.send(EndOfTurn())

    async def interrupt(self):
        """Barge in: silence local playback and ask the server to stop generating."""
        if not self.is_connected:
            return
        if self._playback is not None:
            self._playback.interrupt()
        await self.send(Interrupt())

    async def update_modalities(self, modalities: Iterable[ResponseModality]):
        await self.send(ConfigUpdate(modalities=tuple(modalities)))

    def create_capture_relay(self, source: MicrophoneSource) -> AudioCaptureRelay:
        """Relay that streams `source` into this session as AudioChunk messages."""
        relay = AudioCaptureRelay(source, self.send, self._events)
        self._relays.append(relay)
        return relay

    # ── Receiving ──

    async def _receive_loop(self):
        """Background task: dispatch every inbound frame until the stream ends."""
        error: Optional[LiveError] = None
        try:
            async for frame in self._transport.frames():
                self._handle_frame(frame)
                if self._machine.state.connection_state is ConnectionState.ERROR:
                    break
        except asyncio.CancelledError:
            logger.debug("Receive loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Receive loop error: {type(e).__name__}: {e}")
            error = ConnectionFailedError.from_exception(e)

        try:
            await self._transport.close()
        except Exception as e:
            logger.warning(f"Error closing transport: {e}")

        self._on_stream_ended(error)

    def _on_stream_ended(self, error: Optional[LiveError]):
        future = self._setup_future
        if future is not None and not future.done():
            future.set_exception(
                error or ConnectionFailedError("Connection closed before setup completed")
            )
            return

        if self._machine.state.connection_state is not ConnectionState.CONNECTED:
            return

        self._receive_task = None
        if self._playback is not None:
            self._playback.stop()

        if error is not None:
            self._update(connection_state=ConnectionState.ERROR, error_message=error.message)
            self._report(error)
            return

        logger.warning("Connection closed by peer")
        self._update(connection_state=ConnectionState.DISCONNECTED)
        self._report(DisconnectedError(DISCONNECT_REASON_PEER))
        self._events.emit(EventType.DISCONNECTED, DISCONNECT_REASON_PEER)

    def _handle_frame(self, frame: Frame):
        """Parse one frame and route it. Never raises."""
        try:
            parsed = parse_frame(frame)
        except FormatError as e:
            logger.warning(f"Dropping malformed frame: {e.message}")
            self._metrics.record_parse_error()
            self._report(e)
            return

        response = parsed.response

        future = self._setup_future
        if future is not None and not future.done():
            if isinstance(response, SetupComplete):
                self._complete_handshake()
                future.set_result(response)
            else:
                logger.debug(f"Discarding {response_kind(response)} received during setup")
            return

        if self._machine.state.connection_state is not ConnectionState.CONNECTED:
            return

        self._update(messages_received=self._machine.state.messages_received + 1)
        self._metrics.record_frame_received(response_kind(response))
        self._events.emit(EventType.RAW_RESPONSE, response)

        if parsed.usage is not None:
            self._events.emit(EventType.USAGE_METADATA, parsed.usage)

        self._routes[type(response)](response)

    def _on_setup_complete(self, response: SetupComplete):
        logger.debug("Ignoring setupComplete outside the handshake")

    def _on_server_content(self, content: ServerContent):
        self._events.emit(EventType.SERVER_CONTENT, content)

        text = content.text
        if text:
            self._events.emit(EventType.TEXT, TextPayload(text=text))

        for part in content.inline_audio_parts:
            self._events.emit(EventType.INLINE_AUDIO, part)
            if self._play_inline_audio and part.is_audio:
                try:
                    pcm = part.pcm
                except FormatError as e:
                    logger.warning(f"Dropping inline audio: {e.message}")
                    self._report(e)
                    continue
                self._play(pcm)

        if content.input_transcript is not None:
            self._events.emit(EventType.INPUT_TRANSCRIPT, content.input_transcript)
        if content.output_transcript is not None:
            self._events.emit(EventType.OUTPUT_TRANSCRIPT, content.output_transcript)

        if content.interrupted:
            logger.info("Generation interrupted by server")
            if self._playback is not None:
                self._playback.interrupt()
            self._events.emit(EventType.INTERRUPTED)
            self._set_audio_state(self._resting_audio_state())

        if content.turn_complete:
            if self._playback is not None:
                self._playback.flush()
            self._events.emit(EventType.TURN_COMPLETE)
            if self._playback is None or not self._playback.is_playing:
                self._set_audio_state(self._resting_audio_state())

    def _on_tool_call(self, tool_call: ToolCall):
        logger.info(f"Tool call: {tool_call.name} (id={tool_call.id})")
        self._events.emit(EventType.TOOL_CALL, tool_call)

    def _on_tool_call_cancellation(self, cancellation: ToolCallCancellation):
        for call_id in cancellation.ids:
            self._events.emit(EventType.TOOL_CALL_CANCELLATION, call_id)

    def _on_binary_audio(self, audio: BinaryAudio):
        self._events.emit(EventType.AUDIO_DATA, audio.data)
        self._play(audio.data)

    def _on_api_error(self, api_error: ApiError):
        error = LiveApiError(api_error.message, code=api_error.code, status=api_error.status)
        logger.error(f"Server error: {api_error.message} (code={api_error.code}, status={api_error.status})")
        if self._playback is not None:
            self._playback.stop()
        self._update(connection_state=ConnectionState.ERROR, error_message=api_error.message)
        self._report(error)

    def _on_session_resumption_update(self, update: SessionResumptionUpdate):
        logger.debug(f"Session resumption update (resumable={update.resumable})")
        self._events.emit(EventType.SESSION_RESUMPTION_UPDATE, update)

    def _on_go_away(self, go_away: GoAway):
        logger.warning(f"Server will close the connection (time_left={go_away.time_left})")
        self._events.emit(EventType.GO_AWAY, go_away)

    def _on_unknown(self, response: Unknown):
        logger.debug(f"Ignoring unknown response keys: {sorted(response.raw)}")

    # ── Audio ──

    def _play(self, pcm: bytes):
        if self._playback is None:
            self._set_audio_state(AudioState.SPEAKING)
            return
        if not pcm:
            self._metrics.record_playback_chunk("discarded")
            return
        try:
            self._playback.enqueue(pcm)
        except AudioPlaybackError as e:
            # Already published by the playback buffer
            logger.error(f"Playback failed: {e.message}")
            self._metrics.record_playback_chunk("failed")
            return
        self._metrics.record_playback_chunk("enqueued")

    def _resting_audio_state(self) -> AudioState:
        return AudioState.LISTENING if self._recording else AudioState.IDLE

    def _set_audio_state(self, audio_state: AudioState):
        if self._machine.state.audio_state is not audio_state:
            self._update(audio_state=audio_state)

    def _on_audio_event(self, event: Event):
        """Audio channel subscriber; may be called from the PortAudio thread."""
        if event.type is EventType.AUDIO_STATE_CHANGED:
            return

        loop = self._loop
        if loop is not None and not loop.is_closed():
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                loop.call_soon_threadsafe(self._apply_audio_event, event)
                return

        self._apply_audio_event(event)

    def _apply_audio_event(self, event: Event):
        current = self._machine.state.audio_state

        if event.type is EventType.RECORDING_STARTED:
            self._recording = True
            self._set_audio_state(AudioState.LISTENING)
        elif event.type is EventType.RECORDING_STOPPED:
            self._recording = False
            if current not in (AudioState.SPEAKING, AudioState.PROCESSING):
                self._set_audio_state(AudioState.IDLE)
        elif event.type is EventType.PLAYBACK_STARTED:
            self._set_audio_state(AudioState.SPEAKING)
        elif event.type in (EventType.PLAYBACK_COMPLETED, EventType.PLAYBACK_STOPPED):
            self._set_audio_state(self._resting_audio_state())

    # ── Status ──

    def get_status(self) -> dict:
        """Get engine status for diagnostics."""
        return {
            "session": self._machine.get_status(),
            "connection_duration_s": self.state.connection_duration,
            "last_handshake_ms": self._last_handshake_ms,
            "recording": self._recording,
            "capture_relays": [relay.get_stats() for relay in self._relays],
            "playback": self._playback.get_stats() if self._playback is not None else None,
            "events": self._events.get_stats(),
        }


@asynccontextmanager
async def live_session(
    config: LiveConfig,
    transport: Optional[Transport] = None,
    audio_sink: Optional[AudioSink] = None,
    **kwargs,
) -> AsyncIterator[LiveSessionEngine]:
    """
    Connected engine for the duration of an `async with` block.

    Usage:
        async with live_session(config) as engine:
            await engine.send_text("Hello")
    """
    engine = LiveSessionEngine(config, transport=transport, audio_sink=audio_sink, **kwargs)
    try:
        await engine.connect()
        yield engine
    finally:
        await engine.dispose()


__all__ = [
    "DISCONNECT_REASON_USER",
    "DISCONNECT_REASON_PEER",
    "DISCONNECT_REASON_DISPOSED",
    "DISCONNECT_REASON_HANDSHAKE_TIMEOUT",
    "LiveSessionEngine",
    "live_session",
]
