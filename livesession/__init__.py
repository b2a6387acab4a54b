"""
livesession - Client engine for the Gemini Live bidirectional streaming API

Maintains one real-time session over a WebSocket: text, microphone audio and
tool results go up; model text, speech audio, transcriptions and tool calls
come back and are published on typed event channels.

Components:
  Message Codec: outgoing client intents and their JSON envelopes
  Response Parser: inbound frames to one response variant each
  Session State Machine: immutable session snapshots and valid transitions
  Connection Lifecycle Manager: handshake, send, receive loop, teardown
  Audio Playback Buffer: pre-buffered FIFO feeding a streaming speaker
  Audio Capture Relay: microphone chunks to realtime audio input
"""

from .config import (
    AudioConfig,
    EngineConfig,
    GenerationConfig,
    LiveConfig,
    ResponseModality,
    SpeechConfig,
    load_config_from_env,
)

from .core.errors import (
    LiveErrorType,
    LiveError,
    ConnectionFailedError,
    AlreadyConnectedError,
    NotConnectedError,
    DisconnectedError,
    HandshakeTimeoutError,
    MessageFormatError,
    FormatError,
    LiveApiError,
    AudioRecordingError,
    AlreadyRecordingError,
    AudioPlaybackError,
    PermissionDeniedError,
)

from .core.messages import (
    OutgoingMessage,
    TextTurn,
    AudioChunk,
    ToolResult,
    ConfigUpdate,
    EndOfTurn,
    Interrupt,
)

from .core.responses import (
    IncomingResponse,
    SetupComplete,
    ServerContent,
    ToolCall,
    ToolCallCancellation,
    BinaryAudio,
    ApiError,
    SessionResumptionUpdate,
    GoAway,
    UsageMetadata,
    Unknown,
)

from .core.state_machine import (
    ConnectionState,
    AudioState,
    SessionState,
)

from .core.events import (
    Channel,
    Event,
    EventType,
    EventHub,
    TextPayload,
)

from .core.playback_buffer import (
    AudioSink,
    AudioPlaybackBuffer,
)

from .core.capture_relay import (
    MicrophoneSource,
    AudioCaptureRelay,
)

from .core.audio_io import (
    SoundDeviceAudioSink,
    SoundDeviceMicrophone,
    pcm_level,
)

from .infrastructure.transport import (
    Transport,
    WebSocketTransport,
)

from .infrastructure.live_client import (
    LiveSessionEngine,
    live_session,
)

__version__ = "0.1.0"

__all__ = [
    # Config
    "AudioConfig",
    "EngineConfig",
    "GenerationConfig",
    "LiveConfig",
    "ResponseModality",
    "SpeechConfig",
    "load_config_from_env",

    # Errors
    "LiveErrorType",
    "LiveError",
    "ConnectionFailedError",
    "AlreadyConnectedError",
    "NotConnectedError",
    "DisconnectedError",
    "HandshakeTimeoutError",
    "MessageFormatError",
    "FormatError",
    "LiveApiError",
    "AudioRecordingError",
    "AlreadyRecordingError",
    "AudioPlaybackError",
    "PermissionDeniedError",

    # Outgoing messages
    "OutgoingMessage",
    "TextTurn",
    "AudioChunk",
    "ToolResult",
    "ConfigUpdate",
    "EndOfTurn",
    "Interrupt",

    # Incoming responses
    "IncomingResponse",
    "SetupComplete",
    "ServerContent",
    "ToolCall",
    "ToolCallCancellation",
    "BinaryAudio",
    "ApiError",
    "SessionResumptionUpdate",
    "GoAway",
    "UsageMetadata",
    "Unknown",

    # Session state
    "ConnectionState",
    "AudioState",
    "SessionState",

    # Events
    "Channel",
    "Event",
    "EventType",
    "EventHub",
    "TextPayload",

    # Audio
    "AudioSink",
    "AudioPlaybackBuffer",
    "MicrophoneSource",
    "AudioCaptureRelay",
    "SoundDeviceAudioSink",
    "SoundDeviceMicrophone",
    "pcm_level",

    # Engine
    "Transport",
    "WebSocketTransport",
    "LiveSessionEngine",
    "live_session",
]
