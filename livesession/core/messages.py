"""
Message Codec.

Outgoing client intents and their wire envelopes. Every OutgoingMessage
variant has exactly one canonical JSON encoding; encode() is pure and
performs no I/O. The setup (handshake) frame is built from LiveConfig.
"""

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from ..config import LiveConfig, GenerationConfig, ResponseModality
from .errors import FormatError

PCM_MIME_TYPE = "audio/pcm"


class OutgoingMessage:
    """Base class for messages sent to the server."""

    __slots__ = ()


@dataclass(frozen=True)
class TextTurn(OutgoingMessage):
    """User text turn."""
    text: str
    turn_complete: Optional[bool] = True

    def __repr__(self) -> str:
        preview = self.text if len(self.text) <= 50 else self.text[:50] + "..."
        return f"TextTurn({preview!r}, turn_complete={self.turn_complete})"


@dataclass(frozen=True)
class AudioChunk(OutgoingMessage):
    """Realtime PCM audio input (16-bit, 16kHz, mono)."""
    pcm: bytes
    mime_type: str = PCM_MIME_TYPE

    def __repr__(self) -> str:
        return f"AudioChunk({len(self.pcm)} bytes, {self.mime_type})"


@dataclass(frozen=True)
class ToolResult(OutgoingMessage):
    """Result (or error) of a function call requested by the server."""
    call_id: str
    response: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def error(cls, call_id: str, message: str) -> "ToolResult":
        return cls(call_id=call_id, response={"error": message})


@dataclass(frozen=True)
class ConfigUpdate(OutgoingMessage):
    """Mid-session change of response modalities and/or generation parameters."""
    modalities: Optional[Tuple[ResponseModality, ...]] = None
    generation_params: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class EndOfTurn(OutgoingMessage):
    pass


@dataclass(frozen=True)
class Interrupt(OutgoingMessage):
    """Ask the server to stop the current generation."""
    pass


def _text_turn(message: TextTurn) -> Dict[str, Any]:
    if not isinstance(message.text, str):
        raise FormatError(f"TextTurn text must be str, got {type(message.text).__name__}")
    content: Dict[str, Any] = {
        "turns": [{"role": "user", "parts": [{"text": message.text}]}],
    }
    if message.turn_complete is not None:
        content["turnComplete"] = message.turn_complete
    return {"clientContent": content}


def _audio_chunk(message: AudioChunk) -> Dict[str, Any]:
    if not isinstance(message.pcm, (bytes, bytearray, memoryview)):
        raise FormatError(f"AudioChunk pcm must be bytes, got {type(message.pcm).__name__}")
    if not message.mime_type:
        raise FormatError("AudioChunk mime_type must not be empty")
    data = base64.b64encode(bytes(message.pcm)).decode("ascii")
    return {"realtimeInput": {"mediaChunks": [{"mimeType": message.mime_type, "data": data}]}}


def _tool_result(message: ToolResult) -> Dict[str, Any]:
    if not message.call_id:
        raise FormatError("ToolResult call_id must not be empty")
    if not isinstance(message.response, dict):
        raise FormatError("ToolResult response must be a JSON object")
    return {
        "toolResponse": {
            "functionResponses": [{"id": message.call_id, "response": message.response}],
        }
    }


def _config_update(message: ConfigUpdate) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    if message.modalities:
        config["response_modalities"] = [m.wire_name for m in message.modalities]
    if message.generation_params:
        config.update(message.generation_params)
    return {"clientContent": {"generationConfig": config}}


def _end_of_turn(message: EndOfTurn) -> Dict[str, Any]:
    return {"clientContent": {"turnComplete": True}}


def _interrupt(message: Interrupt) -> Dict[str, Any]:
    return {"clientContent": {"interrupt": True}}


# One envelope builder per variant
_ENCODERS = {
    TextTurn: _text_turn,
    AudioChunk: _audio_chunk,
    ToolResult: _tool_result,
    ConfigUpdate: _config_update,
    EndOfTurn: _end_of_turn,
    Interrupt: _interrupt,
}


def to_json(message: OutgoingMessage) -> Dict[str, Any]:
    """Build the wire envelope of `message` as a dict."""
    encoder = _ENCODERS.get(type(message))
    if encoder is None:
        raise FormatError(f"Unsupported outgoing message: {type(message).__name__}")
    return encoder(message)


def encode(message: OutgoingMessage) -> str:
    """Encode `message` into its JSON text frame."""
    envelope = to_json(message)
    try:
        return json.dumps(envelope, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise FormatError(f"Cannot serialise {type(message).__name__}: {e}", original_error=e)


def setup_payload(config: LiveConfig) -> Dict[str, Any]:
    """
    Build the handshake payload sent once, immediately after the socket opens.

    Only `model` is mandatory; every other section is added when configured.
    The system instruction must be a Content object with a parts array and
    tools must be wrapped in a functionDeclarations array.
    """
    if not config.model:
        raise FormatError("Setup requires a model name")

    setup: Dict[str, Any] = {"model": config.model}

    generation = config.generation_config or GenerationConfig()
    generation_json = generation.to_json()
    if config.response_modalities:
        generation_json["response_modalities"] = [m.wire_name for m in config.response_modalities]
    if generation_json:
        setup["generationConfig"] = generation_json

    if config.system_instruction is not None:
        setup["systemInstruction"] = {"parts": [{"text": config.system_instruction}]}

    if config.tools:
        setup["tools"] = [{"functionDeclarations": list(config.tools)}]

    if config.input_audio_transcription:
        setup["input_audio_transcription"] = {}

    if config.output_audio_transcription:
        setup["output_audio_transcription"] = {}

    return {"setup": setup}


def encode_setup(config: LiveConfig) -> str:
    """Encode the handshake frame for `config`."""
    try:
        return json.dumps(setup_payload(config), separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise FormatError(f"Cannot serialise setup message: {e}", original_error=e)


def message_kind(message: OutgoingMessage) -> str:
    """Short variant name, used for logs and metric labels."""
    return type(message).__name__


__all__ = [
    "PCM_MIME_TYPE",
    "OutgoingMessage",
    "TextTurn",
    "AudioChunk",
    "ToolResult",
    "ConfigUpdate",
    "EndOfTurn",
    "Interrupt",
    "to_json",
    "encode",
    "setup_payload",
    "encode_setup",
    "message_kind",
]
