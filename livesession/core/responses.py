"""
Response Parser.

Turns one inbound frame (text JSON or binary) into exactly one
IncomingResponse variant. The variant is chosen by the first top-level key
present, in a fixed order; JSON objects with none of the known keys parse to
Unknown so that server additions never break the session. Binary frames that
do not decode as UTF-8 JSON are raw PCM audio (16-bit, 24kHz, mono).

usageMetadata is not a variant of its own: it may ride at the top level or
inside serverContent and is extracted as a side channel.
"""

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import FormatError

Frame = Union[str, bytes, bytearray, memoryview]

# Order matters: first match wins
RESPONSE_KEYS: Tuple[str, ...] = (
    "setupComplete",
    "serverContent",
    "toolCall",
    "toolCallCancellation",
    "error",
    "sessionResumptionUpdate",
    "goAway",
)


class IncomingResponse:
    """Base class for parsed server responses."""

    __slots__ = ()


@dataclass(frozen=True)
class InlineData:
    """Base64 payload embedded in a content part."""
    mime_type: str
    data: str

    @property
    def pcm(self) -> bytes:
        """Decoded bytes."""
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise FormatError(f"Invalid base64 inline data: {e}", original_error=e)

    @property
    def is_audio(self) -> bool:
        return self.mime_type.startswith("audio/")

    def __repr__(self) -> str:
        return f"InlineData({self.mime_type}, {len(self.data)} chars)"


@dataclass(frozen=True)
class Transcription:
    text: str
    finished: bool = False


@dataclass(frozen=True)
class SetupComplete(IncomingResponse):
    pass


@dataclass(frozen=True)
class ServerContent(IncomingResponse):
    """Model output for the current turn."""
    text_parts: Tuple[str, ...] = ()
    inline_audio_parts: Tuple[InlineData, ...] = ()
    turn_complete: bool = False
    interrupted: bool = False
    generation_complete: bool = False
    input_transcript: Optional[Transcription] = None
    output_transcript: Optional[Transcription] = None

    @property
    def text(self) -> str:
        """All text parts joined with a single space, trimmed."""
        return " ".join(self.text_parts).strip()

    @property
    def has_audio(self) -> bool:
        return bool(self.inline_audio_parts)


@dataclass(frozen=True)
class FunctionCall:
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCall(IncomingResponse):
    """
    Server request to execute a function.

    id/name/args describe the first function call; `calls` holds every call
    in the frame.
    """
    id: str
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    calls: Tuple[FunctionCall, ...] = ()


@dataclass(frozen=True)
class ToolCallCancellation(IncomingResponse):
    ids: Tuple[str, ...]

    @property
    def id(self) -> str:
        return self.ids[0]


@dataclass(frozen=True)
class BinaryAudio(IncomingResponse):
    data: bytes

    def __repr__(self) -> str:
        return f"BinaryAudio({len(self.data)} bytes)"


@dataclass(frozen=True)
class ApiError(IncomingResponse):
    message: str
    code: Optional[int] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class SessionResumptionUpdate(IncomingResponse):
    """Advisory: a handle the caller may reuse to resume the session."""
    handle: Optional[str] = None
    resumable: bool = False


@dataclass(frozen=True)
class GoAway(IncomingResponse):
    """Advisory: the server will close the connection soon."""
    time_left: Optional[str] = None


@dataclass(frozen=True)
class UsageMetadata:
    """Token accounting carried beside a response, never a response of its own."""
    prompt_tokens: int = 0
    candidate_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class Unknown(IncomingResponse):
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ParsedFrame:
    """A parsed frame plus its usageMetadata side channel."""
    response: IncomingResponse
    usage: Optional[UsageMetadata] = None


RESPONSE_TYPES: Tuple[type, ...] = (
    SetupComplete,
    ServerContent,
    ToolCall,
    ToolCallCancellation,
    BinaryAudio,
    ApiError,
    SessionResumptionUpdate,
    GoAway,
    Unknown,
)


def _as_dict(value: Any, key: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise FormatError(f"'{key}' must be an object, got {type(value).__name__}")
    return value


def _parse_transcription(value: Any) -> Optional[Transcription]:
    if not isinstance(value, dict) or value.get("text") is None:
        return None
    return Transcription(text=str(value["text"]), finished=bool(value.get("finished", False)))


def _parse_server_content(payload: Any) -> ServerContent:
    content = _as_dict(payload, "serverContent")

    model_turn = content.get("modelTurn")
    if isinstance(model_turn, dict):
        parts = model_turn.get("parts") or []
    else:
        parts = content.get("parts") or []
    if not isinstance(parts, list):
        raise FormatError("'parts' must be a list")

    texts: List[str] = []
    audio: List[InlineData] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        text = part.get("text")
        if isinstance(text, str):
            texts.append(text)
        inline = part.get("inlineData")
        if isinstance(inline, dict) and isinstance(inline.get("data"), str):
            inline_data = InlineData(
                mime_type=str(inline.get("mimeType", "")),
                data=inline["data"],
            )
            if inline_data.is_audio:
                audio.append(inline_data)

    return ServerContent(
        text_parts=tuple(texts),
        inline_audio_parts=tuple(audio),
        turn_complete=content.get("turnComplete") is True,
        interrupted=content.get("interrupted") is True,
        generation_complete=content.get("generationComplete") is True,
        input_transcript=_parse_transcription(content.get("inputTranscription")),
        output_transcript=_parse_transcription(content.get("outputTranscription")),
    )


def _parse_tool_call(payload: Any) -> ToolCall:
    body = _as_dict(payload, "toolCall")
    function_calls = body.get("functionCalls") or []
    if not isinstance(function_calls, list) or not function_calls:
        raise FormatError("Tool call missing functionCalls")

    calls = []
    for raw in function_calls:
        if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
            raise FormatError("Function call missing name")
        args = raw.get("args") or {}
        if not isinstance(args, dict):
            raise FormatError("Function call args must be an object")
        calls.append(FunctionCall(id=str(raw.get("id") or ""), name=raw["name"], args=args))

    first = calls[0]
    return ToolCall(id=first.id, name=first.name, args=first.args, calls=tuple(calls))


def _parse_tool_call_cancellation(payload: Any) -> ToolCallCancellation:
    body = _as_dict(payload, "toolCallCancellation")
    ids = body.get("ids")
    if ids is None and body.get("id") is not None:
        ids = [body["id"]]
    if not isinstance(ids, list) or not ids:
        raise FormatError("Tool call cancellation missing ids")
    return ToolCallCancellation(ids=tuple(str(i) for i in ids))


def _parse_error(payload: Any) -> ApiError:
    if isinstance(payload, str):
        return ApiError(message=payload)
    body = _as_dict(payload, "error")
    code = body.get("code")
    status = body.get("status")
    return ApiError(
        message=str(body.get("message") or "Unknown error"),
        code=code if isinstance(code, int) else None,
        status=status if isinstance(status, str) else None,
    )


def _parse_session_resumption(payload: Any) -> SessionResumptionUpdate:
    body = _as_dict(payload, "sessionResumptionUpdate")
    handle = body.get("newHandle")
    return SessionResumptionUpdate(
        handle=handle if isinstance(handle, str) and handle else None,
        resumable=body.get("resumable") is True,
    )


def _parse_go_away(payload: Any) -> GoAway:
    body = _as_dict(payload, "goAway")
    time_left = body.get("timeLeft")
    return GoAway(time_left=str(time_left) if time_left is not None else None)


_PARSERS = {
    "setupComplete": lambda payload: SetupComplete(),
    "serverContent": _parse_server_content,
    "toolCall": _parse_tool_call,
    "toolCallCancellation": _parse_tool_call_cancellation,
    "error": _parse_error,
    "sessionResumptionUpdate": _parse_session_resumption,
    "goAway": _parse_go_away,
}


def _token_count(body: Dict[str, Any], key: str) -> int:
    value = body.get(key)
    return value if isinstance(value, int) else 0


def extract_usage_metadata(data: Dict[str, Any]) -> Optional[UsageMetadata]:
    """Find usageMetadata at the top level or nested in serverContent."""
    usage = data.get("usageMetadata")
    if not isinstance(usage, dict):
        server_content = data.get("serverContent")
        if isinstance(server_content, dict):
            usage = server_content.get("usageMetadata")
    if not isinstance(usage, dict):
        return None
    return UsageMetadata(
        prompt_tokens=_token_count(usage, "promptTokenCount"),
        candidate_tokens=_token_count(usage, "responseTokenCount") or _token_count(usage, "candidatesTokenCount"),
        total_tokens=_token_count(usage, "totalTokenCount"),
    )


def _decode_json(frame: Frame) -> Optional[Dict[str, Any]]:
    """
    Decode a frame into a JSON object.

    Returns None for binary frames that are not UTF-8 JSON objects (audio).
    Raises FormatError for text frames that are not JSON objects.
    """
    if isinstance(frame, str):
        try:
            data = json.loads(frame)
        except ValueError as e:
            raise FormatError(f"Malformed JSON frame: {e}", original_error=e)
        if not isinstance(data, dict):
            raise FormatError(f"Expected a JSON object, got {type(data).__name__}")
        return data

    if isinstance(frame, (bytes, bytearray, memoryview)):
        raw = bytes(frame)
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
        return data if isinstance(data, dict) else None

    raise FormatError(f"Unable to parse frame of type {type(frame).__name__}")


def parse_frame(frame: Frame) -> ParsedFrame:
    """Parse `frame` into its response variant plus usage side channel."""
    data = _decode_json(frame)
    if data is None:
        return ParsedFrame(response=BinaryAudio(data=bytes(frame)))

    usage = extract_usage_metadata(data)
    for key in RESPONSE_KEYS:
        if key in data:
            return ParsedFrame(response=_PARSERS[key](data[key]), usage=usage)
    return ParsedFrame(response=Unknown(raw=data), usage=usage)


def parse(frame: Frame) -> IncomingResponse:
    """Parse `frame` into exactly one IncomingResponse variant."""
    return parse_frame(frame).response


def response_kind(response: IncomingResponse) -> str:
    return type(response).__name__


__all__ = [
    "Frame",
    "RESPONSE_KEYS",
    "RESPONSE_TYPES",
    "IncomingResponse",
    "InlineData",
    "Transcription",
    "SetupComplete",
    "ServerContent",
    "FunctionCall",
    "ToolCall",
    "ToolCallCancellation",
    "BinaryAudio",
    "ApiError",
    "SessionResumptionUpdate",
    "GoAway",
    "UsageMetadata",
    "Unknown",
    "ParsedFrame",
    "extract_usage_metadata",
    "parse_frame",
    "parse",
    "response_kind",
]
