"""
Error model for the Live Session Engine.

Every failure the engine reports is a LiveError carrying a LiveErrorType.
Errors raised by an engine operation (connect, send, buffer operations) go
straight to the caller. Errors observed asynchronously (inbound parse
failures, peer close, server `error` frames, capture stream failures) are
published on the diagnostic event channel instead.
"""

from enum import Enum
from typing import Optional


class LiveErrorType(Enum):
    """Categories of errors the engine can report."""
    CONNECTION_FAILED = "connection_failed"
    DISCONNECTED = "disconnected"
    AUDIO_RECORDING = "audio_recording"
    AUDIO_PLAYBACK = "audio_playback"
    MESSAGE_FORMAT = "message_format"
    API_ERROR = "api_error"
    PERMISSION_DENIED = "permission_denied"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class LiveError(Exception):
    """Base class for all Live Session Engine errors."""

    error_type: LiveErrorType = LiveErrorType.UNKNOWN

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    @property
    def type(self) -> LiveErrorType:
        return self.error_type

    def __str__(self) -> str:
        return f"LiveError({self.error_type.value}): {self.message}"


class ConnectionFailedError(LiveError):
    """The transport could not be opened or the handshake did not complete."""
    error_type = LiveErrorType.CONNECTION_FAILED

    @classmethod
    def from_exception(cls, error: BaseException) -> "ConnectionFailedError":
        return cls(f"Failed to connect to Live API: {error}", original_error=error)


class AlreadyConnectedError(ConnectionFailedError):
    """connect() was called on a session that is connected or connecting."""

    def __init__(self, message: str = "Already connected"):
        super().__init__(message)


class NotConnectedError(ConnectionFailedError):
    """A send was attempted while the session is not connected."""

    def __init__(self, message: str = "Not connected"):
        super().__init__(message)


class DisconnectedError(LiveError):
    """The connection was closed."""
    error_type = LiveErrorType.DISCONNECTED

    def __init__(self, reason: str):
        super().__init__(f"Connection closed: {reason}")
        self.reason = reason


class HandshakeTimeoutError(LiveError):
    """No setupComplete frame arrived within the handshake bound."""
    error_type = LiveErrorType.TIMEOUT

    def __init__(self, operation: str = "setup response", timeout_seconds: Optional[float] = None):
        super().__init__(f"Timeout waiting for {operation}")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class MessageFormatError(LiveError):
    """A message could not be encoded, decoded or written."""
    error_type = LiveErrorType.MESSAGE_FORMAT

    @classmethod
    def from_exception(cls, error: BaseException) -> "MessageFormatError":
        return cls(f"Message format error: {error}", original_error=error)


class FormatError(MessageFormatError):
    """Malformed input to the codec or parser."""


class LiveApiError(LiveError):
    """The server reported an error frame."""
    error_type = LiveErrorType.API_ERROR

    def __init__(self, message: str, code: Optional[int] = None, status: Optional[str] = None):
        super().__init__(f"API error: {message}")
        self.server_message = message
        self.code = code
        self.status = status


class AudioRecordingError(LiveError):
    """Microphone capture failed."""
    error_type = LiveErrorType.AUDIO_RECORDING

    @classmethod
    def from_exception(cls, error: BaseException) -> "AudioRecordingError":
        return cls(f"Audio recording failed: {error}", original_error=error)


class AlreadyRecordingError(AudioRecordingError):
    """Capture was started while already recording."""

    def __init__(self, message: str = "Already recording"):
        super().__init__(message)


class AudioPlaybackError(LiveError):
    """The speaker sink failed."""
    error_type = LiveErrorType.AUDIO_PLAYBACK

    @classmethod
    def from_exception(cls, error: BaseException) -> "AudioPlaybackError":
        return cls(f"Audio playback failed: {error}", original_error=error)


class PermissionDeniedError(LiveError):
    """A required OS permission (e.g. microphone) was denied."""
    error_type = LiveErrorType.PERMISSION_DENIED

    def __init__(self, permission: str = "Microphone"):
        super().__init__(f"{permission} permission denied")
        self.permission = permission


def wrap_error(error: BaseException) -> LiveError:
    """Return `error` as a LiveError, wrapping foreign exceptions as UNKNOWN."""
    if isinstance(error, LiveError):
        return error
    return LiveError(str(error) or type(error).__name__, original_error=error)


__all__ = [
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
    "wrap_error",
]
