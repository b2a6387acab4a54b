"""
Typed event channels.

Every observable thing the engine does is published as an Event on exactly
one channel: connection, audio, content, tool or diagnostic. Any number of
subscribers may listen on a channel or on a single event type. Publishing is
synchronous; a failing subscriber is logged and never affects the publisher
or the other subscribers.

Payloads by event type:
    CONNECTION_STATE_CHANGED   ConnectionState
    SESSION_STATE_CHANGED      SessionState
    CONNECTED                  SessionState
    DISCONNECTED               str (reason)
    AUDIO_STATE_CHANGED        AudioState
    RECORDING_*/PLAYBACK_*     None
    SERVER_CONTENT             ServerContent
    TEXT                       TextPayload
    INLINE_AUDIO               InlineData
    AUDIO_DATA                 bytes
    INPUT/OUTPUT_TRANSCRIPT    Transcription
    TURN_COMPLETE/INTERRUPTED  None
    TOOL_CALL                  ToolCall
    TOOL_CALL_CANCELLATION     str (call id)
    ERROR                      LiveError
    RAW_RESPONSE               IncomingResponse
    SESSION_RESUMPTION_UPDATE  SessionResumptionUpdate
    GO_AWAY                    GoAway
    USAGE_METADATA             UsageMetadata
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class Channel(Enum):
    CONNECTION = "connection"
    AUDIO = "audio"
    CONTENT = "content"
    TOOL = "tool"
    DIAGNOSTIC = "diagnostic"


class EventType(Enum):
    """Events published by the engine and its audio components."""
    # Connection
    CONNECTION_STATE_CHANGED = "connection_state_changed"
    SESSION_STATE_CHANGED = "session_state_changed"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    # Audio
    AUDIO_STATE_CHANGED = "audio_state_changed"
    RECORDING_STARTED = "recording_started"
    RECORDING_STOPPED = "recording_stopped"
    PLAYBACK_STARTED = "playback_started"
    PLAYBACK_COMPLETED = "playback_completed"
    PLAYBACK_STOPPED = "playback_stopped"
    # Content
    SERVER_CONTENT = "server_content"
    TEXT = "text"
    INLINE_AUDIO = "inline_audio"
    AUDIO_DATA = "audio_data"
    INPUT_TRANSCRIPT = "input_transcript"
    OUTPUT_TRANSCRIPT = "output_transcript"
    TURN_COMPLETE = "turn_complete"
    INTERRUPTED = "interrupted"
    # Tool
    TOOL_CALL = "tool_call"
    TOOL_CALL_CANCELLATION = "tool_call_cancellation"
    # Diagnostic
    ERROR = "error"
    RAW_RESPONSE = "raw_response"
    SESSION_RESUMPTION_UPDATE = "session_resumption_update"
    GO_AWAY = "go_away"
    USAGE_METADATA = "usage_metadata"


# Every event type belongs to exactly one channel
EVENT_CHANNELS: Dict[EventType, Channel] = {
    EventType.CONNECTION_STATE_CHANGED: Channel.CONNECTION,
    EventType.SESSION_STATE_CHANGED: Channel.CONNECTION,
    EventType.CONNECTED: Channel.CONNECTION,
    EventType.DISCONNECTED: Channel.CONNECTION,
    EventType.AUDIO_STATE_CHANGED: Channel.AUDIO,
    EventType.RECORDING_STARTED: Channel.AUDIO,
    EventType.RECORDING_STOPPED: Channel.AUDIO,
    EventType.PLAYBACK_STARTED: Channel.AUDIO,
    EventType.PLAYBACK_COMPLETED: Channel.AUDIO,
    EventType.PLAYBACK_STOPPED: Channel.AUDIO,
    EventType.SERVER_CONTENT: Channel.CONTENT,
    EventType.TEXT: Channel.CONTENT,
    EventType.INLINE_AUDIO: Channel.CONTENT,
    EventType.AUDIO_DATA: Channel.CONTENT,
    EventType.INPUT_TRANSCRIPT: Channel.CONTENT,
    EventType.OUTPUT_TRANSCRIPT: Channel.CONTENT,
    EventType.TURN_COMPLETE: Channel.CONTENT,
    EventType.INTERRUPTED: Channel.CONTENT,
    EventType.TOOL_CALL: Channel.TOOL,
    EventType.TOOL_CALL_CANCELLATION: Channel.TOOL,
    EventType.ERROR: Channel.DIAGNOSTIC,
    EventType.RAW_RESPONSE: Channel.DIAGNOSTIC,
    EventType.SESSION_RESUMPTION_UPDATE: Channel.DIAGNOSTIC,
    EventType.GO_AWAY: Channel.DIAGNOSTIC,
    EventType.USAGE_METADATA: Channel.DIAGNOSTIC,
}


@dataclass(frozen=True)
class TextPayload:
    """Text from the model (or a user transcription)."""
    text: str
    is_user: bool = False
    finished: bool = False


@dataclass(frozen=True)
class Event:
    """An event published on an EventHub."""
    type: EventType
    payload: Any = None
    timestamp: float = field(default_factory=time.monotonic)

    @property
    def channel(self) -> Channel:
        return EVENT_CHANNELS[self.type]

    def __repr__(self) -> str:
        return f"Event({self.type.value}, channel={self.channel.value})"


EventCallback = Callable[[Event], None]


class EventHub:
    """
    Multi-subscriber event dispatcher with one channel per event category.

    Subscriber lists are copied under a lock before dispatch, so callbacks
    may subscribe or unsubscribe while an event is being delivered, and
    components running on the audio thread may publish safely.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._channel_subscribers: Dict[Channel, List[EventCallback]] = {c: [] for c in Channel}
        self._type_subscribers: Dict[EventType, List[EventCallback]] = {}
        self._published: Dict[Channel, int] = {c: 0 for c in Channel}
        self._subscriber_errors: int = 0

    def subscribe(self, channel: Channel, callback: EventCallback) -> Callable[[], None]:
        """
        Subscribe to every event on `channel`.

        Returns:
            A function that removes the subscription.
        """
        with self._lock:
            self._channel_subscribers[channel].append(callback)
        return lambda: self._remove(self._channel_subscribers[channel], callback)

    def on(self, event_type: EventType, callback: EventCallback) -> Callable[[], None]:
        """Subscribe to a single event type. Returns an unsubscribe function."""
        with self._lock:
            self._type_subscribers.setdefault(event_type, []).append(callback)
        return lambda: self._remove(self._type_subscribers.get(event_type, []), callback)

    def unsubscribe(self, channel: Channel, callback: EventCallback):
        self._remove(self._channel_subscribers[channel], callback)

    def _remove(self, subscribers: List[EventCallback], callback: EventCallback):
        with self._lock:
            try:
                subscribers.remove(callback)
            except ValueError:
                pass

    def publish(self, event: Event):
        """Deliver `event` to channel subscribers, then type subscribers."""
        channel = event.channel
        with self._lock:
            targets = list(self._channel_subscribers[channel])
            targets.extend(self._type_subscribers.get(event.type, ()))
            self._published[channel] += 1

        for callback in targets:
            try:
                callback(event)
            except Exception as e:
                self._subscriber_errors += 1
                logger.error(f"Event subscriber error on {event.type.value}: {e}", exc_info=True)

    def emit(self, event_type: EventType, payload: Any = None):
        """Shorthand for publish(Event(event_type, payload))."""
        self.publish(Event(type=event_type, payload=payload))

    def subscriber_count(self, channel: Channel) -> int:
        with self._lock:
            return len(self._channel_subscribers[channel])

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "published": {c.value: n for c, n in self._published.items()},
                "subscriber_errors": self._subscriber_errors,
            }


__all__ = [
    "Channel",
    "EventType",
    "EVENT_CHANNELS",
    "TextPayload",
    "Event",
    "EventCallback",
    "EventHub",
]
