"""
Session State Machine

Holds the connection state, audio state and message counters of the single
session owned by an engine. SessionState is an immutable snapshot; every
update produces a new one through transition(), which never performs I/O.

Connection states: DISCONNECTED, CONNECTING, CONNECTED, ERROR
Audio states: IDLE, LISTENING, PROCESSING, SPEAKING (orthogonal)

Invariants enforced on every transition:
- error_message is set iff connection_state == ERROR
- connected_at is set iff CONNECTED was reached in the current lifecycle
  (a lifecycle starts each time CONNECTING is entered)
"""

import logging
import time
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, List, Optional, Tuple
from enum import Enum

logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"

    @property
    def is_connected(self) -> bool:
        return self is ConnectionState.CONNECTED


class AudioState(Enum):
    """Audio activity of the session, derived from observed events."""
    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"


# Valid connection transitions; staying in the same state is always allowed
VALID_CONNECTION_TRANSITIONS: Dict[ConnectionState, FrozenSet[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING, ConnectionState.ERROR}),
    ConnectionState.CONNECTING: frozenset({
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
        ConnectionState.ERROR,
    }),
    ConnectionState.CONNECTED: frozenset({ConnectionState.DISCONNECTED, ConnectionState.ERROR}),
    ConnectionState.ERROR: frozenset({ConnectionState.CONNECTING, ConnectionState.DISCONNECTED}),
}

DEFAULT_ERROR_MESSAGE = "Unknown error"

_FIELDS = frozenset({
    "connection_state",
    "audio_state",
    "error_message",
    "connected_at",
    "messages_sent",
    "messages_received",
})


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of the session."""
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    audio_state: AudioState = AudioState.IDLE
    error_message: Optional[str] = None
    connected_at: Optional[float] = None  # wall clock, seconds since epoch
    messages_sent: int = 0
    messages_received: int = 0

    @property
    def is_connected(self) -> bool:
        return self.connection_state.is_connected

    @property
    def can_send_messages(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    @property
    def connection_duration(self) -> Optional[float]:
        """Seconds since the connection was established, if it was."""
        if self.connected_at is None:
            return None
        return max(0.0, time.time() - self.connected_at)

    def __repr__(self) -> str:
        return (
            f"SessionState(connection={self.connection_state.value}, "
            f"audio={self.audio_state.value}, error={self.error_message!r}, "
            f"messages={self.messages_sent} sent / {self.messages_received} received)"
        )


def transition(state: SessionState, **changes) -> SessionState:
    """
    Compute the next snapshot from `state` plus a partial update.

    Fields named in `changes` override, all others carry over, then the
    invariants are re-applied. Connection-state validity is not checked here;
    see SessionStateMachine.
    """
    unknown = set(changes) - _FIELDS
    if unknown:
        raise TypeError(f"Unknown SessionState fields: {sorted(unknown)}")

    old_conn = state.connection_state
    new_conn = changes.get("connection_state", old_conn)
    entering = new_conn is not old_conn

    updates = dict(changes)

    if new_conn is ConnectionState.ERROR:
        message = changes.get("error_message") or state.error_message
        updates["error_message"] = message or DEFAULT_ERROR_MESSAGE
    else:
        updates["error_message"] = None

    if entering and new_conn is ConnectionState.CONNECTING:
        # New lifecycle
        updates["connected_at"] = None
        updates.setdefault("messages_sent", 0)
        updates.setdefault("messages_received", 0)
    elif entering and new_conn is ConnectionState.CONNECTED:
        updates["connected_at"] = changes.get("connected_at") or time.time()
    else:
        updates["connected_at"] = state.connected_at

    for counter in ("messages_sent", "messages_received"):
        if updates.get(counter, 0) < 0:
            raise ValueError(f"{counter} must not be negative")

    return replace(state, **updates)


@dataclass
class StateTransitionRecord:
    """Record of a connection state transition for logging and debugging."""
    from_state: ConnectionState
    to_state: ConnectionState
    timestamp: float
    duration_in_previous_state_ms: float
    error_message: Optional[str] = None


class SessionStateMachine:
    """
    Owner of the current SessionState.

    The connection lifecycle manager is the only caller. apply() returns the
    (old, new) pair so the caller can notify observers only for the fields
    that actually changed. Invalid connection transitions are logged and
    rejected; the rest of the update still applies.
    """

    def __init__(self, max_history: int = 100):
        self._state = SessionState()
        self._state_entered_at: float = time.monotonic()

        # History
        self._transition_history: List[StateTransitionRecord] = []
        self._max_history = max_history

        # Metrics
        self._invalid_transition_count: int = 0
        self._total_transitions: int = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def invalid_transition_count(self) -> int:
        return self._invalid_transition_count

    def can_transition(self, target: ConnectionState) -> bool:
        current = self._state.connection_state
        return target is current or target in VALID_CONNECTION_TRANSITIONS[current]

    def apply(self, **changes) -> Tuple[SessionState, SessionState]:
        """Apply a partial update. Returns (old_state, new_state)."""
        old = self._state
        target = changes.get("connection_state", old.connection_state)

        if not self.can_transition(target):
            self._invalid_transition_count += 1
            logger.error(
                f"Invalid transition: {old.connection_state.value} -> {target.value}. "
                f"Remaining in {old.connection_state.value}. "
                f"Total invalid: {self._invalid_transition_count}"
            )
            changes.pop("connection_state", None)
            changes.pop("error_message", None)

        new = transition(old, **changes)
        self._state = new

        if new.connection_state is not old.connection_state:
            self._record(old, new)

        return old, new

    def _record(self, old: SessionState, new: SessionState):
        now = time.monotonic()
        duration_ms = (now - self._state_entered_at) * 1000
        self._state_entered_at = now
        self._total_transitions += 1

        self._transition_history.append(StateTransitionRecord(
            from_state=old.connection_state,
            to_state=new.connection_state,
            timestamp=now,
            duration_in_previous_state_ms=duration_ms,
            error_message=new.error_message,
        ))
        if len(self._transition_history) > self._max_history:
            self._transition_history.pop(0)

        logger.info(
            f"State transition: {old.connection_state.value} -> {new.connection_state.value} "
            f"[prev_duration={duration_ms:.1f}ms"
            + (f", error={new.error_message}" if new.error_message else "")
            + "]"
        )

    def reset(self):
        """Return to the initial DISCONNECTED snapshot."""
        self._state = SessionState()
        self._state_entered_at = time.monotonic()

    def get_status(self) -> dict:
        """Get current state machine status."""
        return {
            "connection_state": self._state.connection_state.value,
            "audio_state": self._state.audio_state.value,
            "error_message": self._state.error_message,
            "messages_sent": self._state.messages_sent,
            "messages_received": self._state.messages_received,
            "total_transitions": self._total_transitions,
            "invalid_transitions": self._invalid_transition_count,
            "time_in_current_state_ms": (time.monotonic() - self._state_entered_at) * 1000,
        }

    def get_recent_transitions(self, count: int = 10) -> List[StateTransitionRecord]:
        """Get recent transition history."""
        return self._transition_history[-count:]


__all__ = [
    "ConnectionState",
    "AudioState",
    "VALID_CONNECTION_TRANSITIONS",
    "DEFAULT_ERROR_MESSAGE",
    "SessionState",
    "transition",
    "StateTransitionRecord",
    "SessionStateMachine",
]
