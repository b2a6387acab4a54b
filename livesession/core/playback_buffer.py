"""
Audio Playback Buffer

Smooths bursty network delivery of 16-bit PCM (24kHz, mono) into continuous
speaker output.

Policy:
- Chunks queue up until `pre_buffer_chunks` are available, then playback
  starts and the whole queue is drained into the sink at once. This trades a
  fixed startup latency (~160ms at 4 x 40ms chunks) for protection against
  underrun on jittery delivery.
- Afterwards the sink pulls: whenever its internal buffer falls below the
  feed threshold it invokes the demand callback, which feeds one chunk.
- An empty queue on demand means the server stopped sending audio; there is
  no explicit end-of-audio marker, so this is how end of speech is detected.

Concurrency boundary: the demand callback runs on the audio thread, while
enqueue/flush/stop run on the event loop. All queue and flag mutations happen
inside one re-entrant lock; sinks that call back synchronously from feed()
do not deadlock. The sink is released after the lock is dropped, since a
device stop blocks until its demand callback returns.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Protocol

from ..config import AudioConfig
from .errors import AudioPlaybackError
from .events import EventHub, EventType

logger = logging.getLogger(__name__)

DemandCallback = Callable[[int], None]


class AudioSink(Protocol):
    """Streaming speaker interface consumed by the playback buffer."""

    def setup(self, sample_rate: int, channels: int, feed_threshold: int) -> None:
        """Open the output at the given format; feed_threshold is in frames."""

    def set_demand_callback(self, callback: DemandCallback) -> None:
        """Register the callback invoked with the remaining frame count."""

    def feed(self, pcm: bytes) -> None:
        """Append PCM to the sink's internal buffer."""

    def release(self) -> None:
        """Stop output and free the device."""


@dataclass
class _PlaybackState:
    """Mutable flags guarded by the buffer lock. is_playing implies is_initialized."""
    is_playing: bool = False
    is_initialized: bool = False

    def check(self):
        if self.is_playing and not self.is_initialized:
            raise AudioPlaybackError("Playback started without an initialized sink")


class AudioPlaybackBuffer:
    """Pre-buffering FIFO between network audio and a streaming sink."""

    def __init__(
        self,
        sink: AudioSink,
        audio_config: Optional[AudioConfig] = None,
        events: Optional[EventHub] = None,
    ):
        config = audio_config or AudioConfig()
        self._sink = sink
        self._events = events
        self._sample_rate = config.playback_sample_rate
        self._channels = config.playback_channels
        self._feed_threshold = config.feed_threshold_frames
        self._pre_buffer_chunks = config.pre_buffer_chunks

        self._lock = threading.RLock()
        self._queue: Deque[bytes] = deque()
        self._flags = _PlaybackState()

        # Metrics
        self._chunks_enqueued: int = 0
        self._chunks_fed: int = 0
        self._chunks_discarded: int = 0
        self._completions: int = 0
        self._feed_errors: int = 0

    @property
    def pre_buffer_chunks(self) -> int:
        return self._pre_buffer_chunks

    @property
    def is_playing(self) -> bool:
        with self._lock:
            return self._flags.is_playing

    @property
    def is_initialized(self) -> bool:
        with self._lock:
            return self._flags.is_initialized

    @property
    def queued_chunks(self) -> int:
        with self._lock:
            return len(self._queue)

    def enqueue(self, chunk: bytes):
        """
        Queue a PCM chunk for playback.

        Starts playback automatically once the pre-buffer threshold is
        reached. While playing, chunks are only appended; the sink pulls them.
        """
        if not chunk:
            self._chunks_discarded += 1
            logger.debug("Discarding empty audio chunk")
            return

        with self._lock:
            self._queue.append(bytes(chunk))
            self._chunks_enqueued += 1
            should_start = (
                not self._flags.is_playing
                and len(self._queue) >= self._pre_buffer_chunks
            )
            if should_start:
                self.start()

    def start(self):
        """
        Start playback: set up the sink once, then drain the queue into it.

        Idempotent while playing.

        Raises:
            AudioPlaybackError: if the sink cannot be set up.
        """
        with self._lock:
            if self._flags.is_playing:
                return

            if not self._flags.is_initialized:
                try:
                    self._sink.setup(self._sample_rate, self._channels, self._feed_threshold)
                    self._sink.set_demand_callback(self._on_demand)
                except Exception as e:
                    error = e if isinstance(e, AudioPlaybackError) else AudioPlaybackError.from_exception(e)
                    logger.error(f"Failed to set up audio sink: {e}")
                    self._publish(EventType.ERROR, error)
                    raise error from e
                self._flags.is_initialized = True

            self._flags.is_playing = True
            self._flags.check()
            pending = len(self._queue)
            logger.debug(f"Playback started with {pending} buffered chunks")
            self._publish(EventType.PLAYBACK_STARTED)

            while self._queue:
                self._feed(self._queue.popleft())

    def _on_demand(self, remaining_frames: int):
        """Sink demand callback: feed one chunk, or complete when drained."""
        with self._lock:
            if not self._flags.is_playing:
                return

            if self._queue:
                self._feed(self._queue.popleft())
                return

            self._flags.is_playing = False
            self._completions += 1

        logger.debug(f"Playback completed (remaining_frames={remaining_frames})")
        self._publish(EventType.PLAYBACK_COMPLETED)

    def _feed(self, chunk: bytes):
        try:
            self._sink.feed(chunk)
            self._chunks_fed += 1
        except Exception as e:
            self._feed_errors += 1
            logger.error(f"Audio sink feed failed: {e}")
            self._publish(EventType.ERROR, AudioPlaybackError.from_exception(e))

    def flush(self):
        """
        Start playback below the pre-buffer threshold.

        Called when the producer signals no more audio is coming (turn
        complete), so a short trailing utterance is not stuck waiting.
        """
        with self._lock:
            if not self._queue or self._flags.is_playing:
                return
            self.start()

    def stop(self):
        """Clear the queue and release the sink so stale audio never plays."""
        with self._lock:
            was_playing = self._flags.is_playing
            dropped = len(self._queue)
            self._queue.clear()
            self._flags.is_playing = False
            release = self._flags.is_initialized
            self._flags.is_initialized = False

        # Outside the lock: releasing a device waits for its in-flight demand
        # callback, which takes the lock.
        if release:
            try:
                self._sink.release()
            except Exception as e:
                logger.error(f"Audio sink release failed: {e}")
                self._publish(EventType.ERROR, AudioPlaybackError.from_exception(e))

        if dropped:
            logger.info(f"Playback stopped, dropped {dropped} queued chunks")
        if was_playing:
            self._publish(EventType.PLAYBACK_STOPPED)

    def interrupt(self):
        """Barge-in: drop everything queued and silence the sink."""
        self.stop()

    def clear(self):
        """Clear queued audio without touching the sink."""
        with self._lock:
            self._queue.clear()

    def dispose(self):
        self.stop()

    def _publish(self, event_type: EventType, payload=None):
        if self._events is not None:
            self._events.emit(event_type, payload)

    def get_stats(self) -> dict:
        """Get playback buffer statistics."""
        with self._lock:
            return {
                "queued_chunks": len(self._queue),
                "is_playing": self._flags.is_playing,
                "is_initialized": self._flags.is_initialized,
                "pre_buffer_chunks": self._pre_buffer_chunks,
                "chunks_enqueued": self._chunks_enqueued,
                "chunks_fed": self._chunks_fed,
                "chunks_discarded": self._chunks_discarded,
                "completions": self._completions,
                "feed_errors": self._feed_errors,
            }


__all__ = [
    "DemandCallback",
    "AudioSink",
    "AudioPlaybackBuffer",
]
