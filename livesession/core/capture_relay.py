"""
Audio Capture Relay

Forwards a continuous microphone chunk stream (16-bit PCM, 16kHz, mono) to
the session as AudioChunk messages. Stream errors and stream completion
while recording stop the relay and are reported as events; nothing is
raised into the pump task.
"""

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

from .errors import AlreadyRecordingError, AudioRecordingError, LiveError
from .events import EventHub, EventType
from .messages import AudioChunk, OutgoingMessage, PCM_MIME_TYPE

logger = logging.getLogger(__name__)

SendCallable = Callable[[OutgoingMessage], Awaitable[None]]


class MicrophoneSource(Protocol):
    """Microphone interface consumed by the capture relay."""

    async def start(self) -> None:
        """Open the device. May raise PermissionDeniedError."""

    async def stop(self) -> None:
        """Close the device and end the chunk stream."""

    def chunks(self) -> AsyncIterator[bytes]:
        """Continuous stream of PCM chunks until stopped."""


class AudioCaptureRelay:
    """Pumps microphone chunks into the session."""

    def __init__(
        self,
        source: MicrophoneSource,
        send: SendCallable,
        events: Optional[EventHub] = None,
        mime_type: str = PCM_MIME_TYPE,
    ):
        self._source = source
        self._send = send
        self._events = events
        self._mime_type = mime_type

        self._recording = False
        self._pump_task: Optional[asyncio.Task] = None

        # Metrics
        self._chunks_sent: int = 0
        self._bytes_sent: int = 0

    @property
    def is_recording(self) -> bool:
        return self._recording

    async def start(self):
        """
        Open the microphone and start relaying chunks.

        Raises:
            AlreadyRecordingError: if already recording.
            PermissionDeniedError: if the source reports denied access.
            AudioRecordingError: if the source fails to open.
        """
        if self._recording:
            raise AlreadyRecordingError()

        try:
            await self._source.start()
        except LiveError as e:
            self._publish(EventType.ERROR, e)
            raise
        except Exception as e:
            error = AudioRecordingError.from_exception(e)
            self._publish(EventType.ERROR, error)
            raise error from e

        self._recording = True
        self._pump_task = asyncio.create_task(self._pump_loop())
        logger.info("Audio capture started")
        self._publish(EventType.RECORDING_STARTED)

    async def _pump_loop(self):
        """Forward every chunk until the stream ends, fails or recording stops."""
        try:
            async for chunk in self._source.chunks():
                if not self._recording:
                    break
                if not chunk:
                    continue
                await self._send(AudioChunk(pcm=bytes(chunk), mime_type=self._mime_type))
                self._chunks_sent += 1
                self._bytes_sent += len(chunk)
        except asyncio.CancelledError:
            logger.debug("Capture pump loop cancelled")
            raise
        except Exception as e:
            logger.error(f"Audio capture failed: {type(e).__name__}: {e}")
            self._publish(EventType.ERROR, AudioRecordingError.from_exception(e))
            await self._finish(cancel_pump=False)
            return

        if self._recording:
            logger.info("Microphone stream ended while recording")
            await self._finish(cancel_pump=False)

    async def stop(self):
        """Stop relaying and close the microphone. No-op when not recording."""
        if not self._recording:
            return
        await self._finish(cancel_pump=True)

    async def _finish(self, cancel_pump: bool):
        self._recording = False

        try:
            await self._source.stop()
        except Exception as e:
            logger.error(f"Error stopping microphone: {e}")
            self._publish(EventType.ERROR, AudioRecordingError.from_exception(e))

        if cancel_pump and self._pump_task and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
        self._pump_task = None

        logger.info(f"Audio capture stopped ({self._chunks_sent} chunks sent)")
        self._publish(EventType.RECORDING_STOPPED)

    def _publish(self, event_type: EventType, payload=None):
        if self._events is not None:
            self._events.emit(event_type, payload)

    def get_stats(self) -> dict:
        return {
            "is_recording": self._recording,
            "chunks_sent": self._chunks_sent,
            "bytes_sent": self._bytes_sent,
        }


__all__ = [
    "MicrophoneSource",
    "AudioCaptureRelay",
]
