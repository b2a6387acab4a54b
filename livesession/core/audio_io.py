"""
Device adapters over PortAudio (sounddevice).

SoundDeviceAudioSink implements AudioSink for the playback buffer and
SoundDeviceMicrophone implements MicrophoneSource for the capture relay.

Concurrency boundary:
- PortAudio runs both stream callbacks on its own OS thread
- Output: feed() writes to an SPSC ring buffer, the callback reads from it
  and asks for more through the demand callback. feed() may run on either
  thread; the playback buffer serialises those calls under its lock
- Input: the callback hands each block to the event loop with
  call_soon_threadsafe; chunks() consumes them from an asyncio.Queue

Audio formats:
- Capture: 16 kHz, 16-bit signed int, mono PCM (1280 bytes per 40ms chunk)
- Playback: 24 kHz, 16-bit signed int, mono PCM
"""

import asyncio
import logging
import os
from typing import AsyncIterator, Optional

import numpy as np

from ..config import AudioConfig
from .errors import AudioPlaybackError, AudioRecordingError, PermissionDeniedError
from .playback_buffer import DemandCallback
from .ring_buffer import BYTES_PER_SAMPLE, SPSCRingBuffer, create_playback_ring_buffer

logger = logging.getLogger(__name__)

# Output callback block: 20ms at 24kHz
PLAYBACK_BLOCK_FRAMES = 480

CAPTURE_QUEUE_MAXSIZE = 50  # 2 seconds of 40ms chunks


def _env_device(env_var: str) -> Optional[int]:
    """Device index override from the environment."""
    val = os.environ.get(env_var)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            logger.warning(f"Invalid device index in {env_var}: {val}")
    return None


def _import_sounddevice():
    import sounddevice
    return sounddevice


def pcm_level(chunk: bytes) -> float:
    """
    Normalised RMS level of a 16-bit PCM chunk.

    Returns:
        0.0 for silence or an empty chunk, up to 1.0 at full scale.
    """
    usable = len(chunk) - (len(chunk) % BYTES_PER_SAMPLE)
    if usable <= 0:
        return 0.0
    samples = np.frombuffer(chunk[:usable], dtype="<i2").astype(np.float64)
    rms = float(np.sqrt(np.mean(samples * samples)))
    return min(1.0, rms / 32768.0)


class SoundDeviceAudioSink:
    """
    Streaming speaker backed by sounddevice.RawOutputStream.

    The stream is opened in setup() and closed in release(); the playback
    buffer may call setup() again after a release.
    """

    def __init__(self, device: Optional[int] = None, buffer_seconds: float = 2.0):
        self._device = device if device is not None else _env_device("LIVESESSION_PLAYBACK_DEVICE")
        self._buffer_seconds = buffer_seconds
        self._ring: Optional[SPSCRingBuffer] = None
        self._stream = None
        self._demand_callback: Optional[DemandCallback] = None
        self._channels = 1
        self._feed_threshold_frames = 0

        # Metrics
        self._status_errors: int = 0
        self._dropped_bytes: int = 0

    def setup(self, sample_rate: int, channels: int, feed_threshold: int):
        try:
            sd = _import_sounddevice()
        except ImportError as e:
            raise AudioPlaybackError("sounddevice is not installed", original_error=e) from e

        self._channels = channels
        self._feed_threshold_frames = feed_threshold
        self._ring = create_playback_ring_buffer(sample_rate * channels, self._buffer_seconds)

        try:
            self._stream = sd.RawOutputStream(
                samplerate=sample_rate,
                blocksize=PLAYBACK_BLOCK_FRAMES,
                dtype="int16",
                channels=channels,
                device=self._device,
                callback=self._output_callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            raise AudioPlaybackError.from_exception(e) from e

        logger.info(
            f"Audio sink opened (rate={sample_rate}, channels={channels}, "
            f"device={self._device if self._device is not None else 'default'})"
        )

    def set_demand_callback(self, callback: DemandCallback):
        self._demand_callback = callback

    def feed(self, pcm: bytes):
        if self._ring is None:
            raise AudioPlaybackError("Audio sink is not set up")
        if not self._ring.write(pcm):
            self._dropped_bytes += len(pcm)
            logger.warning(f"Playback ring buffer overflow, dropped {len(pcm)} bytes")

    @property
    def buffered_frames(self) -> int:
        if self._ring is None:
            return 0
        return self._ring.available_read // (BYTES_PER_SAMPLE * self._channels)

    def _output_callback(self, outdata, frames, time_info, status):
        """PortAudio output callback. Runs on the audio thread; must not block."""
        if status:
            self._status_errors += 1

        wanted = len(outdata)
        data = self._ring.read_up_to(wanted) if self._ring is not None else b""
        outdata[:len(data)] = data
        if len(data) < wanted:
            # Underrun: pad with silence
            outdata[len(data):] = bytes(wanted - len(data))

        remaining = self.buffered_frames
        callback = self._demand_callback
        if callback is not None and remaining < self._feed_threshold_frames:
            callback(remaining)

    def release(self):
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception as e:
                raise AudioPlaybackError.from_exception(e) from e
        if self._ring is not None:
            self._ring.clear()
        logger.info("Audio sink released")

    def get_stats(self) -> dict:
        return {
            "status_errors": self._status_errors,
            "dropped_bytes": self._dropped_bytes,
            "ring": self._ring.get_stats() if self._ring is not None else None,
        }


class SoundDeviceMicrophone:
    """Microphone backed by sounddevice.RawInputStream."""

    def __init__(self, audio_config: Optional[AudioConfig] = None, device: Optional[int] = None):
        self._config = audio_config or AudioConfig()
        self._device = device if device is not None else _env_device("LIVESESSION_CAPTURE_DEVICE")
        self._stream = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._running = False
        self._level: float = 0.0

        # Metrics
        self._chunks_captured: int = 0
        self._chunks_dropped: int = 0
        self._status_errors: int = 0

    async def start(self):
        try:
            sd = _import_sounddevice()
        except ImportError as e:
            raise AudioRecordingError("sounddevice is not installed", original_error=e) from e

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=CAPTURE_QUEUE_MAXSIZE)
        blocksize = self._config.capture_chunk_bytes // (self._config.capture_bit_depth // 8)

        try:
            self._stream = sd.RawInputStream(
                samplerate=self._config.capture_sample_rate,
                blocksize=blocksize,
                dtype="int16",
                channels=self._config.capture_channels,
                device=self._device,
                callback=self._input_callback,
            )
            self._stream.start()
        except Exception as e:
            self._stream = None
            if "permission" in str(e).lower():
                raise PermissionDeniedError("Microphone") from e
            raise AudioRecordingError.from_exception(e) from e

        self._running = True
        logger.info(
            f"Microphone opened (rate={self._config.capture_sample_rate}, blocksize={blocksize})"
        )

    def _input_callback(self, indata, frames, time_info, status):
        """PortAudio input callback. Runs on the audio thread."""
        if status:
            self._status_errors += 1
        if self._loop is None or not self._running:
            return
        try:
            self._loop.call_soon_threadsafe(self._deliver, bytes(indata))
        except RuntimeError:
            # Loop already closed
            pass

    def _deliver(self, chunk: Optional[bytes]):
        # Drop-oldest on full
        if self._queue.full():
            try:
                self._queue.get_nowait()
                self._chunks_dropped += 1
            except asyncio.QueueEmpty:
                pass
        self._queue.put_nowait(chunk)
        if chunk is not None:
            self._chunks_captured += 1
            self._level = pcm_level(chunk)

    @property
    def level(self) -> float:
        """RMS level of the most recent captured chunk."""
        return self._level

    async def chunks(self) -> AsyncIterator[bytes]:
        if self._queue is None:
            return
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk

    async def stop(self):
        if not self._running:
            return
        self._running = False

        stream, self._stream = self._stream, None
        try:
            if stream is not None:
                stream.stop()
                stream.close()
        except Exception as e:
            raise AudioRecordingError.from_exception(e) from e
        finally:
            # Ends chunks()
            self._deliver(None)
        logger.info(f"Microphone closed ({self._chunks_captured} chunks captured)")

    def get_stats(self) -> dict:
        return {
            "chunks_captured": self._chunks_captured,
            "chunks_dropped": self._chunks_dropped,
            "status_errors": self._status_errors,
            "level": round(self._level, 3),
        }


__all__ = [
    "PLAYBACK_BLOCK_FRAMES",
    "pcm_level",
    "SoundDeviceAudioSink",
    "SoundDeviceMicrophone",
]
