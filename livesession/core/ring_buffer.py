"""
SPSC (Single-Producer, Single-Consumer) Ring Buffer

Sits between AudioSink.feed() on the event loop and the PortAudio output
callback thread. The producer only advances the write index and the consumer
only advances the read index, so no lock is taken on the audio thread.

Playback ring: 2 seconds at 24kHz 16-bit mono = 96,000 bytes
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)

BYTES_PER_SAMPLE = 2


class SPSCRingBuffer:
    """
    Bytes ring buffer for one producer thread and one consumer thread.

    Invariant: (write_idx - read_idx) mod capacity == unread bytes.
    One slot is kept free to tell full from empty.
    """

    def __init__(self, capacity_bytes: int):
        if capacity_bytes < 2:
            raise ValueError("capacity_bytes must be at least 2")
        self._buf = bytearray(capacity_bytes)
        self._capacity = capacity_bytes
        self._write_idx: int = 0  # producer only
        self._read_idx: int = 0   # consumer only

        # Metrics
        self._total_written: int = 0
        self._total_read: int = 0
        self._overflow_count: int = 0
        self._underrun_count: int = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def available_read(self) -> int:
        return (self._write_idx - self._read_idx) % self._capacity

    @property
    def available_write(self) -> int:
        return (self._capacity - 1) - self.available_read

    @property
    def overflow_count(self) -> int:
        return self._overflow_count

    @property
    def underrun_count(self) -> int:
        return self._underrun_count

    def write(self, data: bytes) -> bool:
        """
        Append `data` (producer side).

        Returns:
            False if there is not enough room; nothing is written then.
        """
        size = len(data)
        if size > self.available_write:
            self._overflow_count += 1
            return False

        start = self._write_idx
        tail = min(size, self._capacity - start)
        self._buf[start:start + tail] = data[:tail]
        if tail < size:
            self._buf[0:size - tail] = data[tail:]

        self._write_idx = (start + size) % self._capacity
        self._total_written += size
        return True

    def _copy_out(self, size: int) -> bytes:
        start = self._read_idx
        tail = min(size, self._capacity - start)
        if tail == size:
            return bytes(self._buf[start:start + size])
        return bytes(self._buf[start:]) + bytes(self._buf[:size - tail])

    def read(self, size: int) -> Optional[bytes]:
        """
        Consume exactly `size` bytes (consumer side).

        Returns:
            None on underrun; nothing is consumed then.
        """
        if size > self.available_read:
            self._underrun_count += 1
            return None
        data = self._copy_out(size)
        self._read_idx = (self._read_idx + size) % self._capacity
        self._total_read += size
        return data

    def read_up_to(self, size: int) -> bytes:
        """
        Consume at most `size` bytes, as many as are available.

        A short (or empty) result counts as an underrun. Used by the output
        callback, which pads the remainder with silence.
        """
        count = min(size, self.available_read)
        if count < size:
            self._underrun_count += 1
        if count == 0:
            return b""
        data = self._copy_out(count)
        self._read_idx = (self._read_idx + count) % self._capacity
        self._total_read += count
        return data

    def clear(self):
        """Drop unread data (consumer side)."""
        self._read_idx = self._write_idx

    def get_stats(self) -> dict:
        return {
            "capacity": self._capacity,
            "available_read": self.available_read,
            "occupancy_pct": (self.available_read / self._capacity) * 100,
            "total_written": self._total_written,
            "total_read": self._total_read,
            "overflow_count": self._overflow_count,
            "underrun_count": self._underrun_count,
        }


def create_playback_ring_buffer(sample_rate: int = 24000, duration_seconds: float = 2.0) -> SPSCRingBuffer:
    """Ring buffer holding `duration_seconds` of 16-bit mono PCM."""
    return SPSCRingBuffer(int(sample_rate * duration_seconds * BYTES_PER_SAMPLE))


__all__ = [
    "BYTES_PER_SAMPLE",
    "SPSCRingBuffer",
    "create_playback_ring_buffer",
]
