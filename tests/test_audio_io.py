"""
Unit tests for the sounddevice adapters, with PortAudio replaced by fakes.
"""

import asyncio
import types

import numpy as np
import pytest

from livesession.core import audio_io
from livesession.core.audio_io import SoundDeviceAudioSink, SoundDeviceMicrophone, pcm_level
from livesession.core.errors import AudioPlaybackError, AudioRecordingError, PermissionDeniedError
from livesession.testing.synthetic_audio import SyntheticAudio, capture_chunks


class FakeStream:
    """Stands in for sounddevice.RawOutputStream / RawInputStream."""

    instances = []

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.callback = kwargs["callback"]
        self.started = False
        self.closed = False
        FakeStream.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class DeniedStream(FakeStream):

    def start(self):
        raise OSError("Microphone permission denied by the OS")


@pytest.fixture
def fake_sd(monkeypatch):
    FakeStream.instances = []
    module = types.SimpleNamespace(RawOutputStream=FakeStream, RawInputStream=FakeStream)
    monkeypatch.setattr(audio_io, "_import_sounddevice", lambda: module)
    return module


# ── pcm_level ──

def test_pcm_level_silence_and_empty():
    assert pcm_level(b"") == 0.0
    assert pcm_level(b"\x00") == 0.0
    assert pcm_level(SyntheticAudio().silence(40)[0]) == 0.0


def test_pcm_level_full_scale():
    chunk = np.full(160, -32768, dtype="<i2").tobytes()
    assert pcm_level(chunk) == 1.0


def test_pcm_level_tone():
    level = pcm_level(capture_chunks(40)[0])
    # Sine at half amplitude: RMS = 0.5 / sqrt(2)
    assert level == pytest.approx(0.3535, abs=0.01)


def test_pcm_level_noise_is_quiet():
    noise = SyntheticAudio(seed=7).noise(40, amplitude=0.01)[0]
    assert 0.0 < pcm_level(noise) < 0.05


# ── SoundDeviceAudioSink ──

def test_sink_setup_opens_stream(fake_sd):
    sink = SoundDeviceAudioSink(device=3)
    sink.setup(24000, 1, 4800)
    stream = FakeStream.instances[0]
    assert stream.started
    assert stream.kwargs["samplerate"] == 24000
    assert stream.kwargs["device"] == 3
    assert stream.kwargs["dtype"] == "int16"


def test_sink_output_callback_reads_and_requests_more(fake_sd):
    sink = SoundDeviceAudioSink()
    sink.setup(24000, 1, 4800)
    demands = []
    sink.set_demand_callback(demands.append)

    sink.feed(b"\x01\x02" * 100)
    assert sink.buffered_frames == 100

    outdata = bytearray(400)
    sink._output_callback(outdata, 200, None, None)

    assert bytes(outdata[:200]) == b"\x01\x02" * 100
    assert bytes(outdata[200:]) == bytes(200)  # padded with silence
    assert demands == [0]
    assert sink.get_stats()["ring"]["underrun_count"] == 1


def test_sink_no_demand_above_threshold(fake_sd):
    sink = SoundDeviceAudioSink()
    sink.setup(24000, 1, 10)
    demands = []
    sink.set_demand_callback(demands.append)
    sink.feed(bytes(200))

    sink._output_callback(bytearray(40), 20, None, None)
    assert demands == []
    assert sink.buffered_frames == 80


def test_sink_overflow_counts_dropped_bytes(fake_sd):
    sink = SoundDeviceAudioSink(buffer_seconds=0.01)  # 480 bytes at 24kHz
    sink.setup(24000, 1, 4800)
    sink.feed(bytes(1000))
    assert sink.get_stats()["dropped_bytes"] == 1000


def test_sink_feed_before_setup():
    with pytest.raises(AudioPlaybackError):
        SoundDeviceAudioSink().feed(b"\x00\x00")


def test_sink_release_closes_stream(fake_sd):
    sink = SoundDeviceAudioSink()
    sink.setup(24000, 1, 4800)
    sink.feed(bytes(100))
    sink.release()
    assert FakeStream.instances[0].closed
    assert sink.buffered_frames == 0


def test_sink_without_sounddevice(monkeypatch):
    def missing():
        raise ImportError("No module named 'sounddevice'")

    monkeypatch.setattr(audio_io, "_import_sounddevice", missing)
    with pytest.raises(AudioPlaybackError):
        SoundDeviceAudioSink().setup(24000, 1, 4800)


def test_device_from_environment(monkeypatch):
    monkeypatch.setenv("LIVESESSION_PLAYBACK_DEVICE", "5")
    monkeypatch.setenv("LIVESESSION_CAPTURE_DEVICE", "not-a-number")
    assert SoundDeviceAudioSink()._device == 5
    assert SoundDeviceMicrophone()._device is None


# ── SoundDeviceMicrophone ──

@pytest.mark.asyncio
async def test_microphone_delivers_chunks(fake_sd):
    mic = SoundDeviceMicrophone()
    await mic.start()
    stream = FakeStream.instances[0]
    assert stream.kwargs["samplerate"] == 16000
    assert stream.kwargs["blocksize"] == 640

    stream.callback(b"\x01\x00" * 640, 640, None, None)
    stream.callback(b"\x02\x00" * 640, 640, None, None)
    await asyncio.sleep(0)
    await mic.stop()

    received = [chunk async for chunk in mic.chunks()]
    assert received == [b"\x01\x00" * 640, b"\x02\x00" * 640]
    assert stream.closed
    assert mic.get_stats()["chunks_captured"] == 2
    assert mic.level == pytest.approx(2 / 32768)


@pytest.mark.asyncio
async def test_microphone_drops_oldest_when_full(fake_sd):
    mic = SoundDeviceMicrophone()
    await mic.start()
    for i in range(audio_io.CAPTURE_QUEUE_MAXSIZE + 2):
        mic._deliver(bytes([i, 0]))
    assert mic.get_stats()["chunks_dropped"] == 2
    await mic.stop()


@pytest.mark.asyncio
async def test_microphone_permission_denied(monkeypatch):
    module = types.SimpleNamespace(RawInputStream=DeniedStream)
    monkeypatch.setattr(audio_io, "_import_sounddevice", lambda: module)
    with pytest.raises(PermissionDeniedError):
        await SoundDeviceMicrophone().start()


@pytest.mark.asyncio
async def test_microphone_without_sounddevice(monkeypatch):
    def missing():
        raise ImportError("No module named 'sounddevice'")

    monkeypatch.setattr(audio_io, "_import_sounddevice", missing)
    with pytest.raises(AudioRecordingError):
        await SoundDeviceMicrophone().start()
