"""Shared pytest fixtures and fake devices."""

from __future__ import annotations

import asyncio
import io
import wave

import numpy as np
import pytest

from pcmkit.device import DeviceState, StoppedEvent
from pcmkit.formats import AudioFormat
from pcmkit.sources import PcmSource

# 8 kHz mono 16-bit: 16000 bytes per second, 2 bytes per frame
MONO_8K = AudioFormat(sample_rate=8000, bit_depth=16, channels=1)


class FakePlaybackDevice:
    """In-memory PlaybackDevice; tests drive its callback thread by hand."""

    def __init__(self) -> None:
        self.state = DeviceState.STOPPED
        self.volume = 1.0
        self.provider = None
        self.calls: list[str] = []
        self.dispose_count = 0
        self.play_error: BaseException | None = None  # raised once by the next play()
        self._stopped_listener = None

    def set_stopped_listener(self, listener) -> None:
        self._stopped_listener = listener

    def init(self, provider) -> None:
        self.provider = provider
        self.calls.append("init")

    def play(self) -> None:
        if self.state is DeviceState.PLAYING:
            return
        if self.play_error is not None:
            error, self.play_error = self.play_error, None
            raise error
        self.calls.append("play")
        self.state = DeviceState.PLAYING

    def pause(self) -> None:
        if self.state is not DeviceState.PLAYING:
            return
        self.calls.append("pause")
        self.state = DeviceState.PAUSED

    def stop(self) -> None:
        self.calls.append("stop")
        previous = self.state
        self.state = DeviceState.STOPPED
        if previous is not DeviceState.STOPPED:
            self._notify(StoppedEvent())

    def dispose(self) -> None:
        self.dispose_count += 1
        self.state = DeviceState.STOPPED

    def pull(self, num_bytes: int) -> bytes:
        """Read from the provider the way the device callback would."""
        return self.provider.read(num_bytes)

    def finish(self, exception: BaseException | None = None) -> None:
        """Report that the stream ended on its own."""
        self.state = DeviceState.STOPPED
        self._notify(StoppedEvent(exception=exception))

    def _notify(self, event: StoppedEvent) -> None:
        if self._stopped_listener is not None:
            self._stopped_listener(event)


class FakeCaptureDevice:
    """In-memory CaptureDevice; ``emit`` plays the role of the driver callback."""

    def __init__(self) -> None:
        self.format: AudioFormat | None = None
        self.recording = False
        self.calls: list[str] = []
        self.dispose_count = 0
        self._data_listener = None
        self._stopped_listener = None

    def set_data_listener(self, listener) -> None:
        self._data_listener = listener

    def set_stopped_listener(self, listener) -> None:
        self._stopped_listener = listener

    def init(self, audio_format: AudioFormat) -> None:
        self.format = audio_format
        self.calls.append("init")

    def start_recording(self) -> None:
        self.calls.append("start_recording")
        self.recording = True

    def stop_recording(self) -> None:
        self.calls.append("stop_recording")
        self.recording = False

    def dispose(self) -> None:
        self.dispose_count += 1

    def emit(self, chunk: bytes) -> None:
        if self._data_listener is not None:
            self._data_listener(chunk)

    def fail(self, exception: BaseException) -> None:
        self.recording = False
        if self._stopped_listener is not None:
            self._stopped_listener(StoppedEvent(exception=exception))


def make_wav(
    seconds: float, *, sample_rate: int = 8000, channels: int = 1
) -> tuple[bytes, bytes]:
    """Build a 16-bit WAV file; returns (wav_bytes, pcm_bytes)."""
    frames = int(seconds * sample_rate)
    ramp = (np.arange(frames * channels) % 2000 - 1000).astype("<i2")
    pcm = ramp.tobytes()
    out = io.BytesIO()
    with wave.open(out, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return out.getvalue(), pcm


async def drain_loop(iterations: int = 3) -> None:
    """Let callbacks scheduled with call_soon_threadsafe run."""
    for _ in range(iterations):
        await asyncio.sleep(0)


@pytest.fixture
def playback_device() -> FakePlaybackDevice:
    return FakePlaybackDevice()


@pytest.fixture
def capture_device() -> FakeCaptureDevice:
    return FakeCaptureDevice()


@pytest.fixture
def make_source():
    """Factory for silent PcmSources of a given duration in MONO_8K."""

    def _make(seconds: float = 2.0, audio_format: AudioFormat = MONO_8K) -> PcmSource:
        return PcmSource(bytes(int(seconds * audio_format.bytes_per_second)), audio_format)

    return _make
