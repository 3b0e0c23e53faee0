"""Tests for the playback position and loop state machine."""

import asyncio

import pytest
from conftest import MONO_8K, FakePlaybackDevice

from pcmkit.device import DeviceState, StoppedEvent
from pcmkit.errors import InvalidArgumentError, UnavailableError
from pcmkit.formats import AudioFormat
from pcmkit.position import PositionTracker
from pcmkit.sources import PcmSource

FRAME_SECONDS = 1 / MONO_8K.sample_rate


@pytest.fixture
async def tracker(make_source, playback_device):
    source = make_source(2.0)
    playback_device.init(source)
    tracker = PositionTracker(
        source, playback_device, asyncio.get_running_loop(), interval=0.01
    )
    yield tracker
    tracker.close()


async def test_play_pause_resume_stop(tracker, playback_device):
    tracker.play()
    assert tracker.state is DeviceState.PLAYING
    playback_device.pull(16_000)
    tracker.pause()
    assert tracker.state is DeviceState.PAUSED
    assert tracker.current_position == pytest.approx(1.0)

    tracker.play()
    assert tracker.current_position == pytest.approx(1.0)  # resume does not seek

    tracker.stop()
    assert tracker.state is DeviceState.STOPPED
    assert tracker.current_position == 0.0
    assert playback_device.calls == ["init", "play", "pause", "play", "stop"]


async def test_play_is_idempotent(tracker, playback_device):
    tracker.play()
    tracker.play()
    assert playback_device.calls.count("play") == 1


async def test_pause_while_stopped_is_noop(tracker, playback_device):
    tracker.pause()
    assert tracker.state is DeviceState.STOPPED
    assert "pause" not in playback_device.calls


@pytest.mark.parametrize("seconds", [0.0, 0.25, 0.5001, 1.333, 2.0])
async def test_seek_lands_within_one_frame(tracker, seconds):
    tracker.seek(seconds)
    assert abs(tracker.current_position - seconds) <= FRAME_SECONDS


async def test_seek_clamps_to_stream(tracker):
    tracker.seek(-5)
    assert tracker.current_position == 0.0
    tracker.seek(tracker.duration + 100)
    assert tracker.current_position == pytest.approx(tracker.duration)


async def test_seek_rejects_non_finite(tracker):
    with pytest.raises(InvalidArgumentError):
        tracker.seek(float("nan"))


async def test_fast_forward_and_rewind_clamp(tracker):
    tracker.fast_forward(0.5)
    assert tracker.current_position == pytest.approx(0.5)
    tracker.fast_forward(10)
    assert tracker.current_position == pytest.approx(2.0)
    tracker.rewind(0.75)
    assert tracker.current_position == pytest.approx(1.25)
    tracker.rewind(10)
    assert tracker.current_position == 0.0


async def test_negative_step_rejected(tracker):
    with pytest.raises(InvalidArgumentError):
        tracker.fast_forward(-1)
    with pytest.raises(InvalidArgumentError):
        tracker.rewind(-1)


async def test_position_notifications_while_playing(tracker, playback_device):
    positions: list[float] = []
    tracker.add_listener(positions.append)
    tracker.play()
    for _ in range(4):
        playback_device.pull(800)
        await asyncio.sleep(0.02)
    tracker.pause()
    count = len(positions)
    await asyncio.sleep(0.05)

    assert count >= 2
    assert len(positions) == count  # paused: no more ticks
    assert positions == sorted(positions)
    assert positions[-1] <= tracker.current_position


async def test_failing_listener_does_not_stop_timer(tracker):
    calls: list[float] = []

    def broken(_position: float) -> None:
        raise RuntimeError("listener bug")

    tracker.add_listener(broken)
    tracker.add_listener(calls.append)
    tracker.play()
    await asyncio.sleep(0.05)
    assert len(calls) >= 2


async def test_unsubscribe_stops_notifications(tracker):
    calls: list[float] = []
    unsubscribe = tracker.add_listener(calls.append)
    unsubscribe()
    tracker.play()
    await asyncio.sleep(0.03)
    assert calls == []


async def test_stream_end_with_loop_restarts(tracker, playback_device):
    tracker.is_loop = True
    tracker.play()
    playback_device.pull(32_000)
    playback_device.finish()

    assert tracker.handle_stream_end(StoppedEvent()) is True
    assert tracker.state is DeviceState.PLAYING
    assert tracker.current_position == 0.0
    assert playback_device.calls == ["init", "play", "play"]


async def test_stream_end_without_loop_stops(tracker, playback_device):
    tracker.play()
    playback_device.pull(32_000)
    playback_device.finish()

    assert tracker.handle_stream_end(StoppedEvent()) is False
    assert tracker.state is DeviceState.STOPPED
    assert playback_device.calls[-1] == "stop"


async def test_stream_error_stops_even_when_looping(tracker, playback_device):
    tracker.is_loop = True
    tracker.play()
    playback_device.pull(32_000)
    playback_device.finish(RuntimeError("device lost"))

    assert tracker.handle_stream_end(StoppedEvent(RuntimeError("device lost"))) is False
    assert tracker.state is DeviceState.STOPPED


async def test_stream_end_ignored_when_not_playing(tracker):
    assert tracker.handle_stream_end(StoppedEvent()) is False
    assert tracker.state is DeviceState.STOPPED


async def test_interval_must_be_positive(make_source):
    with pytest.raises(InvalidArgumentError):
        PositionTracker(
            make_source(), FakePlaybackDevice(), asyncio.get_running_loop(), interval=0
        )


async def test_failed_device_start_leaves_tracker_stopped(tracker, playback_device):
    playback_device.play_error = UnavailableError("device busy")
    with pytest.raises(UnavailableError):
        tracker.play()
    assert tracker.state is DeviceState.STOPPED

    tracker.play()
    assert tracker.state is DeviceState.PLAYING
    assert playback_device.calls == ["init", "play"]


async def test_failed_loop_restart_stops(tracker, playback_device):
    tracker.is_loop = True
    tracker.play()
    playback_device.pull(32_000)
    playback_device.finish()
    playback_device.play_error = UnavailableError("device lost")

    assert tracker.handle_stream_end(StoppedEvent()) is False
    assert tracker.state is DeviceState.STOPPED

    tracker.play()
    assert tracker.state is DeviceState.PLAYING


class OffsetRecordingSource(PcmSource):
    """PcmSource that remembers every offset it is asked to move to."""

    def __init__(self, data: bytes, audio_format: AudioFormat) -> None:
        super().__init__(data, audio_format)
        self.offsets: list[int] = []

    def set_position(self, byte_offset: int) -> None:
        self.offsets.append(byte_offset)
        super().set_position(byte_offset)


async def test_seek_passes_frame_aligned_offsets(playback_device):
    stereo = AudioFormat(sample_rate=8000, bit_depth=16, channels=2)
    source = OffsetRecordingSource(bytes(stereo.bytes_per_second), stereo)
    playback_device.init(source)
    tracker = PositionTracker(source, playback_device, asyncio.get_running_loop())

    tracker.seek(0.5000625)  # 16002 bytes, half a frame past 16000
    tracker.fast_forward(0.00003)
    tracker.seek(5.0)

    assert source.offsets[0] == 16_000
    assert all(offset % stereo.bytes_per_frame == 0 for offset in source.offsets)
    assert source.offsets[-1] == stereo.bytes_per_second
    tracker.close()
