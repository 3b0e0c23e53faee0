"""Playback position tracking and loop handling for source-driven playback.

Position is never stored here; it is always read back from the source's byte
offset, so the timer, the device clock and the stream cannot drift apart.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from pcmkit.device import DeviceState
from pcmkit.errors import InvalidArgumentError

if TYPE_CHECKING:
    from pcmkit.device import PlaybackDevice, StoppedEvent
    from pcmkit.sources import SampleSource

logger = logging.getLogger(__name__)

PositionListener = Callable[[float], None]

DEFAULT_INTERVAL: Final[float] = 0.1
"""Seconds between position notifications."""


class PositionTracker:
    """
    Stopped/playing/paused state machine around a seekable source.

    All methods must be called on the event loop thread; the device's
    completion notification is expected to be marshalled there first.

    Attributes:
        is_loop: Restart from the beginning when the stream completes.
    """

    def __init__(
        self,
        source: SampleSource,
        device: PlaybackDevice,
        loop: asyncio.AbstractEventLoop,
        *,
        interval: float = DEFAULT_INTERVAL,
        is_loop: bool = False,
    ) -> None:
        if interval <= 0:
            raise InvalidArgumentError(f"interval must be positive, got {interval}")
        self._source = source
        self._device = device
        self._loop = loop
        self._interval = interval
        self.is_loop = is_loop
        self._state = DeviceState.STOPPED
        self._timer: asyncio.TimerHandle | None = None
        self._listeners: list[PositionListener] = []

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def current_position(self) -> float:
        """Elapsed playback time in seconds."""
        return self._source.current_time()

    @property
    def duration(self) -> float:
        """Total length of the source in seconds."""
        return self._source.total_time()

    def add_listener(self, listener: PositionListener) -> Callable[[], None]:
        """Add a position listener. Returns unsubscribe function."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def play(self) -> None:
        """Start or resume playback; no-op when already playing."""
        if self._state is DeviceState.PLAYING:
            return
        previous = self._state
        self._device.play()
        self._state = DeviceState.PLAYING
        self._start_timer()
        logger.debug(
            "Playback %s at %.3fs",
            "resumed" if previous is DeviceState.PAUSED else "started",
            self.current_position,
        )

    def pause(self) -> None:
        """Pause playback, keeping the position."""
        if self._state is not DeviceState.PLAYING:
            return
        self._state = DeviceState.PAUSED
        self._cancel_timer()
        self._device.pause()

    def stop(self) -> None:
        """Stop playback and rewind to the beginning."""
        previous = self._state
        self._state = DeviceState.STOPPED
        self._cancel_timer()
        if previous is not DeviceState.STOPPED:
            self._device.stop()
        self.seek(0)

    def seek(self, seconds: float) -> None:
        """
        Jump to an absolute time.

        The target is converted to a byte offset, clamped to the source length,
        aligned down to a whole frame and applied directly to the source.
        """
        if not math.isfinite(seconds):
            raise InvalidArgumentError(f"Seek target must be finite, got {seconds}")
        byte_offset = int(seconds * self._source.bytes_per_second)
        byte_offset = max(0, min(byte_offset, self._source.length_in_bytes))
        byte_offset = self._source.format.align(byte_offset)
        self._source.set_position(byte_offset)
        logger.debug("Seeked to %.3fs (byte %d)", seconds, byte_offset)

    def fast_forward(self, seconds: float) -> None:
        """Move forward by seconds, stopping at the end."""
        self._seek_relative(self._check_step(seconds))

    def rewind(self, seconds: float) -> None:
        """Move back by seconds, stopping at the beginning."""
        self._seek_relative(-self._check_step(seconds))

    def handle_stream_end(self, event: StoppedEvent) -> bool:
        """React to the device reporting that the stream stopped.

        A completed looping stream restarts from zero; anything else ends in
        the stopped state.

        Returns:
            True if playback was restarted.
        """
        if self._state is not DeviceState.PLAYING:
            return False
        if event.exception is None and self.is_loop and self.current_position >= self.duration:
            logger.info("End of stream reached; looping")
            self.seek(0)
            try:
                self._device.play()
            except Exception:
                logger.exception("Failed to restart looping playback")
                self._state = DeviceState.STOPPED
                self._cancel_timer()
                return False
            return True
        if event.exception is not None:
            logger.warning("Playback stopped with error: %s", event.exception)
        self.stop()
        return False

    def close(self) -> None:
        """Cancel the timer and drop listeners."""
        self._cancel_timer()
        self._state = DeviceState.STOPPED
        self._listeners.clear()

    def _check_step(self, seconds: float) -> float:
        if not math.isfinite(seconds) or seconds < 0:
            raise InvalidArgumentError(f"Step must be a non-negative number, got {seconds}")
        return seconds

    def _seek_relative(self, delta: float) -> None:
        target = max(0.0, min(self.current_position + delta, self.duration))
        self.seek(target)

    def _start_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._loop.call_later(self._interval, self._tick)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self) -> None:
        self._timer = None
        if self._state is not DeviceState.PLAYING:
            return
        position = self.current_position
        for listener in list(self._listeners):
            try:
                listener(position)
            except Exception:
                logger.exception("Error in position listener")
        if self._state is DeviceState.PLAYING and self._timer is None:
            self._timer = self._loop.call_later(self._interval, self._tick)
