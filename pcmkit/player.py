"""Audio playback sessions.

An AudioPlayer runs in one of two modes:

- buffer mode: the application feeds raw PCM with ``add_audio_data`` into a
  bounded ring buffer that the device drains on its own clock;
- source mode: the device reads a decoded, seekable source directly and a
  PositionTracker reports elapsed time, seeks, and loops at end of stream.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Final

import numpy as np

from pcmkit.device import (
    DeviceState,
    PlaybackDevice,
    SoundDeviceOutput,
    StoppedEvent,
    StoppedListener,
    resolve_device,
)
from pcmkit.errors import InvalidArgumentError, UnsupportedOperationError
from pcmkit.position import DEFAULT_INTERVAL, PositionListener, PositionTracker
from pcmkit.ring_buffer import BytesLike, SampleRingBuffer
from pcmkit.session import Session, SessionState
from pcmkit.settings import AudioSettings, PlayerSettings
from pcmkit.sources import SampleSource, open_source

if TYPE_CHECKING:
    from pcmkit.formats import AudioFormat

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_DURATION_MS: Final[int] = 2000

_SESSION_STATES: Final[dict[DeviceState, SessionState]] = {
    DeviceState.PLAYING: SessionState.PLAYING,
    DeviceState.PAUSED: SessionState.PAUSED,
    DeviceState.STOPPED: SessionState.STOPPED,
}


class AudioPlayer(Session):
    """
    Playback session owning exactly one device and one sample provider.

    Use ``with_format`` or ``from_settings`` for buffer mode and
    ``from_source`` or ``open_player`` for source mode.
    """

    _BUFFER_SLACK_MS: Final[int] = 1000
    """Extra ring buffer room when sized from explicit format parameters."""

    def __init__(
        self,
        device: PlaybackDevice,
        *,
        buffer: SampleRingBuffer | None = None,
        source: SampleSource | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
        is_loop: bool = False,
        position_interval: float = DEFAULT_INTERVAL,
    ) -> None:
        """
        Initialize the player around exactly one of buffer or source.

        Args:
            device: Output device; the player takes ownership of it.
            buffer: Ring buffer for buffer mode.
            source: Seekable source for source mode.
            loop: Event loop for the position timer and for delivering device
                notifications. Required in source mode; defaults to the
                running loop.
            is_loop: Restart a source from the beginning when it completes.
            position_interval: Seconds between position notifications.
        """
        super().__init__()
        if (buffer is None) == (source is None):
            raise InvalidArgumentError("Exactly one of buffer or source must be given")

        self._device = device
        self._buffer = buffer
        self._source = source
        self._tracker: PositionTracker | None = None
        self._started = False
        self._stopped_listeners: list[StoppedListener] = []

        if source is not None:
            if loop is None:
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError as err:
                    raise InvalidArgumentError("Source playback needs an event loop") from err
            self._tracker = PositionTracker(
                source, device, loop, interval=position_interval, is_loop=is_loop
            )
        self._loop = loop

        provider = buffer if buffer is not None else source
        assert provider is not None
        audio_format = provider.format
        if audio_format is None:
            raise InvalidArgumentError("Sample buffer has no audio format")
        self._format = audio_format

        device.set_stopped_listener(self._on_device_stopped)
        device.init(provider)

    @classmethod
    def with_format(
        cls,
        audio_format: AudioFormat,
        device: PlaybackDevice,
        *,
        buffer_duration_ms: int = DEFAULT_BUFFER_DURATION_MS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> AudioPlayer:
        """Create a buffer-mode player.

        The ring buffer holds buffer_duration_ms plus one second of audio.
        """
        buffer = SampleRingBuffer.for_format(
            audio_format, buffer_duration_ms + cls._BUFFER_SLACK_MS
        )
        return cls(device, buffer=buffer, loop=loop)

    @classmethod
    def from_settings(
        cls,
        settings: AudioSettings,
        device: PlaybackDevice,
        *,
        buffer_duration_ms: int = DEFAULT_BUFFER_DURATION_MS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> AudioPlayer:
        """Create a buffer-mode player holding exactly buffer_duration_ms of audio."""
        buffer = SampleRingBuffer.for_format(settings.to_format(), buffer_duration_ms)
        return cls(device, buffer=buffer, loop=loop)

    @classmethod
    def from_source(
        cls,
        source: SampleSource,
        device: PlaybackDevice,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
        is_loop: bool = False,
        position_interval: float = DEFAULT_INTERVAL,
    ) -> AudioPlayer:
        """Create a source-mode player."""
        return cls(
            device,
            source=source,
            loop=loop,
            is_loop=is_loop,
            position_interval=position_interval,
        )

    # Properties

    @property
    def format(self) -> AudioFormat:
        self._check_disposed()
        return self._format

    @property
    def has_source(self) -> bool:
        """True in source mode."""
        self._check_disposed()
        return self._source is not None

    @property
    def state(self) -> SessionState:
        """Current session state, derived from the device or tracker."""
        self._check_disposed()
        if not self._started:
            return SessionState.IDLE
        device_state = self._tracker.state if self._tracker is not None else self._device.state
        return _SESSION_STATES[device_state]

    @property
    def volume(self) -> float:
        """Device volume between 0.0 and 1.0."""
        self._check_disposed()
        return self._device.volume

    @volume.setter
    def volume(self, value: float) -> None:
        self._check_disposed()
        self._device.volume = value

    @property
    def buffered_bytes(self) -> int:
        """Bytes waiting in the ring buffer; always 0 in source mode."""
        self._check_disposed()
        return self._buffer.buffered_bytes if self._buffer is not None else 0

    @property
    def current_position(self) -> float:
        """Elapsed seconds; always 0.0 in buffer mode."""
        self._check_disposed()
        return self._tracker.current_position if self._tracker is not None else 0.0

    @property
    def duration(self) -> float:
        """Source length in seconds; always 0.0 in buffer mode."""
        self._check_disposed()
        return self._tracker.duration if self._tracker is not None else 0.0

    @property
    def is_loop(self) -> bool:
        self._check_disposed()
        return self._tracker is not None and self._tracker.is_loop

    @is_loop.setter
    def is_loop(self, value: bool) -> None:
        self._require_tracker().is_loop = value

    # Listeners

    def add_position_listener(self, listener: PositionListener) -> Callable[[], None]:
        """Add a position listener (source mode only). Returns unsubscribe function."""
        return self._require_tracker().add_listener(listener)

    def add_stopped_listener(self, listener: StoppedListener) -> Callable[[], None]:
        """Add a playback stopped listener. Returns unsubscribe function."""
        self._check_disposed()
        self._stopped_listeners.append(listener)
        return lambda: self._stopped_listeners.remove(listener)

    # Transport

    def play(self) -> None:
        """Start or resume playback; no-op when already playing."""
        with self._transition_lock:
            with self._lock:
                self._check_disposed()
                started = self._started
                self._started = True
            try:
                if self._tracker is not None:
                    self._tracker.play()
                else:
                    self._device.play()
            except Exception:
                with self._lock:
                    self._started = started
                raise

    async def play_after(self, delay_ms: int) -> None:
        """Wait delay_ms milliseconds, then play; no-op when already playing."""
        self._check_disposed()
        if delay_ms < 0:
            raise InvalidArgumentError(f"delay_ms must not be negative, got {delay_ms}")
        if self.state is SessionState.PLAYING:
            return
        await asyncio.sleep(delay_ms / 1000)
        self.play()

    def pause(self) -> None:
        """Pause playback; no-op unless playing."""
        with self._transition_lock:
            self._check_disposed()
            if self._tracker is not None:
                self._tracker.pause()
            else:
                self._device.pause()

    def stop(self) -> None:
        """Stop playback; drops buffered audio or rewinds the source."""
        with self._transition_lock:
            self._check_disposed()
            if self._tracker is not None:
                self._tracker.stop()
                return
            self._device.stop()
            assert self._buffer is not None
            self._buffer.clear()

    def seek(self, seconds: float) -> None:
        """Jump to an absolute time in the source."""
        with self._transition_lock:
            self._require_tracker().seek(seconds)

    def fast_forward(self, seconds: float) -> None:
        with self._transition_lock:
            self._require_tracker().fast_forward(seconds)

    def rewind(self, seconds: float) -> None:
        with self._transition_lock:
            self._require_tracker().rewind(seconds)

    # Feeding samples

    def add_audio_data(self, data: BytesLike | np.ndarray) -> int:
        """
        Queue raw samples for playback (buffer mode only).

        Numpy arrays are taken as their raw bytes in native byte order, so an
        int16 array contributes 2 bytes per element and a float32 array 4.

        Returns:
            Number of bytes accepted; the rest did not fit and was dropped.

        Raises:
            UnsupportedOperationError: In source mode.
            InvalidArgumentError: If data is empty.
        """
        buffer = self._require_buffer()
        if isinstance(data, np.ndarray):
            if data.size == 0:
                raise InvalidArgumentError("Audio data cannot be empty")
            data = np.ascontiguousarray(data).tobytes()
        return buffer.write(data)

    def add_shorts(self, samples: Sequence[int] | np.ndarray) -> int:
        """Queue 16-bit samples."""
        self._require_buffer()
        return self.add_audio_data(np.asarray(samples, dtype=np.int16))

    def add_floats(self, samples: Sequence[float] | np.ndarray) -> int:
        """Queue 32-bit float samples."""
        self._require_buffer()
        return self.add_audio_data(np.asarray(samples, dtype=np.float32))

    # Internals

    def _require_buffer(self) -> SampleRingBuffer:
        self._check_disposed()
        if self._buffer is None:
            raise UnsupportedOperationError("Audio data cannot be added while a source is attached")
        return self._buffer

    def _require_tracker(self) -> PositionTracker:
        self._check_disposed()
        if self._tracker is None:
            raise UnsupportedOperationError("Operation requires a seekable source")
        return self._tracker

    def _on_device_stopped(self, event: StoppedEvent) -> None:
        """Device notification; may arrive on the device's own thread."""
        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._handle_stopped, event)
        else:
            self._handle_stopped(event)

    def _handle_stopped(self, event: StoppedEvent) -> None:
        if self._tracker is not None:
            with self._transition_lock:
                if self._disposed or self._tracker.handle_stream_end(event):
                    return
        elif self._disposed:
            return
        logger.info("Playback stopped%s", f": {event.exception}" if event.exception else "")
        for listener in list(self._stopped_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in playback stopped listener")

    def _release(self) -> None:
        self._stopped_listeners.clear()
        if self._tracker is not None:
            self._tracker.close()
        try:
            self._device.set_stopped_listener(None)
            self._device.dispose()
        finally:
            if self._source is not None:
                self._source.close()
            if self._buffer is not None:
                self._buffer.clear()


async def open_player(
    location: str | Path,
    *,
    device: PlaybackDevice | None = None,
    settings: PlayerSettings | None = None,
    is_loop: bool | None = None,
) -> AudioPlayer:
    """
    Open a file path or URL for playback.

    Args:
        location: Local path or http(s) URL.
        device: Output device; defaults to a SoundDeviceOutput on the
            configured (or default) output device.
        settings: Volume, loop and position interval defaults.
        is_loop: Overrides settings.is_loop when given.

    Raises:
        UnavailableError: If the source cannot be fetched or decoded, or the
            device cannot be opened.
    """
    if settings is None:
        settings = PlayerSettings()

    source = await open_source(location)
    try:
        if device is None:
            device = SoundDeviceOutput(resolve_device(settings.output_device))
        player = AudioPlayer.from_source(
            source,
            device,
            loop=asyncio.get_running_loop(),
            is_loop=settings.is_loop if is_loop is None else is_loop,
            position_interval=settings.position_interval_ms / 1000,
        )
    except Exception:
        source.close()
        raise
    player.volume = settings.volume
    logger.info("Opened %s (%.2f seconds)", location, player.duration)
    return player


def open_buffered_player(
    settings: PlayerSettings | None = None,
    *,
    device: PlaybackDevice | None = None,
    loop: asyncio.AbstractEventLoop | None = None,
) -> AudioPlayer:
    """
    Create a buffer-mode player from persisted settings.

    The ring buffer holds exactly settings.buffer_duration_ms of audio in the
    settings.audio format, and the device starts at settings.volume.

    Args:
        settings: Player settings; defaults when None.
        device: Output device; defaults to a SoundDeviceOutput on
            settings.output_device (or the system default).
        loop: Event loop used to deliver stopped notifications.
    """
    if settings is None:
        settings = PlayerSettings()
    if device is None:
        device = SoundDeviceOutput(resolve_device(settings.output_device))
    player = AudioPlayer.from_settings(
        settings.audio, device, buffer_duration_ms=settings.buffer_duration_ms, loop=loop
    )
    player.volume = settings.volume
    return player
