"""Audio capture sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

from pcmkit.aggregator import BlockAggregator
from pcmkit.device import (
    CaptureDevice,
    SoundDeviceInput,
    StoppedEvent,
    StoppedListener,
    resolve_device,
)
from pcmkit.session import Session, SessionState
from pcmkit.settings import AudioSettings, PlayerSettings

if TYPE_CHECKING:
    from pcmkit.formats import AudioFormat

logger = logging.getLogger(__name__)

SamplesReadyListener = Callable[[bytes], None]

DEFAULT_SAMPLE_BLOCK_SIZE: Final[int] = 1024


class AudioRecorder(Session):
    """
    Records from a capture device in fixed-size sample blocks.

    The device delivers chunks of whatever size its driver prefers; listeners
    receive blocks of exactly ``sample_block_size`` frames, each a new bytes
    object they may keep.
    """

    def __init__(
        self,
        audio_format: AudioFormat,
        device: CaptureDevice,
        *,
        sample_block_size: int = DEFAULT_SAMPLE_BLOCK_SIZE,
    ) -> None:
        """
        Initialize the recorder.

        Args:
            audio_format: Capture format.
            device: Capture device; the recorder takes ownership of it.
            sample_block_size: Frames per samples-ready notification.
        """
        super().__init__()
        self._format = audio_format
        self._device = device
        self._aggregator = BlockAggregator(sample_block_size, audio_format.bytes_per_frame)
        self._state = SessionState.IDLE
        self._samples_listeners: list[SamplesReadyListener] = []
        self._stopped_listeners: list[StoppedListener] = []

        device.set_data_listener(self._on_data_available)
        device.set_stopped_listener(self._on_device_stopped)
        device.init(audio_format)

    @classmethod
    def from_settings(
        cls,
        settings: AudioSettings,
        device: CaptureDevice,
        *,
        sample_block_size: int = DEFAULT_SAMPLE_BLOCK_SIZE,
    ) -> AudioRecorder:
        return cls(settings.to_format(), device, sample_block_size=sample_block_size)

    @property
    def format(self) -> AudioFormat:
        self._check_disposed()
        return self._format

    @property
    def sample_block_size(self) -> int:
        self._check_disposed()
        return self._aggregator.sample_block_size

    @property
    def state(self) -> SessionState:
        self._check_disposed()
        return self._state

    @property
    def is_recording(self) -> bool:
        self._check_disposed()
        return self._state is SessionState.RECORDING

    def add_samples_ready_listener(self, listener: SamplesReadyListener) -> Callable[[], None]:
        """Add a samples-ready listener. Returns unsubscribe function."""
        self._check_disposed()
        self._samples_listeners.append(listener)
        return lambda: self._samples_listeners.remove(listener)

    def add_stopped_listener(self, listener: StoppedListener) -> Callable[[], None]:
        """Add a listener for the capture stream stopping. Returns unsubscribe function.

        Called whenever the device reports its stream finished: after ``stop()``
        as well as when capture ends on its own, in which case the event carries
        the error.
        """
        self._check_disposed()
        self._stopped_listeners.append(listener)
        return lambda: self._stopped_listeners.remove(listener)

    def start(self) -> None:
        """Start recording; no-op when already recording."""
        with self._transition_lock:
            with self._lock:
                self._check_disposed()
                if self._state is SessionState.RECORDING:
                    return
                previous = self._state
                self._state = SessionState.RECORDING
                self._aggregator.reset()
            try:
                self._device.start_recording()
            except Exception:
                with self._lock:
                    self._state = previous
                raise
            logger.info("Recording started (%s)", self._format)

    def stop(self) -> None:
        """Stop recording; no-op when not recording."""
        with self._transition_lock:
            with self._lock:
                self._check_disposed()
                if self._state is not SessionState.RECORDING:
                    return
                self._state = SessionState.STOPPED
            self._device.stop_recording()
            logger.info("Recording stopped")

    def _on_data_available(self, chunk: bytes) -> None:
        """Device callback, on the device's own thread."""
        if self._state is not SessionState.RECORDING:
            return
        for block in self._aggregator.push(chunk):
            for listener in list(self._samples_listeners):
                try:
                    listener(block)
                except Exception:
                    logger.exception("Error in samples ready listener")

    def _on_device_stopped(self, event: StoppedEvent) -> None:
        with self._lock:
            if self._disposed:
                return
            self._state = SessionState.STOPPED
        if event.exception is not None:
            logger.warning("Recording stopped with error: %s", event.exception)
        for listener in list(self._stopped_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Error in recording stopped listener")

    def _release(self) -> None:
        recording = self._state is SessionState.RECORDING
        self._state = SessionState.STOPPED
        self._samples_listeners.clear()
        self._stopped_listeners.clear()
        try:
            if recording:
                self._device.stop_recording()
        finally:
            self._device.set_data_listener(None)
            self._device.set_stopped_listener(None)
            self._device.dispose()


def open_recorder(
    settings: PlayerSettings | None = None,
    *,
    device: CaptureDevice | None = None,
) -> AudioRecorder:
    """
    Create a recorder from persisted settings.

    Args:
        settings: Capture format, block size and input device; defaults
            when None.
        device: Capture device; defaults to a SoundDeviceInput on
            settings.input_device (or the system default).

    Raises:
        InvalidArgumentError: If settings.input_device matches no input device.
        UnavailableError: If the device cannot be opened.
    """
    if settings is None:
        settings = PlayerSettings()
    if device is None:
        device = SoundDeviceInput(resolve_device(settings.input_device, output=False))
    return AudioRecorder.from_settings(
        settings.audio, device, sample_block_size=settings.sample_block_size
    )
