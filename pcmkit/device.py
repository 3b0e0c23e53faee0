"""Audio device capabilities and their sounddevice implementations.

Players and recorders only talk to the ``PlaybackDevice`` and ``CaptureDevice``
protocols. ``SoundDeviceOutput`` and ``SoundDeviceInput`` implement them on top
of PortAudio raw streams; their callbacks run on PortAudio's realtime thread.

This module also provides device enumeration utilities for listing and
resolving audio devices.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum, auto
from types import ModuleType
from typing import TYPE_CHECKING, Any, Final, Protocol, runtime_checkable

import numpy as np

from pcmkit.errors import InvalidArgumentError, UnavailableError

if TYPE_CHECKING:
    import sounddevice
    from sounddevice import CallbackFlags

    from pcmkit.formats import AudioFormat
    from pcmkit.sources import SampleProvider

logger = logging.getLogger(__name__)


def _load_sounddevice() -> ModuleType:
    """Import sounddevice, which needs the PortAudio shared library."""
    try:
        import sounddevice
    except Exception as err:  # noqa: BLE001
        raise UnavailableError("sounddevice is required for audio device access") from err
    return sounddevice


class DeviceState(Enum):
    """Playback state reported by a device."""

    STOPPED = auto()
    PLAYING = auto()
    PAUSED = auto()


@dataclass(frozen=True, slots=True)
class StoppedEvent:
    """Payload of a device stopped notification."""

    exception: BaseException | None = None
    """Error that ended the stream, or None for a normal stop."""


StoppedListener = Callable[[StoppedEvent], None]
DataListener = Callable[[bytes], None]


@runtime_checkable
class PlaybackDevice(Protocol):
    """Output device that pulls PCM from a provider on its own clock."""

    @property
    def state(self) -> DeviceState: ...

    @property
    def volume(self) -> float: ...

    @volume.setter
    def volume(self, value: float) -> None: ...

    def init(self, provider: SampleProvider) -> None: ...

    def play(self) -> None: ...

    def pause(self) -> None: ...

    def stop(self) -> None: ...

    def dispose(self) -> None: ...

    def set_stopped_listener(self, listener: StoppedListener | None) -> None: ...


@runtime_checkable
class CaptureDevice(Protocol):
    """Input device that pushes captured PCM chunks on its own clock."""

    def init(self, audio_format: AudioFormat) -> None: ...

    def start_recording(self) -> None: ...

    def stop_recording(self) -> None: ...

    def dispose(self) -> None: ...

    def set_data_listener(self, listener: DataListener | None) -> None: ...

    def set_stopped_listener(self, listener: StoppedListener | None) -> None: ...


@dataclass(slots=True)
class AudioDevice:
    """Represents an audio device.

    Attributes:
        index: Device index used for selection.
        name: Human-readable device name.
        input_channels: Number of input channels supported.
        output_channels: Number of output channels supported.
        sample_rate: Default sample rate in Hz.
        is_default_input: Whether this is the system default input device.
        is_default_output: Whether this is the system default output device.
    """

    index: int
    name: str
    input_channels: int
    output_channels: int
    sample_rate: float
    is_default_input: bool
    is_default_output: bool


def query_devices() -> list[AudioDevice]:
    """Query all available audio devices."""
    sd = _load_sounddevice()
    devices = sd.query_devices()
    default_input, default_output = (int(i) for i in sd.default.device)

    return [
        AudioDevice(
            index=i,
            name=str(dev["name"]),
            input_channels=int(dev["max_input_channels"]),
            output_channels=int(dev["max_output_channels"]),
            sample_rate=float(dev["default_samplerate"]),
            is_default_input=(i == default_input),
            is_default_output=(i == default_output),
        )
        for i, dev in enumerate(devices)
    ]


def resolve_device(device: str | None, *, output: bool = True) -> int | None:
    """Resolve an audio device by index or name prefix.

    Args:
        device: Device index (numeric string) or name prefix to match.
        output: Look for output channels if True, input channels otherwise.

    Returns:
        Device index if valid, None for the default device.

    Raises:
        InvalidArgumentError: If device is invalid or not found.
    """
    if device is None:
        return None

    key = "max_output_channels" if output else "max_input_channels"
    direction = "output" if output else "input"
    devices = _load_sounddevice().query_devices()

    if device.isnumeric():
        device_id = int(device)
        if 0 <= device_id < len(devices):
            if devices[device_id][key] > 0:
                return device_id
            raise InvalidArgumentError(f"Device {device_id} has no {direction} channels")
        raise InvalidArgumentError(
            f"Device index {device_id} out of range (0-{len(devices) - 1})"
        )

    for i, dev in enumerate(devices):
        if dev[key] > 0 and dev["name"].startswith(device):
            return i

    raise InvalidArgumentError(f"No audio {direction} device found matching '{device}'")


def _silence_byte(audio_format: AudioFormat) -> bytes:
    # Unsigned 8-bit PCM is centred on 128.
    return b"\x80" if audio_format.bit_depth == 8 and not audio_format.is_float else b"\x00"


class SoundDeviceOutput:
    """PlaybackDevice backed by a sounddevice raw output stream."""

    _BLOCKSIZE: Final[int] = 2048
    """Frames pulled per callback (~46ms at 44.1kHz)."""

    def __init__(
        self,
        device: int | str | None = None,
        *,
        blocksize: int = _BLOCKSIZE,
        latency: str | float = "high",
    ) -> None:
        """
        Initialize the output device.

        Args:
            device: sounddevice device index or name, None for the default.
            blocksize: Frames requested per callback.
            latency: PortAudio latency hint.
        """
        self._device = device
        self._blocksize = blocksize
        self._latency = latency
        self._provider: SampleProvider | None = None
        self._format: AudioFormat | None = None
        self._stream: sounddevice.RawOutputStream | None = None
        self._state = DeviceState.STOPPED
        self._volume = 1.0
        self._error: BaseException | None = None
        self._stopped_listener: StoppedListener | None = None
        self._lock = threading.Lock()
        self._sd: ModuleType | None = None

    @property
    def state(self) -> DeviceState:
        return self._state

    @property
    def volume(self) -> float:
        """Linear gain between 0.0 and 1.0."""
        return self._volume

    @volume.setter
    def volume(self, value: float) -> None:
        self._volume = max(0.0, min(1.0, float(value)))

    def set_stopped_listener(self, listener: StoppedListener | None) -> None:
        self._stopped_listener = listener

    def init(self, provider: SampleProvider) -> None:
        """Open an output stream matching the provider's format."""
        audio_format = provider.format
        if audio_format is None:
            raise InvalidArgumentError("Sample provider has no audio format")
        sd = _load_sounddevice()
        self._close_stream()
        self._sd = sd
        self._provider = provider
        self._format = audio_format
        try:
            self._stream = sd.RawOutputStream(
                samplerate=audio_format.sample_rate,
                channels=audio_format.channels,
                dtype=audio_format.sounddevice_dtype,
                blocksize=self._blocksize,
                callback=self._audio_callback,
                finished_callback=self._on_finished,
                latency=self._latency,
                device=self._device,
            )
        except sd.PortAudioError as err:
            raise UnavailableError(f"Could not open audio output: {err}") from err
        logger.info(
            "Audio output configured: blocksize=%d, latency=%s, device=%s, format=%s",
            self._blocksize,
            self._latency,
            self._device,
            audio_format,
        )

    def play(self) -> None:
        stream = self._require_stream()
        with self._lock:
            if self._state is DeviceState.PLAYING:
                return
            self._state = DeviceState.PLAYING
            self._error = None
        # A stream that completed through CallbackStop must be stopped before restart.
        if not stream.stopped:
            stream.stop()
        stream.start()

    def pause(self) -> None:
        stream = self._require_stream()
        with self._lock:
            if self._state is not DeviceState.PLAYING:
                return
            self._state = DeviceState.PAUSED
        stream.stop()

    def stop(self) -> None:
        stream = self._require_stream()
        with self._lock:
            previous = self._state
            if previous is DeviceState.STOPPED:
                return
            self._state = DeviceState.STOPPED
        if previous is DeviceState.PLAYING and not stream.stopped:
            # finished_callback reports the stop
            stream.stop()
        else:
            self._notify_stopped(None)

    def dispose(self) -> None:
        """Close the stream; safe to call more than once."""
        self._stopped_listener = None
        self._state = DeviceState.STOPPED
        self._close_stream()
        self._provider = None

    def _require_stream(self) -> sounddevice.RawOutputStream:
        if self._stream is None:
            raise UnavailableError("Audio output is not initialized")
        return self._stream

    def _audio_callback(
        self,
        outdata: memoryview,
        frames: int,
        time: Any,  # noqa: ARG002
        status: CallbackFlags,
    ) -> None:
        """
        Fill the device buffer from the provider.

        Args:
            outdata: Output buffer to fill with audio data.
            frames: Number of frames requested.
            time: CFFI cdata structure with timing info.
            status: Status flags (underrun, overflow, etc.).
        """
        provider = self._provider
        audio_format = self._format
        sd = self._sd
        assert provider is not None
        assert audio_format is not None
        assert sd is not None

        bytes_needed = frames * audio_format.bytes_per_frame
        output_buffer = memoryview(outdata).cast("B")

        if status:
            if status.output_underflow:
                logger.warning("Audio output underflow")
            else:
                logger.debug("Audio callback status: %s", status)

        try:
            data = provider.read(bytes_needed)
            written = len(data)
            output_buffer[:written] = data
            if written < bytes_needed:
                self._fill_silence(output_buffer, written, bytes_needed - written, audio_format)
            self._apply_volume(output_buffer, written, audio_format)
        except Exception as err:
            logger.exception("Error in audio output callback")
            self._fill_silence(output_buffer, 0, bytes_needed, audio_format)
            self._error = err
            raise sd.CallbackAbort from err

        # PortAudio still plays this buffer before finishing the stream.
        if provider.at_end:
            raise sd.CallbackStop

    def _on_finished(self) -> None:
        """Called by PortAudio once the stream becomes inactive."""
        with self._lock:
            if self._state is DeviceState.PAUSED:
                return
            self._state = DeviceState.STOPPED
            error = self._error
        self._notify_stopped(error)

    def _notify_stopped(self, error: BaseException | None) -> None:
        listener = self._stopped_listener
        if listener is None:
            return
        try:
            listener(StoppedEvent(exception=error))
        except Exception:
            logger.exception("Error in playback stopped listener")

    def _fill_silence(
        self, output_buffer: memoryview, offset: int, num_bytes: int, audio_format: AudioFormat
    ) -> None:
        """Fill output buffer range with silence."""
        if num_bytes > 0:
            output_buffer[offset : offset + num_bytes] = _silence_byte(audio_format) * num_bytes

    def _apply_volume(
        self, output_buffer: memoryview, num_bytes: int, audio_format: AudioFormat
    ) -> None:
        """Scale the first num_bytes of the buffer by the current volume."""
        volume = self._volume
        if volume >= 1.0 or num_bytes == 0:
            return

        if volume <= 0.0:
            self._fill_silence(output_buffer, 0, num_bytes, audio_format)
            return

        dtype = audio_format.sounddevice_dtype
        if dtype == "int24":
            # No numpy type for packed 24-bit samples
            return
        samples = np.frombuffer(output_buffer[:num_bytes], dtype=dtype)
        if dtype == "uint8":
            scaled = ((samples.astype(np.float32) - 128.0) * volume + 128.0).astype(np.uint8)
        else:
            scaled = (samples * volume).astype(samples.dtype)
        output_buffer[:num_bytes] = scaled.tobytes()

    def _close_stream(self) -> None:
        """Close the audio output stream."""
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception:
                logger.exception("Failed to close audio output stream")


class SoundDeviceInput:
    """CaptureDevice backed by a sounddevice raw input stream."""

    def __init__(self, device: int | str | None = None, *, blocksize: int = 0) -> None:
        """
        Initialize the input device.

        Args:
            device: sounddevice device index or name, None for the default.
            blocksize: Frames per callback; 0 lets PortAudio choose.
        """
        self._device = device
        self._blocksize = blocksize
        self._stream: sounddevice.RawInputStream | None = None
        self._data_listener: DataListener | None = None
        self._stopped_listener: StoppedListener | None = None
        self._error: BaseException | None = None
        self._sd: ModuleType | None = None

    def set_data_listener(self, listener: DataListener | None) -> None:
        self._data_listener = listener

    def set_stopped_listener(self, listener: StoppedListener | None) -> None:
        self._stopped_listener = listener

    def init(self, audio_format: AudioFormat) -> None:
        """Open an input stream in the given format."""
        sd = _load_sounddevice()
        self._close_stream()
        self._sd = sd
        try:
            self._stream = sd.RawInputStream(
                samplerate=audio_format.sample_rate,
                channels=audio_format.channels,
                dtype=audio_format.sounddevice_dtype,
                blocksize=self._blocksize,
                callback=self._audio_callback,
                finished_callback=self._on_finished,
                device=self._device,
            )
        except sd.PortAudioError as err:
            raise UnavailableError(f"Could not open audio input: {err}") from err
        logger.info("Audio input configured: device=%s, format=%s", self._device, audio_format)

    def start_recording(self) -> None:
        stream = self._require_stream()
        self._error = None
        if not stream.stopped:
            stream.stop()
        stream.start()

    def stop_recording(self) -> None:
        self._require_stream().stop()

    def dispose(self) -> None:
        """Close the stream; safe to call more than once."""
        self._data_listener = None
        self._stopped_listener = None
        self._close_stream()

    def _require_stream(self) -> sounddevice.RawInputStream:
        if self._stream is None:
            raise UnavailableError("Audio input is not initialized")
        return self._stream

    def _audio_callback(
        self,
        indata: memoryview,
        frames: int,  # noqa: ARG002
        time: Any,  # noqa: ARG002
        status: CallbackFlags,
    ) -> None:
        if status:
            logger.debug("Audio input status: %s", status)
        listener = self._data_listener
        if listener is None:
            return
        try:
            listener(bytes(indata))
        except Exception as err:
            logger.exception("Error in audio input callback")
            self._error = err
            assert self._sd is not None
            raise self._sd.CallbackAbort from err

    def _on_finished(self) -> None:
        listener = self._stopped_listener
        if listener is None:
            return
        try:
            listener(StoppedEvent(exception=self._error))
        except Exception:
            logger.exception("Error in recording stopped listener")

    def _close_stream(self) -> None:
        """Close the audio input stream."""
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except Exception:
                logger.exception("Failed to close audio input stream")
