"""Seekable sample sources for local files and URLs.

Files and downloads are decoded up front with PyAV into raw PCM held in
memory, so seeking is a plain cursor move and nothing on the playback path
touches the disk or the network.
"""

from __future__ import annotations

import asyncio
import io
import logging
import threading
from pathlib import Path, PurePosixPath
from typing import Final, Protocol, runtime_checkable
from urllib.parse import urlparse

import aiohttp
import av
import av.audio.frame
import numpy as np

from pcmkit.errors import InvalidArgumentError, UnavailableError
from pcmkit.formats import AudioFormat

logger = logging.getLogger(__name__)

_CONTAINER_FORMATS: Final[dict[str, str]] = {
    ".wav": "wav",
    ".aif": "aiff",
    ".aiff": "aiff",
}

_URL_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https"})

DEFAULT_FETCH_TIMEOUT: Final[float] = 30.0


@runtime_checkable
class SampleProvider(Protocol):
    """Anything a playback device can pull PCM bytes from."""

    @property
    def format(self) -> AudioFormat | None: ...

    @property
    def at_end(self) -> bool:
        """True once a finite provider has nothing more to give."""
        ...

    def read(self, max_bytes: int) -> bytes: ...


@runtime_checkable
class SampleSource(SampleProvider, Protocol):
    """A finite, seekable PCM stream."""

    @property
    def format(self) -> AudioFormat: ...

    @property
    def position(self) -> int:
        """Current read offset in bytes."""
        ...

    @property
    def length_in_bytes(self) -> int: ...

    @property
    def bytes_per_second(self) -> int: ...

    def set_position(self, byte_offset: int) -> None: ...

    def current_time(self) -> float: ...

    def total_time(self) -> float: ...

    def close(self) -> None: ...


class PcmSource:
    """In-memory seekable PCM stream.

    ``read`` is called from the device thread while ``set_position`` is called
    from the event loop, so the cursor is guarded by a lock.
    """

    def __init__(self, data: bytes, audio_format: AudioFormat) -> None:
        """
        Initialize the source.

        Args:
            data: Interleaved PCM bytes in audio_format.
            audio_format: Format of data.
        """
        # A trailing partial frame can never be played.
        self._data = memoryview(data)[: audio_format.align(len(data))]
        self._format = audio_format
        self._position = 0
        self._closed = False
        self._lock = threading.Lock()

    @property
    def format(self) -> AudioFormat:
        return self._format

    @property
    def position(self) -> int:
        return self._position

    @property
    def length_in_bytes(self) -> int:
        return len(self._data)

    @property
    def bytes_per_second(self) -> int:
        return self._format.bytes_per_second

    @property
    def at_end(self) -> bool:
        return self._position >= len(self._data)

    def read(self, max_bytes: int) -> bytes:
        """Read up to max_bytes from the cursor; returns b"" at the end."""
        with self._lock:
            start = self._position
            end = min(start + max(0, max_bytes), len(self._data))
            self._position = end
            return bytes(self._data[start:end])

    def set_position(self, byte_offset: int) -> None:
        """Move the cursor, clamped to the stream and aligned to a frame."""
        offset = self._format.align(max(0, min(int(byte_offset), len(self._data))))
        with self._lock:
            self._position = offset

    def current_time(self) -> float:
        """Seconds of audio before the cursor."""
        return self._position / self.bytes_per_second

    def total_time(self) -> float:
        return len(self._data) / self.bytes_per_second

    def close(self) -> None:
        """Release the decoded samples."""
        if self._closed:
            return
        self._closed = True
        with self._lock:
            self._data.release()
            self._data = memoryview(b"")
            self._position = 0


def container_format_for(name: str) -> str | None:
    """Pick a demuxer from a file name or URL path.

    ``.wav`` maps to the WAV reader, ``.aif``/``.aiff`` to the AIFF reader and
    anything else to ``None`` so FFmpeg probes the data itself.
    """
    suffix = PurePosixPath(urlparse(name).path if is_url(name) else name).suffix.lower()
    return _CONTAINER_FORMATS.get(suffix)


def is_url(location: str) -> bool:
    return urlparse(location).scheme.lower() in _URL_SCHEMES


def _output_layout(stream: av.audio.stream.AudioStream) -> tuple[str, AudioFormat]:
    """Choose the packed sample format to resample a stream into."""
    codec = stream.codec_context
    sample_rate = codec.sample_rate or stream.rate
    channels = len(codec.layout.channels)
    sample_format = codec.format.name if codec.format is not None else "s16"
    bits = codec.format.bits if codec.format is not None else 16

    if sample_format.startswith(("flt", "dbl")):
        return "flt", AudioFormat.ieee_float(sample_rate, channels)
    if bits <= 16:
        return "s16", AudioFormat(sample_rate=sample_rate, bit_depth=16, channels=channels)
    return "s32", AudioFormat(sample_rate=sample_rate, bit_depth=32, channels=channels)


def _frame_to_bytes(frame: av.AudioFrame, audio_format: AudioFormat) -> bytes:
    """Convert a packed audio frame to interleaved PCM bytes.

    FFmpeg pads its buffers for alignment, so only the real sample data is
    taken from the plane.
    """
    actual_bytes = frame.samples * audio_format.bytes_per_frame
    if frame.format.is_planar:
        dtype = np.float32 if audio_format.is_float else np.dtype(f"int{audio_format.bit_depth}")
        bytes_per_plane = frame.samples * audio_format.bytes_per_sample
        result = np.empty(frame.samples * audio_format.channels, dtype=dtype)
        for ch in range(audio_format.channels):
            plane_data = np.frombuffer(bytes(frame.planes[ch])[:bytes_per_plane], dtype=dtype)
            result[ch :: audio_format.channels] = plane_data
        return result.tobytes()
    return bytes(frame.planes[0])[:actual_bytes]


def _decode(file: str | io.BytesIO, container_format: str | None) -> PcmSource:
    """Decode every audio frame of a container into a PcmSource (blocking)."""
    try:
        container = av.open(file, format=container_format)
    except (av.FFmpegError, OSError) as err:
        raise UnavailableError(f"Could not open audio source: {err}") from err

    try:
        if not container.streams.audio:
            raise UnavailableError("Source contains no audio stream")
        stream = container.streams.audio[0]
        sample_format, audio_format = _output_layout(stream)
        layout = stream.codec_context.layout.name
        resampler = av.AudioResampler(
            format=sample_format, layout=layout, rate=audio_format.sample_rate
        )
        pcm = bytearray()
        for frame in container.decode(stream):
            for resampled in resampler.resample(frame):
                pcm.extend(_frame_to_bytes(resampled, audio_format))
        for remaining in resampler.resample(None):
            pcm.extend(_frame_to_bytes(remaining, audio_format))
    except av.FFmpegError as err:
        raise UnavailableError(f"Could not decode audio source: {err}") from err
    finally:
        container.close()

    logger.info(
        "Decoded %.2f seconds of audio (%d Hz, %d-bit, %d channels)",
        audio_format.duration_of(len(pcm)),
        audio_format.sample_rate,
        audio_format.bit_depth,
        audio_format.channels,
    )
    return PcmSource(bytes(pcm), audio_format)


def decode_file(path: str | Path) -> PcmSource:
    """Decode a local audio file.

    Raises:
        UnavailableError: If the file is missing or cannot be decoded.
    """
    path = Path(path)
    if not path.is_file():
        raise UnavailableError(f"Audio file not found: {path}")
    return _decode(str(path), container_format_for(path.name))


def decode_bytes(data: bytes, name: str = "") -> PcmSource:
    """Decode an in-memory audio resource; name only drives demuxer selection."""
    if not data:
        raise InvalidArgumentError("Audio data cannot be empty")
    return _decode(io.BytesIO(data), container_format_for(name))


async def fetch(url: str, *, timeout: float = DEFAULT_FETCH_TIMEOUT) -> bytes:
    """
    Download a whole remote audio resource.

    Args:
        url: HTTP or HTTPS URL.
        timeout: Total timeout in seconds.

    Raises:
        UnavailableError: On connection errors, timeouts or non-2xx responses.
    """
    logger.info("Downloading %s", url)
    try:
        async with (
            aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout)) as session,
            session.get(url) as response,
        ):
            response.raise_for_status()
            data = await response.read()
    except (aiohttp.ClientError, TimeoutError) as err:
        raise UnavailableError(f"Failed to download {url}: {err}") from err
    logger.debug("Downloaded %d bytes from %s", len(data), url)
    return data


async def open_source(location: str | Path) -> PcmSource:
    """
    Resolve a file path or URL to a decoded, seekable source.

    URLs are downloaded first; decoding runs in the default executor so the
    event loop stays responsive.
    """
    loop = asyncio.get_running_loop()
    location = str(location)
    if is_url(location):
        data = await fetch(location)
        return await loop.run_in_executor(None, decode_bytes, data, location)
    return await loop.run_in_executor(None, decode_file, location)
