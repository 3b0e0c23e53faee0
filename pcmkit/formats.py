"""PCM format description shared by players, recorders and sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from pcmkit.errors import InvalidArgumentError

SUPPORTED_BIT_DEPTHS: Final[frozenset[int]] = frozenset({8, 16, 24, 32})

_INT_DTYPES: Final[dict[int, str]] = {
    8: "uint8",
    16: "int16",
    24: "int24",
    32: "int32",
}


@dataclass(frozen=True, slots=True)
class AudioFormat:
    """Raw PCM format.

    Attributes:
        sample_rate: Frames per second.
        bit_depth: Bits per sample (8, 16, 24 or 32).
        channels: Number of interleaved channels.
        is_float: Whether samples are IEEE 754 floats (always 32-bit).
    """

    sample_rate: int
    bit_depth: int = 16
    channels: int = 1
    is_float: bool = False

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise InvalidArgumentError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.channels <= 0:
            raise InvalidArgumentError(f"channels must be positive, got {self.channels}")
        if self.bit_depth not in SUPPORTED_BIT_DEPTHS:
            raise InvalidArgumentError(f"Unsupported bit depth: {self.bit_depth}")
        if self.is_float and self.bit_depth != 32:
            raise InvalidArgumentError("Float samples must be 32-bit")

    @classmethod
    def ieee_float(cls, sample_rate: int, channels: int = 1) -> AudioFormat:
        """Create a 32-bit IEEE float format."""
        return cls(sample_rate=sample_rate, bit_depth=32, channels=channels, is_float=True)

    @property
    def bytes_per_sample(self) -> int:
        return self.bit_depth // 8

    @property
    def bytes_per_frame(self) -> int:
        """Size of one frame (one sample per channel) in bytes."""
        return self.channels * self.bytes_per_sample

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.bytes_per_frame

    @property
    def sounddevice_dtype(self) -> str:
        """Sample type name understood by sounddevice raw streams."""
        if self.is_float:
            return "float32"
        return _INT_DTYPES[self.bit_depth]

    def buffer_length(self, duration_ms: int) -> int:
        """Number of bytes needed to hold duration_ms of audio.

        Raises:
            InvalidArgumentError: If duration_ms is not positive.
        """
        if duration_ms <= 0:
            raise InvalidArgumentError(f"duration_ms must be positive, got {duration_ms}")
        total_frames = self.sample_rate * duration_ms // 1000
        return total_frames * self.bytes_per_frame

    def duration_of(self, num_bytes: int) -> float:
        """Playback time in seconds of num_bytes of audio."""
        return num_bytes / self.bytes_per_second

    def align(self, num_bytes: int) -> int:
        """Round num_bytes down to a whole number of frames."""
        return num_bytes - (num_bytes % self.bytes_per_frame)
