"""Bounded byte ring buffer between a sample producer and a device callback.

The producer side (``write``) runs on the caller's thread and the consumer side
(``read``) runs on the audio device's realtime thread. Neither side ever waits:
writes that do not fit are truncated and reads that find too little data
return what is there.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from pcmkit.errors import InvalidArgumentError

if TYPE_CHECKING:
    from pcmkit.formats import AudioFormat

logger = logging.getLogger(__name__)

BytesLike = bytes | bytearray | memoryview


class SampleRingBuffer:
    """Fixed-capacity FIFO of raw PCM bytes.

    Overflow drops the part of the incoming write that does not fit; bytes that
    are already buffered are never overwritten. The capacity never changes after
    construction.
    """

    def __init__(self, capacity: int, audio_format: AudioFormat | None = None) -> None:
        """
        Initialize the ring buffer.

        Args:
            capacity: Buffer size in bytes.
            audio_format: Format of the buffered samples, if known.
        """
        if capacity <= 0:
            raise InvalidArgumentError(f"capacity must be positive, got {capacity}")
        self._buffer = bytearray(capacity)
        self._capacity = capacity
        self._format = audio_format
        self._read_pos = 0
        self._write_pos = 0
        self._buffered = 0
        self._discarded_total = 0
        self._lock = threading.Lock()

    @classmethod
    def for_format(cls, audio_format: AudioFormat, duration_ms: int) -> SampleRingBuffer:
        """Create a buffer holding duration_ms of audio in the given format."""
        return cls(audio_format.buffer_length(duration_ms), audio_format)

    @property
    def capacity(self) -> int:
        """Total buffer size in bytes."""
        return self._capacity

    @property
    def format(self) -> AudioFormat | None:
        return self._format

    @property
    def buffered_bytes(self) -> int:
        """Bytes currently waiting to be read."""
        with self._lock:
            return self._buffered

    @property
    def free_bytes(self) -> int:
        """Bytes that can be written without discarding anything."""
        with self._lock:
            return self._capacity - self._buffered

    @property
    def discarded_bytes(self) -> int:
        """Total bytes dropped on overflow since creation."""
        with self._lock:
            return self._discarded_total

    @property
    def at_end(self) -> bool:
        """A live buffer never runs out for good, only underruns."""
        return False

    def write(self, data: BytesLike) -> int:
        """
        Append bytes at the write cursor.

        Args:
            data: Raw PCM bytes.

        Returns:
            Number of bytes accepted. Anything beyond the free space is dropped.

        Raises:
            InvalidArgumentError: If data is empty.
        """
        view = memoryview(data).cast("B")
        size = len(view)
        if size == 0:
            raise InvalidArgumentError("Audio data cannot be empty")

        with self._lock:
            accepted = min(size, self._capacity - self._buffered)
            if accepted > 0:
                first = min(accepted, self._capacity - self._write_pos)
                self._buffer[self._write_pos : self._write_pos + first] = view[:first]
                if accepted > first:
                    self._buffer[: accepted - first] = view[first:accepted]
                self._write_pos = (self._write_pos + accepted) % self._capacity
                self._buffered += accepted
            discarded = size - accepted
            self._discarded_total += discarded

        if discarded:
            logger.debug("Ring buffer full; discarded %d of %d bytes", discarded, size)
        return accepted

    def read(self, max_bytes: int) -> bytes:
        """
        Take up to max_bytes from the read cursor.

        Returns fewer bytes (possibly none) when the buffer underruns; padding
        with silence is the caller's job.
        """
        if max_bytes < 0:
            raise InvalidArgumentError(f"max_bytes must not be negative, got {max_bytes}")

        with self._lock:
            count = min(max_bytes, self._buffered)
            if count == 0:
                return b""
            first = min(count, self._capacity - self._read_pos)
            chunk = bytes(self._buffer[self._read_pos : self._read_pos + first])
            if count > first:
                chunk += self._buffer[: count - first]
            self._read_pos = (self._read_pos + count) % self._capacity
            self._buffered -= count
            return chunk

    def clear(self) -> None:
        """Drop all buffered bytes."""
        with self._lock:
            self._read_pos = 0
            self._write_pos = 0
            self._buffered = 0
