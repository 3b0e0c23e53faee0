"""Fixed-size block assembly for the capture path."""

from __future__ import annotations

import logging

from pcmkit.errors import InvalidArgumentError
from pcmkit.ring_buffer import BytesLike

logger = logging.getLogger(__name__)


class BlockAggregator:
    """Turn irregular capture chunks into uniform sample blocks.

    Chunks are copied into an accumulator of ``sample_block_size`` frames.
    Each time it fills, a fresh ``bytes`` copy is emitted and the accumulator
    starts over; a partial block is carried over to the next push. Nothing is
    ever dropped.
    """

    def __init__(self, sample_block_size: int, bytes_per_frame: int) -> None:
        if sample_block_size <= 0:
            raise InvalidArgumentError(
                f"sample_block_size must be positive, got {sample_block_size}"
            )
        if bytes_per_frame <= 0:
            raise InvalidArgumentError(f"bytes_per_frame must be positive, got {bytes_per_frame}")
        self._sample_block_size = sample_block_size
        self._block_bytes = sample_block_size * bytes_per_frame
        self._accumulator = bytearray(self._block_bytes)
        self._fill = 0

    @property
    def sample_block_size(self) -> int:
        """Frames per emitted block."""
        return self._sample_block_size

    @property
    def block_bytes(self) -> int:
        """Size of each emitted block in bytes."""
        return self._block_bytes

    @property
    def pending_bytes(self) -> int:
        """Bytes held back waiting for the rest of a block."""
        return self._fill

    def push(self, chunk: BytesLike) -> list[bytes]:
        """
        Add a capture chunk.

        Args:
            chunk: Raw PCM bytes of any length.

        Returns:
            Completed blocks in arrival order, possibly none.
        """
        view = memoryview(chunk).cast("B")
        blocks: list[bytes] = []
        offset = 0
        remaining = len(view)

        while remaining > 0:
            take = min(remaining, self._block_bytes - self._fill)
            self._accumulator[self._fill : self._fill + take] = view[offset : offset + take]
            self._fill += take
            offset += take
            remaining -= take
            if self._fill == self._block_bytes:
                blocks.append(bytes(self._accumulator))
                self._fill = 0

        if len(blocks) > 1:
            logger.debug("Chunk of %d bytes completed %d blocks", len(view), len(blocks))
        return blocks

    def reset(self) -> None:
        """Forget any partial block."""
        self._fill = 0
