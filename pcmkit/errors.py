"""Exception types raised by pcmkit."""

from __future__ import annotations


class AudioError(Exception):
    """Base class for all pcmkit errors."""


class InvalidArgumentError(AudioError, ValueError):
    """Raised for empty, null or non-positive arguments."""


class UnsupportedOperationError(AudioError, RuntimeError):
    """Raised when an operation is not valid for the player's current mode.

    Seeking a buffer-fed player, or feeding samples to a source-driven one,
    both end up here.
    """


class DisposedError(AudioError, RuntimeError):
    """Raised when a player or recorder is used after dispose()."""


class UnavailableError(AudioError, OSError):
    """Raised when a source or device could not be created.

    Covers failed downloads, unreadable or undecodable files and devices that
    refuse to open.
    """
