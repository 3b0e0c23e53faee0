"""Lifecycle shared by players and recorders."""

from __future__ import annotations

import logging
import threading
from enum import Enum, auto
from types import TracebackType
from typing import Self

from pcmkit.errors import DisposedError

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """State of a player or recorder session."""

    IDLE = auto()
    """Created, never started."""

    PLAYING = auto()
    PAUSED = auto()
    STOPPED = auto()
    RECORDING = auto()


class Session:
    """Base for objects that exclusively own an audio device.

    Subclasses implement ``_release``; ``dispose`` guarantees it runs exactly
    once, whichever thread gets there first.

    ``_lock`` guards state fields and is never held across a device call.
    ``_transition_lock`` is held for a whole transition, device call included,
    so only one start, stop, pause or dispose is in flight at a time. It is
    reentrant because a device may report a stop synchronously from within
    ``stop()``.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._transition_lock = threading.RLock()
        self._disposed = False

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispose(self) -> None:
        """Release the device and any attached source. Safe to call repeatedly."""
        with self._transition_lock:
            with self._lock:
                if self._disposed:
                    return
                self._disposed = True
            logger.debug("Disposing %s", type(self).__name__)
            self._release()

    def close(self) -> None:
        """Alias for dispose()."""
        self.dispose()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.dispose()

    def _check_disposed(self) -> None:
        if self._disposed:
            raise DisposedError(f"{type(self).__name__} has been disposed")

    def _release(self) -> None:
        raise NotImplementedError
