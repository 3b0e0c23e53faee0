"""Settings persistence for pcmkit players and recorders.

Settings are plain dataclasses stored as JSON. Loading never fails: a missing
or broken file leaves the defaults in place.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pcmkit.formats import AudioFormat

logger = logging.getLogger(__name__)


class _UndefinedType:
    """Singleton for undefined/not-passed values."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _UndefinedType()


@dataclass
class AudioSettings:
    """Audio settings used with AudioRecorder and AudioPlayer."""

    sample_rate: int = 44_100
    channels: int = 1
    bit_depth: int = 16
    is_float: bool = False

    def to_format(self) -> AudioFormat:
        """Build the AudioFormat these settings describe.

        Raises:
            InvalidArgumentError: If the fields do not form a valid format,
                including float samples with a bit_depth other than 32.
        """
        return AudioFormat(
            sample_rate=self.sample_rate,
            bit_depth=self.bit_depth,
            channels=self.channels,
            is_float=self.is_float,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {
            "sample_rate": self.sample_rate,
            "channels": self.channels,
            "bit_depth": self.bit_depth,
            "is_float": self.is_float,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AudioSettings:
        """Create settings from a dictionary."""
        return cls(
            sample_rate=data.get("sample_rate", 44_100),
            channels=data.get("channels", 1),
            bit_depth=data.get("bit_depth", 16),
            is_float=data.get("is_float", False),
        )


@dataclass
class PlayerSettings:
    """All persistent settings for players and recorders."""

    volume: float = 1.0
    is_loop: bool = False
    buffer_duration_ms: int = 2000
    position_interval_ms: int = 100
    sample_block_size: int = 1024
    output_device: str | None = None
    input_device: str | None = None
    audio: AudioSettings = field(default_factory=AudioSettings)

    def to_dict(self) -> dict[str, Any]:
        """Convert settings to a dictionary for serialization."""
        return {
            "volume": self.volume,
            "is_loop": self.is_loop,
            "buffer_duration_ms": self.buffer_duration_ms,
            "position_interval_ms": self.position_interval_ms,
            "sample_block_size": self.sample_block_size,
            "output_device": self.output_device,
            "input_device": self.input_device,
            "audio": self.audio.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PlayerSettings:
        """Create settings from a dictionary."""
        return cls(
            volume=data.get("volume", 1.0),
            is_loop=data.get("is_loop", False),
            buffer_duration_ms=data.get("buffer_duration_ms", 2000),
            position_interval_ms=data.get("position_interval_ms", 100),
            sample_block_size=data.get("sample_block_size", 1024),
            output_device=data.get("output_device"),
            input_device=data.get("input_device"),
            audio=AudioSettings.from_dict(data.get("audio", {})),
        )


def default_settings_path() -> Path:
    """Location of the settings file when none is given."""
    return Path.home() / ".config" / "pcmkit" / "settings.json"


class SettingsManager:
    """Loads, updates and saves PlayerSettings as JSON."""

    def __init__(self, settings_file: Path | str | None = None) -> None:
        """Initialize the settings manager.

        Args:
            settings_file: Path to the settings file. Defaults to
                ~/.config/pcmkit/settings.json.
        """
        if settings_file is None:
            settings_file = default_settings_path()
        self._settings_file = Path(settings_file)
        self._settings = PlayerSettings()

    @property
    def settings(self) -> PlayerSettings:
        return self._settings

    @property
    def settings_file(self) -> Path:
        return self._settings_file

    def update(
        self,
        *,
        volume: float | _UndefinedType = UNDEFINED,
        is_loop: bool | _UndefinedType = UNDEFINED,
        buffer_duration_ms: int | _UndefinedType = UNDEFINED,
        position_interval_ms: int | _UndefinedType = UNDEFINED,
        sample_block_size: int | _UndefinedType = UNDEFINED,
        output_device: str | None | _UndefinedType = UNDEFINED,
        input_device: str | None | _UndefinedType = UNDEFINED,
    ) -> bool:
        """Update settings fields.

        Returns:
            True if any field changed.
        """
        changed = False

        # Handle volume separately due to clamping
        if not isinstance(volume, _UndefinedType):
            volume = max(0.0, min(1.0, float(volume)))
            if self._settings.volume != volume:
                self._settings.volume = volume
                changed = True

        fields = {
            "is_loop": is_loop,
            "buffer_duration_ms": buffer_duration_ms,
            "position_interval_ms": position_interval_ms,
            "sample_block_size": sample_block_size,
            "output_device": output_device,
            "input_device": input_device,
        }
        for name, value in fields.items():
            if not isinstance(value, _UndefinedType) and getattr(self._settings, name) != value:
                setattr(self._settings, name, value)
                changed = True

        return changed

    def load(self) -> PlayerSettings:
        """Load settings from the settings file (blocking I/O)."""
        if not self._settings_file.exists():
            logger.debug("Settings file does not exist: %s", self._settings_file)
            return self._settings

        try:
            data = json.loads(self._settings_file.read_text())
            self._settings = PlayerSettings.from_dict(data)
            logger.info(
                "Loaded settings from %s: volume=%.2f, loop=%s",
                self._settings_file,
                self._settings.volume,
                self._settings.is_loop,
            )
        except (json.JSONDecodeError, AttributeError, OSError) as e:
            logger.warning("Failed to load settings from %s: %s", self._settings_file, e)
        return self._settings

    def save(self) -> None:
        """Save settings to the settings file (blocking I/O)."""
        try:
            self._settings_file.parent.mkdir(parents=True, exist_ok=True)
            self._settings_file.write_text(json.dumps(self._settings.to_dict(), indent=2) + "\n")
            logger.debug("Saved settings to %s", self._settings_file)
        except OSError as e:
            logger.warning("Failed to save settings to %s: %s", self._settings_file, e)

    async def load_async(self) -> PlayerSettings:
        """Load settings in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.load)

    async def save_async(self) -> None:
        """Save settings in the default executor."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.save)
