"""Real-time PCM playback and capture with bounded buffering."""

from pcmkit.aggregator import BlockAggregator
from pcmkit.device import (
    AudioDevice,
    CaptureDevice,
    DeviceState,
    PlaybackDevice,
    SoundDeviceInput,
    SoundDeviceOutput,
    StoppedEvent,
    query_devices,
    resolve_device,
)
from pcmkit.errors import (
    AudioError,
    DisposedError,
    InvalidArgumentError,
    UnavailableError,
    UnsupportedOperationError,
)
from pcmkit.formats import AudioFormat
from pcmkit.player import AudioPlayer, open_buffered_player, open_player
from pcmkit.position import PositionTracker
from pcmkit.recorder import AudioRecorder, open_recorder
from pcmkit.ring_buffer import SampleRingBuffer
from pcmkit.session import SessionState
from pcmkit.settings import AudioSettings, PlayerSettings, SettingsManager
from pcmkit.sources import PcmSource, SampleProvider, SampleSource, fetch, open_source

__all__ = [
    "AudioDevice",
    "AudioError",
    "AudioFormat",
    "AudioPlayer",
    "AudioRecorder",
    "AudioSettings",
    "BlockAggregator",
    "CaptureDevice",
    "DeviceState",
    "DisposedError",
    "InvalidArgumentError",
    "PcmSource",
    "PlaybackDevice",
    "PlayerSettings",
    "PositionTracker",
    "SampleProvider",
    "SampleRingBuffer",
    "SampleSource",
    "SessionState",
    "SettingsManager",
    "SoundDeviceInput",
    "SoundDeviceOutput",
    "StoppedEvent",
    "UnavailableError",
    "UnsupportedOperationError",
    "fetch",
    "open_buffered_player",
    "open_player",
    "open_recorder",
    "open_source",
    "query_devices",
    "resolve_device",
]
