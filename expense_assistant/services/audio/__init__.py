"""
Audio Services Package

Device interfaces, PortAudio implementations, PCM helpers, the gapless
playback timeline and the alert chime.
"""

from expense_assistant.services.audio.interface import (
    AudioDeviceError,
    ClipPlayer,
    DeviceUnavailableError,
    MicrophoneCapture,
    PlaybackOutput,
    PlaybackSource,
)
from expense_assistant.services.audio.devices import (
    SoundDeviceClipPlayer,
    SoundDeviceMicrophone,
    SoundDeviceOutput,
)
from expense_assistant.services.audio.chime import play_chime, render_chime
from expense_assistant.services.audio.pcm import (
    float_to_pcm16,
    pcm16_duration,
    pcm16_to_float,
)
from expense_assistant.services.audio.playback import PlaybackTimeline

__all__ = [
    # Interfaces
    "ClipPlayer",
    "MicrophoneCapture",
    "PlaybackOutput",
    "PlaybackSource",
    # Exceptions
    "AudioDeviceError",
    "DeviceUnavailableError",
    # sounddevice implementation
    "SoundDeviceClipPlayer",
    "SoundDeviceMicrophone",
    "SoundDeviceOutput",
    # Helpers
    "PlaybackTimeline",
    "float_to_pcm16",
    "pcm16_duration",
    "pcm16_to_float",
    "play_chime",
    "render_chime",
]
