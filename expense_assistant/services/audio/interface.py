"""
Abstract Audio Device Interface

DESIGN DECISION: Audio hardware sits behind small interfaces, the same
way storage and the model service do. The live session manager only
needs:
1. A microphone that yields float32 frames
2. An output with a monotonic clock that can start a buffer at a given time
3. A fire-and-forget clip player for spoken replies and alert chimes

Device callbacks run on PortAudio threads; implementations hand data
back to the event loop so everything the session manager touches stays
on a single thread.
"""

from abc import ABC, abstractmethod
from typing import Callable

import numpy as np


class AudioDeviceError(Exception):
    """Base exception for audio device operations."""
    pass


class DeviceUnavailableError(AudioDeviceError):
    """The microphone (or output device) could not be acquired. Not retried."""
    pass


class MicrophoneCapture(ABC):
    """A microphone capture handle."""

    @abstractmethod
    async def start(self) -> None:
        """
        Acquire the device and begin capturing.

        Raises:
            DeviceUnavailableError: If no microphone can be opened
        """
        pass

    @abstractmethod
    async def read(self) -> np.ndarray:
        """Wait for the next captured frame (mono float32 in [-1, 1])."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop capturing. Frames already queued may still be read."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the device."""
        pass


class PlaybackSource(ABC):
    """Handle on one scheduled buffer."""

    @abstractmethod
    def stop(self) -> None:
        """Stop immediately, whether or not playback has started."""
        pass


class PlaybackOutput(ABC):
    """An output device with a sample-accurate playback clock."""

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        pass

    @property
    @abstractmethod
    def current_time(self) -> float:
        """Seconds of audio the device has rendered since start()."""
        pass

    @abstractmethod
    async def start(self) -> None:
        """
        Open the output stream.

        Raises:
            DeviceUnavailableError: If no output device can be opened
        """
        pass

    @abstractmethod
    def play_at(
        self,
        samples: np.ndarray,
        start_time: float,
        on_ended: Callable[[], None],
    ) -> PlaybackSource:
        """
        Schedule a buffer to start at `start_time` on the output clock.

        `on_ended` is invoked on the event loop once the buffer has
        finished playing. It is not invoked for stopped buffers.
        """
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class ClipPlayer(ABC):
    """One-shot playback for short clips."""

    @abstractmethod
    async def play(self, samples: np.ndarray, sample_rate: int) -> None:
        """
        Start playing a clip and return without waiting for it to end.

        Raises:
            AudioDeviceError: If playback cannot start
        """
        pass
