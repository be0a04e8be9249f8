"""
sounddevice Audio Devices

PortAudio-backed implementations of the audio interfaces.

sounddevice is imported when a device is opened rather than at module
import, since loading it requires the PortAudio shared library.
"""

import asyncio
import threading
from typing import Callable, Optional

import numpy as np
import structlog

from expense_assistant.services.audio.interface import (
    AudioDeviceError,
    ClipPlayer,
    DeviceUnavailableError,
    MicrophoneCapture,
    PlaybackOutput,
    PlaybackSource,
)


logger = structlog.get_logger(__name__)


def _load_sounddevice():
    try:
        import sounddevice
    except OSError as e:
        # Raised when the PortAudio library itself is missing
        raise DeviceUnavailableError(f"Audio backend unavailable: {e}") from e
    return sounddevice


# =============================================================================
# MICROPHONE
# =============================================================================

class SoundDeviceMicrophone(MicrophoneCapture):
    """
    Microphone capture via sd.InputStream.

    The PortAudio callback copies each block and posts it to an asyncio
    queue on the owning loop. When the consumer falls behind, the oldest
    frames are dropped.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        block_size: int = 4096,
        max_queued_frames: int = 32,
    ):
        self._sample_rate = sample_rate
        self._block_size = block_size
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max_queued_frames)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream = None

    async def start(self) -> None:
        sd = _load_sounddevice()
        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.InputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                blocksize=self._block_size,
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise DeviceUnavailableError(f"Microphone unavailable: {e}") from e

    def _callback(self, indata, frames, time_info, status) -> None:
        if status:
            logger.debug("microphone_status", status=str(status))
        # sounddevice returns [N, 1] even for one channel
        frame = indata[:, 0].copy()
        self._loop.call_soon_threadsafe(self._enqueue, frame)

    def _enqueue(self, frame: np.ndarray) -> None:
        if self._queue.full():
            self._queue.get_nowait()
        self._queue.put_nowait(frame)

    async def read(self) -> np.ndarray:
        return await self._queue.get()

    def stop(self) -> None:
        if self._stream is not None:
            self._stream.stop()

    def close(self) -> None:
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.close()


# =============================================================================
# SCHEDULED OUTPUT
# =============================================================================

class _ScheduledBuffer(PlaybackSource):
    def __init__(
        self,
        output: "SoundDeviceOutput",
        samples: np.ndarray,
        start_frame: int,
        on_ended: Callable[[], None],
    ):
        self.output = output
        self.samples = samples
        self.start_frame = start_frame
        self.end_frame = start_frame + len(samples)
        self.on_ended = on_ended
        self.started = False

    def stop(self) -> None:
        self.output._discard(self)


class SoundDeviceOutput(PlaybackOutput):
    """
    A mixing output stream with its own sample clock.

    The clock is the number of frames rendered by the callback, so
    `current_time` advances exactly with what the device has played.
    Buffers scheduled in the past start immediately.
    """

    def __init__(self, sample_rate: int = 24000):
        self._sample_rate = sample_rate
        self._frames_rendered = 0
        self._buffers: list[_ScheduledBuffer] = []
        # Guards _buffers and _frames_rendered against the PortAudio thread
        self._lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._stream = None

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def current_time(self) -> float:
        with self._lock:
            return self._frames_rendered / self._sample_rate

    async def start(self) -> None:
        sd = _load_sounddevice()
        self._loop = asyncio.get_running_loop()
        try:
            self._stream = sd.OutputStream(
                samplerate=self._sample_rate,
                channels=1,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._stream = None
            raise DeviceUnavailableError(f"Audio output unavailable: {e}") from e

    def play_at(
        self,
        samples: np.ndarray,
        start_time: float,
        on_ended: Callable[[], None],
    ) -> PlaybackSource:
        if self._stream is None:
            raise AudioDeviceError("Output stream is not open")
        buffer = _ScheduledBuffer(
            self,
            np.asarray(samples, dtype=np.float32),
            int(round(start_time * self._sample_rate)),
            on_ended,
        )
        with self._lock:
            self._buffers.append(buffer)
        return buffer

    def _discard(self, buffer: _ScheduledBuffer) -> None:
        with self._lock:
            if buffer in self._buffers:
                self._buffers.remove(buffer)

    def _callback(self, outdata, frames, time_info, status) -> None:
        mix = np.zeros(frames, dtype=np.float32)
        finished: list[_ScheduledBuffer] = []

        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            for buffer in self._buffers:
                # A buffer scheduled before the clock caught up starts now, whole
                if not buffer.started and buffer.start_frame < block_start:
                    shift = block_start - buffer.start_frame
                    buffer.start_frame += shift
                    buffer.end_frame += shift
                lo = max(buffer.start_frame, block_start)
                hi = min(buffer.end_frame, block_end)
                if lo < hi:
                    buffer.started = True
                    mix[lo - block_start:hi - block_start] += (
                        buffer.samples[lo - buffer.start_frame:hi - buffer.start_frame]
                    )
                if buffer.end_frame <= block_end:
                    finished.append(buffer)
            for buffer in finished:
                self._buffers.remove(buffer)
            self._frames_rendered = block_end

        outdata[:, 0] = np.clip(mix, -1.0, 1.0)

        if self._loop is not None:
            for buffer in finished:
                self._loop.call_soon_threadsafe(buffer.on_ended)

    def close(self) -> None:
        with self._lock:
            self._buffers.clear()
        if self._stream is not None:
            stream, self._stream = self._stream, None
            stream.stop()
            stream.close()


# =============================================================================
# ONE-SHOT CLIPS
# =============================================================================

class SoundDeviceClipPlayer(ClipPlayer):
    """Plays short clips with sd.play, which returns immediately."""

    async def play(self, samples: np.ndarray, sample_rate: int) -> None:
        sd = _load_sounddevice()
        try:
            sd.play(np.asarray(samples, dtype=np.float32), samplerate=sample_rate)
        except (sd.PortAudioError, ValueError) as e:
            raise AudioDeviceError(f"Clip playback failed: {e}") from e
