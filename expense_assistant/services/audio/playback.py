"""
Gapless Playback Timeline

Streamed model audio arrives as many small frames, sometimes in bursts.
Each frame is scheduled to start where the previous one ends:

    start = max(next_start, output.current_time)
    next_start = start + duration

so frames never overlap and never leave gaps, regardless of when they
arrive. Every scheduled frame is kept in a live set until it ends so
that a barge-in can stop all of them at once.

INVARIANT: Only the event loop thread touches the timeline. The output
delivers `on_ended` callbacks on the loop, so no lock is needed.
"""

import itertools

import numpy as np
import structlog

from expense_assistant.services.audio.interface import (
    AudioDeviceError,
    PlaybackOutput,
    PlaybackSource,
)


logger = structlog.get_logger(__name__)


class PlaybackTimeline:
    """Monotonic playback cursor plus the set of live sources."""

    def __init__(self, output: PlaybackOutput):
        self._output = output
        self._next_start = 0.0
        self._sources: dict[int, PlaybackSource] = {}
        self._ids = itertools.count()

    @property
    def next_start_time(self) -> float:
        return self._next_start

    @property
    def active_count(self) -> int:
        return len(self._sources)

    def enqueue(self, samples: np.ndarray) -> float:
        """
        Schedule a frame right after everything already queued.

        Returns:
            The start time assigned to the frame
        """
        start = max(self._next_start, self._output.current_time)
        source_id = next(self._ids)

        def on_ended() -> None:
            self._sources.pop(source_id, None)

        self._sources[source_id] = self._output.play_at(samples, start, on_ended)
        self._next_start = start + len(samples) / self._output.sample_rate
        return start

    def interrupt(self) -> int:
        """
        Stop every scheduled frame and reset the cursor to now.

        Returns:
            Number of frames stopped
        """
        sources = list(self._sources.values())
        self._sources.clear()
        for source in sources:
            try:
                source.stop()
            except AudioDeviceError as e:
                logger.warning("playback_stop_failed", error=str(e))
        self._next_start = self._output.current_time
        return len(sources)
