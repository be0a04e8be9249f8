"""
Appointment alert chime: a half-second sine sweep from 600 Hz down to
400 Hz with an exponentially decaying gain (0.2 -> 0.01).
"""

import numpy as np

from expense_assistant.services.audio.interface import ClipPlayer

CHIME_SAMPLE_RATE = 24000
CHIME_DURATION_SECONDS = 0.5
CHIME_START_HZ = 600.0
CHIME_END_HZ = 400.0
CHIME_START_GAIN = 0.2
CHIME_END_GAIN = 0.01


def render_chime(sample_rate: int = CHIME_SAMPLE_RATE) -> np.ndarray:
    """Render the chime as float32 samples."""
    n = int(sample_rate * CHIME_DURATION_SECONDS)
    t = np.arange(n, dtype=np.float64) / sample_rate
    progress = t / CHIME_DURATION_SECONDS

    frequency = CHIME_START_HZ * (CHIME_END_HZ / CHIME_START_HZ) ** progress
    # Integrate instantaneous frequency so the sweep has no phase jumps
    phase = 2 * np.pi * np.cumsum(frequency) / sample_rate
    gain = CHIME_START_GAIN * (CHIME_END_GAIN / CHIME_START_GAIN) ** progress

    return (np.sin(phase) * gain).astype(np.float32)


async def play_chime(player: ClipPlayer, sample_rate: int = CHIME_SAMPLE_RATE) -> None:
    await player.play(render_chime(sample_rate), sample_rate)
