"""
PCM helpers.

The live channel speaks raw 16-bit little-endian mono PCM in both
directions; the devices work in float32.
"""

import numpy as np

PCM16_SCALE = 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Encode float32 samples in [-1, 1] as PCM16 bytes, clipping overshoot."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Decode PCM16 bytes to float32 samples."""
    # A dangling odd byte is dropped
    usable = len(data) - (len(data) % 2)
    return np.frombuffer(data[:usable], dtype="<i2").astype(np.float32) / PCM16_SCALE


def pcm16_duration(data: bytes, sample_rate: int) -> float:
    """Duration in seconds of a PCM16 mono buffer."""
    return (len(data) // 2) / sample_rate
