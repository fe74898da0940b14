"""
Block splitting utilities (pure).

Purpose:
- Cut a float32 signal (a WAV file, a test tone) into the fixed-size blocks
  the capture path consumes, so replayed audio travels exactly like live
  microphone audio.

Invariants:
- Mono float32
- Every returned block has exactly `block_samples` samples
- The trailing partial block is zero-padded (silence) or dropped

Design:
- Pure functions only (no queues, no timing, no IO).
"""

from __future__ import annotations

import numpy as np

from audio.errors import ConfigurationError
from spec import CAPTURE_BLOCK_SAMPLES, PCM16_SAMPLE_WIDTH_BYTES


def split_into_blocks(
    samples: np.ndarray,
    *,
    block_samples: int = CAPTURE_BLOCK_SAMPLES,
    pad_final: bool = True,
) -> list[np.ndarray]:
    """
    Split a mono float signal into fixed-size blocks.

    Args:
        samples:
            1D array of float samples (anything array-like is accepted).
        block_samples:
            Samples per block. v1 capture uses 1024.
        pad_final:
            True: zero-pad the incomplete trailing block.
            False: drop it.

    Returns:
        List of float32 arrays, each exactly `block_samples` long.

    Raises:
        ConfigurationError if block_samples is not positive.
    """
    if block_samples <= 0:
        raise ConfigurationError("block_samples must be > 0")

    audio = np.asarray(samples, dtype=np.float32).ravel()

    # Fast-path: empty input
    if audio.size == 0:
        return []

    whole_blocks, remainder = divmod(audio.size, block_samples)

    out: list[np.ndarray] = []
    end = whole_blocks * block_samples
    for offset in range(0, end, block_samples):
        out.append(audio[offset : offset + block_samples])

    if remainder and pad_final:
        tail = np.zeros(block_samples, dtype=np.float32)
        tail[:remainder] = audio[end:]
        out.append(tail)

    return out


def bytes_to_block_count(
    num_bytes: int,
    *,
    block_samples: int = CAPTURE_BLOCK_SAMPLES,
    sample_width_bytes: int = PCM16_SAMPLE_WIDTH_BYTES,
) -> int:
    """
    Return the number of whole PCM16 blocks represented by num_bytes.

    Useful for observability (bytes sent -> blocks sent) and tests.

    Raises:
        ConfigurationError if parameters are invalid.
    """
    if block_samples <= 0 or sample_width_bytes <= 0:
        raise ConfigurationError("block_samples and sample_width_bytes must be > 0")

    if num_bytes <= 0:
        return 0

    return num_bytes // (block_samples * sample_width_bytes)
