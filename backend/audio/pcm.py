"""PCM conversion utilities."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from audio.errors import ConfigurationError
from spec import PCM16_NEGATIVE_SCALE, PCM16_POSITIVE_SCALE

_BYTE_ORDER_DTYPES = {
    "little": "<i2",
    "big": ">i2",
}


def float32_to_pcm16(samples: Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert normalized float samples to signed 16-bit PCM.

    Each sample is clamped to [-1.0, 1.0], then negatives scale by 32768 and
    non-negatives by 32767, rounded to the nearest integer. Out-of-range
    input is clamped silently (NaN becomes 0).

    Pure function. No resampling. No channel mixing.
    """
    audio = np.asarray(samples, dtype=np.float64).ravel()
    audio = np.nan_to_num(audio, nan=0.0, posinf=1.0, neginf=-1.0)
    audio = np.clip(audio, -1.0, 1.0)

    scaled = np.where(
        audio < 0.0,
        audio * PCM16_NEGATIVE_SCALE,
        audio * PCM16_POSITIVE_SCALE,
    )
    return np.rint(scaled).astype(np.int16)


def encode_pcm16le(samples: Sequence[float] | np.ndarray) -> bytes:
    """
    Encode float samples as PCM16 little-endian mono bytes.

    This is the outbound wire format: one call per captured block.
    """
    return float32_to_pcm16(samples).astype("<i2").tobytes()


def pcm16_to_float32(pcm_bytes: bytes, byte_order: str = "little") -> np.ndarray:
    """
    Convert PCM16 mono bytes back to float32 in [-1.0, 1.0].

    Symmetric counterpart of float32_to_pcm16: negatives divide by 32768,
    non-negatives by 32767, so full-scale values round-trip exactly.

    Raises:
        ConfigurationError if byte_order is not "little" or "big".
    """
    dtype = _BYTE_ORDER_DTYPES.get(byte_order)
    if dtype is None:
        raise ConfigurationError(f"Unsupported byte order: {byte_order!r}")

    if len(pcm_bytes) % 2 != 0:
        # Truncated sample; caller should treat as malformed frame upstream.
        pcm_bytes = pcm_bytes[: len(pcm_bytes) - 1]

    audio_i16 = np.frombuffer(pcm_bytes, dtype=dtype).astype(np.float32)
    return np.where(
        audio_i16 < 0,
        audio_i16 / PCM16_NEGATIVE_SCALE,
        audio_i16 / PCM16_POSITIVE_SCALE,
    ).astype(np.float32)
