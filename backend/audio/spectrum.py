"""
Spectrum -> bar-graph mapping for the live visualizer.

The mapper restricts the spectrum to the voice band, compresses amplitudes
with value ** 0.7 and mirrors the result so the lowest frequencies sit in
the center and the highest at both edges:

    bars:  [hi ... lo | lo ... hi]
    index:  0      h-1  h      N-1

Pure functions plus one small configuration holder. No rendering here;
pixel helpers only translate normalized heights for a renderer.
"""

from __future__ import annotations

import math
import time
from typing import Sequence

import numpy as np

from audio.errors import ConfigurationError
from audio.frames import VisualizationFrame
from spec import (
    ANALYSER_BIN_HZ,
    BAR_MAX_HEIGHT_PX,
    BAR_MIN_HEIGHT_PX,
    BYTE_MAX,
    SPECTRUM_COMPRESSION_EXPONENT,
    SPECTRUM_HIGH_HZ,
    SPECTRUM_LOW_HZ,
    TIME_DOMAIN_CENTER,
    VISUALIZER_BAR_COUNT,
    WAVEFORM_AMPLITUDE_SCALE,
)


def bin_width_hz(sample_rate_hz: float, fft_size: int) -> float:
    """
    Frequency covered by one bin: sample_rate / (2 * bin_count).

    With the capture defaults (16 kHz, fft 512) this is 31.25 Hz.
    """
    if sample_rate_hz <= 0 or fft_size <= 0:
        raise ConfigurationError("sample_rate_hz and fft_size must be > 0")
    return sample_rate_hz / fft_size


def validate_bar_count(bar_count: int) -> int:
    """Bar counts must be positive and even (two mirrored halves)."""
    if bar_count <= 0 or bar_count % 2 != 0:
        raise ConfigurationError(f"bar_count must be a positive even integer, got {bar_count}")
    return bar_count


class SpectrumMapper:
    """
    Maps byte magnitudes to a symmetric VisualizationFrame.
    """

    def __init__(
        self,
        *,
        low_hz: float = SPECTRUM_LOW_HZ,
        high_hz: float = SPECTRUM_HIGH_HZ,
        exponent: float = SPECTRUM_COMPRESSION_EXPONENT,
    ) -> None:
        if low_hz < 0 or high_hz <= low_hz:
            raise ConfigurationError("need 0 <= low_hz < high_hz")
        if exponent <= 0:
            raise ConfigurationError("exponent must be > 0")

        self.low_hz = low_hz
        self.high_hz = high_hz
        self.exponent = exponent

    def band_bins(self, bin_hz: float) -> tuple[int, int]:
        """Return (min_bin, max_bin) of the voice band for a given bin width."""
        if bin_hz <= 0:
            raise ConfigurationError(f"bin_hz must be > 0, got {bin_hz}")
        return math.floor(self.low_hz / bin_hz), math.floor(self.high_hz / bin_hz)

    def half_heights(
        self,
        magnitudes: Sequence[int] | np.ndarray,
        half: int,
        bin_hz: float,
    ) -> np.ndarray:
        """
        Compressed heights for one half of the display, low -> high frequency.

        Bins beyond the end of `magnitudes` read as 0.
        """
        min_bin, max_bin = self.band_bins(bin_hz)
        usable_bins = max_bin - min_bin

        mags = np.asarray(magnitudes, dtype=np.float64).ravel()
        bin_index = min_bin + np.floor(np.arange(half) / half * usable_bins).astype(np.int64)

        values = np.zeros(half, dtype=np.float64)
        present = bin_index < mags.size
        values[present] = mags[bin_index[present]]

        normalized = np.clip(values, 0, BYTE_MAX) / BYTE_MAX
        return np.power(normalized, self.exponent)

    def map(
        self,
        magnitudes: Sequence[int] | np.ndarray,
        bar_count: int = VISUALIZER_BAR_COUNT,
        bin_hz: float = ANALYSER_BIN_HZ,
    ) -> VisualizationFrame:
        """
        Build one frame of `bar_count` mirrored heights in [0, 1].

        Raises:
            ConfigurationError for an odd / non-positive bar_count or a
            non-positive bin width.
        """
        validate_bar_count(bar_count)
        half = bar_count // 2

        heights = self.half_heights(magnitudes, half, bin_hz)
        mirrored = np.concatenate((heights[::-1], heights))

        return VisualizationFrame(
            heights=tuple(float(h) for h in mirrored),
            ts_ms=time.time_ns() // 1_000_000,
        )


# -------------------------
# Renderer helpers
# -------------------------

def to_pixel_heights(
    frame: VisualizationFrame | Sequence[float],
    *,
    min_px: float = BAR_MIN_HEIGHT_PX,
    max_px: float = BAR_MAX_HEIGHT_PX,
) -> list[float]:
    """Scale normalized heights to pixels, never below min_px."""
    return [max(min_px, float(h) * max_px) for h in frame]


def waveform_bars(
    time_domain: Sequence[int] | np.ndarray,
    bar_count: int = VISUALIZER_BAR_COUNT,
    *,
    min_px: float = BAR_MIN_HEIGHT_PX,
    scale: float = WAVEFORM_AMPLITUDE_SCALE,
) -> list[float]:
    """
    Time-domain variant: bar i samples the waveform at i * len / bar_count
    and shows |value - 128| * scale pixels.
    """
    if bar_count <= 0:
        raise ConfigurationError("bar_count must be > 0")

    data = np.asarray(time_domain, dtype=np.float64).ravel()
    if data.size == 0:
        return [min_px] * bar_count

    index = (np.arange(bar_count) * data.size) // bar_count
    amplitude = np.abs(data[index] - TIME_DOMAIN_CENTER)
    return [max(min_px, float(a) * scale) for a in amplitude]
