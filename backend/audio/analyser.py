"""
Spectral analysis tap for the live capture path.

Mirrors the browser AnalyserNode the capture view was designed around, so
SpectrumMapper sees magnitudes on the same byte scale:

- keeps the most recent `fft_size` samples
- Blackman window -> real FFT -> |X| / fft_size
- exponential smoothing across calls (smoothing_time_constant)
- magnitude -> dB, then [min_db, max_db] mapped onto [0, 255]

Stateful but synchronous; owned exclusively by one CaptureSession.
"""

from __future__ import annotations

import numpy as np
from scipy.signal import get_window

from audio.errors import ConfigurationError
from spec import (
    ANALYSER_FFT_SIZE,
    ANALYSER_MAX_DB,
    ANALYSER_MIN_DB,
    ANALYSER_SMOOTHING,
    ANALYSER_WINDOW,
    BYTE_MAX,
    CAPTURE_SAMPLE_RATE_HZ,
    TIME_DOMAIN_CENTER,
)


class SpectrumAnalyser:
    """
    Rolling FFT analyser producing byte-scaled magnitude and waveform data.
    """

    def __init__(
        self,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        fft_size: int = ANALYSER_FFT_SIZE,
        smoothing: float = ANALYSER_SMOOTHING,
        min_db: float = ANALYSER_MIN_DB,
        max_db: float = ANALYSER_MAX_DB,
    ) -> None:
        if sample_rate_hz <= 0:
            raise ConfigurationError("sample_rate_hz must be > 0")
        # Power of two keeps bin math identical to the browser analyser
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ConfigurationError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ConfigurationError("smoothing must be in [0, 1)")
        if min_db >= max_db:
            raise ConfigurationError("min_db must be < max_db")

        self._sample_rate_hz = sample_rate_hz
        self._fft_size = fft_size
        self._smoothing = smoothing
        self._min_db = min_db
        self._max_db = max_db

        self._window = get_window(ANALYSER_WINDOW, fft_size).astype(np.float64)
        self._buffer = np.zeros(fft_size, dtype=np.float64)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float64)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def fft_size(self) -> int:
        return self._fft_size

    @property
    def frequency_bin_count(self) -> int:
        return self._fft_size // 2

    @property
    def sample_rate_hz(self) -> int:
        return self._sample_rate_hz

    @property
    def bin_hz(self) -> float:
        """Width of one frequency bin: sample_rate / (2 * bin_count)."""
        return self._sample_rate_hz / (2 * self.frequency_bin_count)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def push(self, samples: np.ndarray) -> None:
        """
        Append a block of float samples, keeping only the newest fft_size.
        """
        block = np.asarray(samples, dtype=np.float64).ravel()
        if block.size == 0:
            return
        if block.size >= self._fft_size:
            self._buffer = block[-self._fft_size :].copy()
            return
        self._buffer = np.concatenate((self._buffer[block.size :], block))

    def reset(self) -> None:
        """Forget buffered audio and smoothing history."""
        self._buffer.fill(0.0)
        self._smoothed.fill(0.0)

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def float_frequency_data(self) -> np.ndarray:
        """
        Smoothed magnitude spectrum in dB (one value per bin).

        Advances the smoothing state; call once per redraw.
        """
        spectrum = np.fft.rfft(self._buffer * self._window)
        magnitude = np.abs(spectrum[: self.frequency_bin_count]) / self._fft_size

        self._smoothed = (
            self._smoothing * self._smoothed
            + (1.0 - self._smoothing) * magnitude
        )

        with np.errstate(divide="ignore"):
            return 20.0 * np.log10(self._smoothed)

    def byte_frequency_data(self) -> np.ndarray:
        """
        Magnitude spectrum as uint8, [min_db, max_db] -> [0, 255].
        """
        db = self.float_frequency_data()
        scale = BYTE_MAX / (self._max_db - self._min_db)
        scaled = np.floor(scale * (db - self._min_db))
        return np.clip(np.nan_to_num(scaled, neginf=0.0), 0, BYTE_MAX).astype(np.uint8)

    def byte_time_domain_data(self) -> np.ndarray:
        """Current waveform as uint8 centered on 128."""
        scaled = np.floor(TIME_DOMAIN_CENTER * (1.0 + self._buffer))
        return np.clip(scaled, 0, BYTE_MAX).astype(np.uint8)
