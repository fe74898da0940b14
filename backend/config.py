"""
Application configuration.

Responsibilities:
- Load deployment-specific configuration
- Read environment variables
- Provide a typed, immutable config object

Non-responsibilities:
- No pipeline logic
- No protocol constants (those live in spec.py)
- No runtime mutation
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

from audio.errors import ConfigurationError
from spec import (
    ANALYSER_FFT_SIZE,
    CAPTURE_BLOCK_SAMPLES,
    CAPTURE_SAMPLE_RATE_HZ,
    DEFAULT_ASSET_MIME_TYPE,
    VISUALIZER_BAR_COUNT,
)


_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from e


def _optional_float(env: Mapping[str, str], key: str) -> float | None:
    raw = env.get(key)
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from e


def _device(raw: str | None) -> int | str | None:
    """sounddevice accepts an index or a name substring."""
    if raw is None or raw == "":
        return None
    return int(raw) if raw.lstrip("-").isdigit() else raw


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable application configuration.

    Constructed once at process startup.
    Passed downward to the gateway / capture session.
    """

    # ------------------------------------------------------------------
    # Environment
    # ------------------------------------------------------------------

    env: str
    log_level: str

    # ------------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------------

    ws_url: str

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    capture_sample_rate_hz: int
    capture_block_samples: int
    input_device: int | str | None
    max_recording_s: float | None

    # ------------------------------------------------------------------
    # Visualization
    # ------------------------------------------------------------------

    visualizer_bar_count: int
    analyser_fft_size: int

    # ------------------------------------------------------------------
    # Playback assets
    # ------------------------------------------------------------------

    audio_mime_type: str
    audio_output_dir: str

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    enable_json_logs: bool

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @staticmethod
    def load_from_env(env: Mapping[str, str] | None = None) -> AppConfig:
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError if a numeric variable does not parse or a
            capture parameter is out of range.
        """
        env = os.environ if env is None else env

        config = AppConfig(
            env=env.get("ENV", "dev"),
            log_level=env.get("LOG_LEVEL", "INFO").upper(),

            ws_url=env.get("WS_URL", "ws://localhost:8000/ws"),

            capture_sample_rate_hz=_int(env, "CAPTURE_SAMPLE_RATE_HZ", CAPTURE_SAMPLE_RATE_HZ),
            capture_block_samples=_int(env, "CAPTURE_BLOCK_SAMPLES", CAPTURE_BLOCK_SAMPLES),
            input_device=_device(env.get("INPUT_DEVICE")),
            max_recording_s=_optional_float(env, "MAX_RECORDING_S"),

            visualizer_bar_count=_int(env, "VISUALIZER_BAR_COUNT", VISUALIZER_BAR_COUNT),
            analyser_fft_size=_int(env, "ANALYSER_FFT_SIZE", ANALYSER_FFT_SIZE),

            audio_mime_type=env.get("AUDIO_MIME_TYPE", DEFAULT_ASSET_MIME_TYPE),
            audio_output_dir=env.get("AUDIO_OUTPUT_DIR", "."),

            enable_json_logs=env.get("ENABLE_JSON_LOGS", "1") == "1",
        )

        if config.log_level not in _LOG_LEVELS:
            raise ConfigurationError(f"LOG_LEVEL must be one of {sorted(_LOG_LEVELS)}")
        if config.capture_sample_rate_hz <= 0:
            raise ConfigurationError("CAPTURE_SAMPLE_RATE_HZ must be > 0")
        if config.capture_block_samples <= 0:
            raise ConfigurationError("CAPTURE_BLOCK_SAMPLES must be > 0")
        if config.visualizer_bar_count <= 0 or config.visualizer_bar_count % 2:
            raise ConfigurationError("VISUALIZER_BAR_COUNT must be a positive even integer")

        return config
