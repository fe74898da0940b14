"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for all behavioral invariants in the system.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Capture Format (PCM16 mono @ 16kHz, 1024-sample blocks)
# =============================================================================

CAPTURE_SAMPLE_RATE_HZ: Final[int] = 16_000
CAPTURE_CHANNELS: Final[int] = 1
CAPTURE_BLOCK_SAMPLES: Final[int] = 1024
PCM16_SAMPLE_WIDTH_BYTES: Final[int] = 2

CAPTURE_BLOCK_BYTES: Final[int] = CAPTURE_BLOCK_SAMPLES * PCM16_SAMPLE_WIDTH_BYTES

# Asymmetric full-scale mapping (two's complement range)
PCM16_MIN: Final[int] = -32768
PCM16_MAX: Final[int] = 32767
PCM16_NEGATIVE_SCALE: Final[float] = 32768.0
PCM16_POSITIVE_SCALE: Final[float] = 32767.0

# Blocks buffered between the PortAudio thread and the event loop
MICROPHONE_QUEUE_MAX_BLOCKS: Final[int] = 32

# =============================================================================
# Analysis Tap (browser AnalyserNode defaults used by the capture view)
# =============================================================================

ANALYSER_FFT_SIZE: Final[int] = 512
ANALYSER_SMOOTHING: Final[float] = 0.8
ANALYSER_MIN_DB: Final[float] = -70.0
ANALYSER_MAX_DB: Final[float] = -20.0
ANALYSER_WINDOW: Final[str] = "blackman"

# 16 kHz / 512 = 31.25 Hz per bin
ANALYSER_BIN_HZ: Final[float] = CAPTURE_SAMPLE_RATE_HZ / ANALYSER_FFT_SIZE

BYTE_MAX: Final[int] = 255
TIME_DOMAIN_CENTER: Final[int] = 128

# =============================================================================
# Visualization
# =============================================================================

# Voice-relevant band
SPECTRUM_LOW_HZ: Final[float] = 80.0
SPECTRUM_HIGH_HZ: Final[float] = 2000.0

# value ** 0.7 keeps quiet speech legible
SPECTRUM_COMPRESSION_EXPONENT: Final[float] = 0.7

VISUALIZER_BAR_COUNT: Final[int] = 64
VISUALIZER_FRAME_INTERVAL_S: Final[float] = 1.0 / 60.0

BAR_MIN_HEIGHT_PX: Final[float] = 4.0
BAR_MAX_HEIGHT_PX: Final[float] = 60.0
WAVEFORM_AMPLITUDE_SCALE: Final[float] = 0.8

# =============================================================================
# Session Timing
# =============================================================================

SESSION_DURATION_TICK_S: Final[float] = 1.0

# =============================================================================
# Inbound Audio Stream Protocol
# =============================================================================

MSG_AUDIO_START: Final[str] = "audio_start"
MSG_AUDIO_CHUNK: Final[str] = "audio_chunk"
MSG_AUDIO_END: Final[str] = "audio_end"
MSG_AUDIO_ERROR: Final[str] = "audio_error"

TRANSPORT_ENCODING_BASE64: Final[str] = "base64"
TRANSPORT_ENCODING_IDENTITY: Final[str] = "identity"

DEFAULT_ASSET_MIME_TYPE: Final[str] = "audio/wav"

# Cap on payload preview included in diagnostics
LOG_PAYLOAD_PREVIEW_CHARS: Final[int] = 100
