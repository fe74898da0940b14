# backend/protocol/binary.py
"""
Binary framing helpers for audio transport.

Client → Server (mic):
    One WebSocket binary frame per captured block, no header:
    CAPTURE_BLOCK_BYTES of PCM16 little-endian mono audio
    (1024 samples @ 16kHz = 2048 bytes)

Server → Client (playback):
    Arrives as base64 JSON fragments (see protocol.messages); this module
    only supplies the sequence continuity check for their chunkIndex.

Usage example:

    payload = encode_capture_frame(block)
    await ws.send(payload)

    result = check_sequence_gap(last_seq=prev_index, current_seq=fragment.sequence_index)
    if result.gap:
        log_event({
            "event_type": "FRAGMENT_SEQ_GAP",
            "expected": result.expected,
            "actual": result.actual,
            "gap_size": result.gap_size,
        })
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from audio.pcm import encode_pcm16le
from spec import CAPTURE_BLOCK_SAMPLES, PCM16_SAMPLE_WIDTH_BYTES


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class InvalidFrameLength(BinaryProtocolError):
    """
    Raised when a binary audio frame does not match the expected byte length.

    Indicates a violation of the binary framing contract (truncated, oversized,
    or odd-length payload). The frame is unsafe to send and must be dropped.
    """


# -------------------------
# Client → Server (mic)
# -------------------------

def expected_frame_bytes(block_samples: int = CAPTURE_BLOCK_SAMPLES) -> int:
    """Byte length of one outbound frame for a given block size."""
    return block_samples * PCM16_SAMPLE_WIDTH_BYTES


def encode_capture_frame(
    samples: np.ndarray,
    *,
    block_samples: int = CAPTURE_BLOCK_SAMPLES,
) -> bytes:
    """
    Encode one captured float32 block as an outbound binary frame.
    """
    payload = encode_pcm16le(samples)

    expected = expected_frame_bytes(block_samples)
    if len(payload) != expected:
        raise InvalidFrameLength(
            f"Capture frame length {len(payload)} != {expected}"
        )

    return payload


def decode_capture_frame(payload: bytes) -> np.ndarray:
    """
    Decode an outbound frame back to PCM16 samples (loopback/testing).
    """
    if len(payload) % PCM16_SAMPLE_WIDTH_BYTES != 0:
        raise InvalidFrameLength(f"Odd PCM16 payload length {len(payload)}")
    return np.frombuffer(payload, dtype="<i2")


# -------------------------
# Sequence gap detection
# -------------------------

@dataclass(frozen=True)
class SeqCheckResult:
    """
    Result of a sequence continuity check.
    """
    gap: bool
    expected: int
    actual: int

    @property
    def gap_size(self) -> int:
        """
        Number of fragments skipped (0 if no gap or if the index went backwards).
        """
        if not self.gap or self.actual < self.expected:
            return 0
        return self.actual - self.expected


def check_sequence_gap(
    *,
    last_seq: Optional[int],
    current_seq: int,
) -> SeqCheckResult:
    """
    Check whether `current_seq` directly follows `last_seq`.

    Fragment indices do not wrap. A repeated or backwards index is
    reported as a gap with gap_size 0.

    Pure function; never raises.
    """
    if last_seq is None or current_seq == last_seq + 1:
        return SeqCheckResult(
            gap=False,
            expected=current_seq,
            actual=current_seq,
        )

    return SeqCheckResult(
        gap=True,
        expected=last_seq + 1,
        actual=current_seq,
    )
