"""
Error taxonomy for the audio pipeline.

- ProtocolAnomaly: non-fatal; the offending input is dropped and logged.
- ConfigurationError: caller passed an invalid parameter; nothing mutated.
- ResourceAcquisitionFailure: a live source could not be opened.
"""

from __future__ import annotations


class AudioPipelineError(Exception):
    """Base class for audio pipeline errors."""


class ProtocolAnomaly(AudioPipelineError):
    """
    Raised (or reported to observers) when inbound stream data violates the
    fragment protocol.

    Examples: a fragment outside an active stream, undecodable base64,
    a message missing required fields.

    Never fatal. Stream state is left exactly as it was.
    """

    def __init__(self, reason: str, *, detail: str | None = None) -> None:
        super().__init__(reason if detail is None else f"{reason}: {detail}")
        self.reason = reason
        self.detail = detail


class ConfigurationError(AudioPipelineError, ValueError):
    """
    Raised synchronously for invalid parameters (odd bar count,
    non-positive block size, unknown byte order).
    """


class ResourceAcquisitionFailure(AudioPipelineError):
    """
    Raised when a live signal source is unavailable at start().

    The capture session releases anything it had already acquired before
    re-raising.
    """
