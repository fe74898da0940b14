"""
Live signal sources for the capture path.

CaptureSession talks to any object satisfying LiveSource. Two concrete
sources live here:

- ArraySource: replays an in-memory float32 signal (tests, WAV replay)
- MicrophoneSource (audio.microphone): PortAudio input via sounddevice

A source hands out fixed-size float32 blocks; read_block() returning None
means the signal has ended.
"""

from __future__ import annotations

import asyncio
import wave
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import numpy as np

from audio.errors import ResourceAcquisitionFailure
from audio.frame_generator import split_into_blocks
from audio.pcm import pcm16_to_float32
from spec import CAPTURE_CHANNELS, CAPTURE_SAMPLE_RATE_HZ, PCM16_SAMPLE_WIDTH_BYTES


@runtime_checkable
class LiveSource(Protocol):
    """
    Minimal contract between CaptureSession and a signal provider.

    open() either fully acquires the source or raises
    ResourceAcquisitionFailure. close() must be idempotent.
    """

    sample_rate_hz: int

    async def open(self, block_samples: int) -> None: ...

    async def read_block(self) -> Optional[np.ndarray]: ...

    def close(self) -> None: ...


class ArraySource:
    """
    Replays a float32 signal block by block.

    realtime=True paces blocks at their natural duration so the downstream
    channel sees live-like timing.
    """

    def __init__(
        self,
        samples: np.ndarray,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        realtime: bool = False,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._samples = np.asarray(samples, dtype=np.float32).ravel()
        self._realtime = realtime
        self._blocks: list[np.ndarray] = []
        self._next = 0
        self._block_duration_s = 0.0
        self.is_open = False

    @classmethod
    def from_wav(
        cls,
        path: str | Path,
        *,
        realtime: bool = True,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
    ) -> ArraySource:
        """
        Load a 16-bit mono WAV file recorded at `sample_rate_hz`.

        No resampling: the file is streamed exactly as the capture path
        would stream a microphone at that rate.

        Raises:
            ResourceAcquisitionFailure if the file is missing, not PCM16 mono,
            or at a different sample rate.
        """
        try:
            with wave.open(str(path), "rb") as wf:
                sr = wf.getframerate()
                sw = wf.getsampwidth()
                ch = wf.getnchannels()
                if sw != PCM16_SAMPLE_WIDTH_BYTES or ch != CAPTURE_CHANNELS:
                    raise ResourceAcquisitionFailure(
                        f"WAV must be mono PCM16. Got sampwidth={sw}, channels={ch}"
                    )
                if sr != sample_rate_hz:
                    raise ResourceAcquisitionFailure(
                        f"WAV must be {sample_rate_hz} Hz. Got {sr} Hz"
                    )
                pcm = wf.readframes(wf.getnframes())
        except (OSError, EOFError, wave.Error) as e:
            raise ResourceAcquisitionFailure(f"Cannot read WAV {path}: {e}") from e

        return cls(pcm16_to_float32(pcm), sample_rate_hz=sr, realtime=realtime)

    async def open(self, block_samples: int) -> None:
        self._blocks = split_into_blocks(self._samples, block_samples=block_samples)
        self._next = 0
        self._block_duration_s = block_samples / self.sample_rate_hz
        self.is_open = True

    async def read_block(self) -> Optional[np.ndarray]:
        if not self.is_open or self._next >= len(self._blocks):
            return None

        # Always yield so other loop tasks (redraw, stop) get a turn
        await asyncio.sleep(self._block_duration_s if self._realtime else 0)

        block = self._blocks[self._next]
        self._next += 1
        return block

    def close(self) -> None:
        self.is_open = False
        self._blocks = []
