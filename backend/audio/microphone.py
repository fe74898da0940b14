"""
Microphone source backed by sounddevice (PortAudio).

PortAudio delivers blocks on its own thread. The callback copies each block
and hands it to the event loop with call_soon_threadsafe; everything after
that runs on the loop thread like any other source.

If the loop falls behind, the oldest queued block is dropped so capture
latency stays bounded.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import numpy as np
import sounddevice as sd

from audio.errors import ResourceAcquisitionFailure
from observability.logger import log_event, now_ms
from spec import CAPTURE_CHANNELS, CAPTURE_SAMPLE_RATE_HZ, MICROPHONE_QUEUE_MAX_BLOCKS


class MicrophoneSource:
    """LiveSource over a sounddevice InputStream."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = CAPTURE_SAMPLE_RATE_HZ,
        device: int | str | None = None,
        max_queued_blocks: int = MICROPHONE_QUEUE_MAX_BLOCKS,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self._device = device
        self._max_queued_blocks = max_queued_blocks
        self._stream: Optional[sd.InputStream] = None
        self._queue: Optional[asyncio.Queue[Optional[np.ndarray]]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.dropped_blocks = 0

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    async def open(self, block_samples: int) -> None:
        """
        Open the input device at the capture rate.

        Raises:
            ResourceAcquisitionFailure if PortAudio cannot open the device.
        """
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._max_queued_blocks)

        try:
            stream = sd.InputStream(
                device=self._device,
                samplerate=self.sample_rate_hz,
                channels=CAPTURE_CHANNELS,
                dtype="float32",
                blocksize=block_samples,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as e:
            self._queue = None
            self._loop = None
            raise ResourceAcquisitionFailure(f"Microphone unavailable: {e}") from e

        self._stream = stream
        log_event({
            "ts_ms": now_ms(),
            "event_type": "MICROPHONE_OPENED",
            "device": self._device,
            "sample_rate_hz": self.sample_rate_hz,
            "block_samples": block_samples,
        })

    async def read_block(self) -> Optional[np.ndarray]:
        if self._queue is None:
            return None
        return await self._queue.get()

    def close(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            try:
                stream.stop()
                stream.close()
            except sd.PortAudioError as e:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "MICROPHONE_CLOSE_ERROR",
                    "error": str(e),
                })
        if self._queue is not None:
            # Wake any reader still waiting on a block
            self._offer(None)
        self._queue = None
        self._loop = None

    # ------------------------------------------------------------------
    # PortAudio thread
    # ------------------------------------------------------------------

    def _callback(self, indata: np.ndarray, frames: int, time: Any, status: sd.CallbackFlags) -> None:
        """Runs on the PortAudio thread: copy and hand off, nothing else."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        if status:
            loop.call_soon_threadsafe(log_event, {
                "ts_ms": now_ms(),
                "event_type": "MICROPHONE_STATUS",
                "status": str(status),
                "frames": frames,
            })
        block = indata[:, 0].copy()
        loop.call_soon_threadsafe(self._offer, block)

    def _offer(self, block: Optional[np.ndarray]) -> None:
        queue = self._queue
        if queue is None:
            return
        if queue.full():
            queue.get_nowait()
            self.dropped_blocks += 1
        queue.put_nowait(block)
