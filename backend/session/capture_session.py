"""
Live capture session.

Responsibilities:
- Acquire a LiveSource on start(), release it on stop()
- Capture loop: read block -> feed analysis tap -> PCM16 encode -> send,
  accumulating total_bytes
- Visualization tick: analyser magnitudes -> SpectrumMapper -> on_frame
- Duration tick: elapsed seconds -> on_duration; auto-stop at max_duration_s

Non-responsibilities:
- No rendering (observers decide what a frame looks like)
- No reconnection or retries
- No inbound audio (that is ChunkReassembler's job)

Cancellation:
Each start() mints a fresh token. Every periodic task captures it and
re-checks it after every await; stop() clears it and cancels the tasks,
so no frame / byte-count mutation can happen once stop() has returned.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Optional

from audio.analyser import SpectrumAnalyser
from audio.errors import ConfigurationError, ResourceAcquisitionFailure
from audio.frames import VisualizationFrame
from audio.sources import LiveSource
from audio.spectrum import SpectrumMapper, validate_bar_count
from observability.logger import log_event, now_ms
from observability.metrics import cancel_timer, start_timer, stop_timer, timed
from protocol.binary import InvalidFrameLength, encode_capture_frame
from spec import (
    CAPTURE_BLOCK_SAMPLES,
    SESSION_DURATION_TICK_S,
    VISUALIZER_BAR_COUNT,
    VISUALIZER_FRAME_INTERVAL_S,
)


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

SendBinary = Callable[[bytes], Awaitable[None]]
FrameObserver = Callable[[VisualizationFrame], None]
DurationObserver = Callable[[int], None]
StopObserver = Callable[[str], None]


class CaptureState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"


# ---------------------------------------------------------------------
# CaptureSession
# ---------------------------------------------------------------------

class CaptureSession:
    """
    One capture == one live source == one outbound block stream.

    Restartable: start() after stop() begins a fresh capture with reset
    counters.
    """

    def __init__(
        self,
        *,
        source: LiveSource,
        send_binary: SendBinary,
        analyser: SpectrumAnalyser | None = None,
        mapper: SpectrumMapper | None = None,
        block_samples: int = CAPTURE_BLOCK_SAMPLES,
        bar_count: int = VISUALIZER_BAR_COUNT,
        frame_interval_s: float = VISUALIZER_FRAME_INTERVAL_S,
        duration_tick_s: float = SESSION_DURATION_TICK_S,
        max_duration_s: float | None = None,
        on_frame: Optional[FrameObserver] = None,
        on_duration: Optional[DurationObserver] = None,
        on_stop: Optional[StopObserver] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if block_samples <= 0:
            raise ConfigurationError(f"block_samples must be > 0, got {block_samples}")
        validate_bar_count(bar_count)
        if frame_interval_s <= 0 or duration_tick_s <= 0:
            raise ConfigurationError("tick intervals must be > 0")
        if max_duration_s is not None and max_duration_s <= 0:
            raise ConfigurationError("max_duration_s must be > 0 when set")

        self._source = source
        self._send_binary = send_binary
        self._analyser = analyser or SpectrumAnalyser(sample_rate_hz=source.sample_rate_hz)
        self._mapper = mapper or SpectrumMapper()
        self._block_samples = block_samples
        self._bar_count = bar_count
        self._frame_interval_s = frame_interval_s
        self._duration_tick_s = duration_tick_s
        self._max_duration_s = max_duration_s
        self._on_frame = on_frame
        self._on_duration = on_duration
        self._on_stop = on_stop
        self._clock = clock

        self._state = CaptureState.IDLE
        self._token: object | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._stopped = asyncio.Event()
        self._timer_id: str | None = None
        self._started_at: float | None = None
        self._stopped_at: float | None = None

        self.total_bytes = 0
        self.blocks_sent = 0
        self.frames_published = 0
        self.frame: VisualizationFrame | None = None
        self.stop_reason: str | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is CaptureState.RUNNING

    @property
    def analyser(self) -> SpectrumAnalyser:
        return self._analyser

    @property
    def elapsed_s(self) -> float:
        """Seconds from start() to stop() (or to now while running)."""
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return max(0.0, end - self._started_at)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire the source and start all periodic activities.

        Raises:
            ResourceAcquisitionFailure if the source cannot be opened; the
            session is left IDLE with nothing acquired.
            RuntimeError if already started.
        """
        if self._state in (CaptureState.STARTING, CaptureState.RUNNING):
            raise RuntimeError(f"CaptureSession already {self._state.value}")

        token = object()
        self._token = token
        self._state = CaptureState.STARTING
        self._stopped = asyncio.Event()
        self._started_at = None
        self._stopped_at = None
        self.total_bytes = 0
        self.blocks_sent = 0
        self.frames_published = 0
        self.frame = None
        self.stop_reason = None
        self._analyser.reset()

        try:
            with timed("source_open", component="capture_session"):
                await self._source.open(self._block_samples)
        except ResourceAcquisitionFailure as e:
            self._abandon_start(e)
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught
            # Any driver-specific failure still leaves nothing acquired
            self._abandon_start(e)
            raise ResourceAcquisitionFailure(f"{type(e).__name__}: {e}") from e
        except asyncio.CancelledError:
            self._abandon_start(None)
            raise

        if self._token is not token:
            # stop() ran while the source was opening
            self._source.close()
            return

        self._started_at = self._clock()
        self._timer_id = start_timer("capture_session")
        self._state = CaptureState.RUNNING
        self._tasks = [
            asyncio.create_task(self._capture_loop(token), name="capture_blocks"),
            asyncio.create_task(self._visual_loop(token), name="capture_visualizer"),
            asyncio.create_task(self._duration_loop(token), name="capture_duration"),
        ]

        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_STARTED",
            "sample_rate_hz": self._source.sample_rate_hz,
            "block_samples": self._block_samples,
            "bar_count": self._bar_count,
            "max_duration_s": self._max_duration_s,
        })

    def stop(self, reason: str = "requested") -> None:
        """
        Cancel all periodic activities and release the source.

        Synchronous and idempotent. After it returns, frame and byte-count
        state no longer change.
        """
        if self._state not in (CaptureState.STARTING, CaptureState.RUNNING):
            return

        was_running = self._state is CaptureState.RUNNING
        self._token = None
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()

        self._source.close()
        self._state = CaptureState.STOPPED
        self.stop_reason = reason

        if was_running:
            self._stopped_at = self._clock()
            stop_timer(
                self._timer_id or "",
                component="capture_session",
                outcome=reason,
                details={"bytes": self.total_bytes, "blocks": self.blocks_sent},
            )
            self._timer_id = None

        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_STOPPED",
            "reason": reason,
            "elapsed_s": round(self.elapsed_s, 3),
            "total_bytes": self.total_bytes,
            "blocks_sent": self.blocks_sent,
            "frames_published": self.frames_published,
        })

        self._stopped.set()
        self._notify(self._on_stop, reason)

    async def wait_stopped(self) -> str | None:
        """Wait until the session stops for any reason; returns the reason."""
        await self._stopped.wait()
        return self.stop_reason

    async def __aenter__(self) -> CaptureSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.stop(reason="scope_exit")

    # ------------------------------------------------------------------
    # Periodic activities
    # ------------------------------------------------------------------

    async def _capture_loop(self, token: object) -> None:
        while self._token is token:
            block = await self._source.read_block()
            if self._token is not token:
                return
            if block is None:
                self.stop(reason="source_exhausted")
                return

            self._analyser.push(block)

            try:
                payload = encode_capture_frame(block, block_samples=self._block_samples)
            except InvalidFrameLength as e:
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "CAPTURE_BLOCK_DROPPED",
                    "error": str(e),
                    "block_len": len(block),
                })
                continue

            try:
                await self._send_binary(payload)
            except Exception as exc:  # pylint: disable=broad-exception-caught
                if self._token is token:
                    log_event({
                        "ts_ms": now_ms(),
                        "event_type": "CAPTURE_SEND_FAILED",
                        "exception": type(exc).__name__,
                        "message": str(exc),
                    })
                    self.stop(reason="send_failed")
                return

            if self._token is not token:
                return
            self.total_bytes += len(payload)
            self.blocks_sent += 1

    async def _visual_loop(self, token: object) -> None:
        while self._token is token:
            magnitudes = self._analyser.byte_frequency_data()
            frame = self._mapper.map(magnitudes, self._bar_count, self._analyser.bin_hz)
            self.frame = frame
            self.frames_published += 1
            self._notify(self._on_frame, frame)

            await asyncio.sleep(self._frame_interval_s)

    async def _duration_loop(self, token: object) -> None:
        while True:
            await asyncio.sleep(self._duration_tick_s)
            if self._token is not token:
                return

            elapsed = self.elapsed_s
            self._notify(self._on_duration, int(elapsed))

            if self._max_duration_s is not None and elapsed >= self._max_duration_s:
                self.stop(reason="max_duration")
                return

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _abandon_start(self, error: BaseException | None) -> None:
        self._source.close()
        self._token = None
        self._state = CaptureState.IDLE
        cancel_timer(self._timer_id)
        self._timer_id = None
        log_event({
            "ts_ms": now_ms(),
            "event_type": "CAPTURE_START_FAILED",
            "exception": type(error).__name__ if error is not None else "CancelledError",
            "message": str(error) if error is not None else None,
        })

    def _notify(self, observer: Optional[Callable[..., None]], *args: object) -> None:
        if observer is None:
            return
        try:
            observer(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Observer faults must not take down capture or redraw
            log_event({
                "ts_ms": now_ms(),
                "event_type": "OBSERVER_ERROR",
                "component": "capture_session",
                "exception": type(exc).__name__,
                "message": str(exc),
            })
