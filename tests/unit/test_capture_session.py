# pylint: disable=missing-module-docstring,missing-function-docstring

import asyncio
from typing import Optional

import numpy as np
import pytest

from audio.errors import ConfigurationError, ResourceAcquisitionFailure
from audio.frames import VisualizationFrame
from audio.sources import ArraySource
from observability.metrics import active_timer_count
from session.capture_session import CaptureSession, CaptureState
from spec import CAPTURE_BLOCK_BYTES, CAPTURE_BLOCK_SAMPLES


class Sink:
    def __init__(self, fail: bool = False) -> None:
        self.frames: list[bytes] = []
        self.fail = fail

    async def send(self, payload: bytes) -> None:
        if self.fail:
            raise ConnectionError("socket closed")
        self.frames.append(payload)


class BrokenSource:
    sample_rate_hz = 16000

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.closed = 0

    async def open(self, block_samples: int) -> None:
        raise self.error

    async def read_block(self) -> Optional[np.ndarray]:
        return None

    def close(self) -> None:
        self.closed += 1


class GatedSource:
    """open() waits until release is set."""

    sample_rate_hz = 16000

    def __init__(self) -> None:
        self.release = asyncio.Event()
        self.is_open = False
        self.closed = 0
        self.reads = 0

    async def open(self, block_samples: int) -> None:
        await self.release.wait()
        self.is_open = True

    async def read_block(self) -> Optional[np.ndarray]:
        self.reads += 1
        await asyncio.sleep(0)
        return np.zeros(CAPTURE_BLOCK_SAMPLES, dtype=np.float32)

    def close(self) -> None:
        self.is_open = False
        self.closed += 1


def tone_source(blocks: int, *, realtime: bool = False) -> ArraySource:
    n = blocks * CAPTURE_BLOCK_SAMPLES
    t = np.arange(n) / 16000
    return ArraySource((0.3 * np.sin(2 * np.pi * 440 * t)).astype(np.float32), realtime=realtime)


async def wait(session: CaptureSession) -> Optional[str]:
    return await asyncio.wait_for(session.wait_stopped(), timeout=5)


# ---------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------

def test_sends_every_block_and_counts_bytes(events):
    async def scenario():
        sink = Sink()
        frames: list[VisualizationFrame] = []
        session = CaptureSession(source=tone_source(3), send_binary=sink.send, on_frame=frames.append)

        await session.start()
        reason = await wait(session)
        return session, sink, frames, reason

    session, sink, frames, reason = asyncio.run(scenario())

    assert reason == "source_exhausted"
    assert len(sink.frames) == 3
    assert all(len(f) == CAPTURE_BLOCK_BYTES for f in sink.frames)
    assert session.total_bytes == 3 * CAPTURE_BLOCK_BYTES
    assert session.blocks_sent == 3
    assert session.state is CaptureState.STOPPED
    assert frames and all(len(f) == 64 for f in frames)
    assert session.frames_published == len(frames)
    assert events("CAPTURE_STARTED")
    assert events("CAPTURE_STOPPED")[0]["total_bytes"] == 3 * CAPTURE_BLOCK_BYTES


def test_stop_freezes_counters_and_releases_source():
    async def scenario():
        source = tone_source(100, realtime=True)
        session = CaptureSession(source=source, send_binary=Sink().send)

        await session.start()
        await asyncio.sleep(0.15)
        session.stop()
        frozen = (session.total_bytes, session.frames_published, session.frame)
        await asyncio.sleep(0.15)
        after = (session.total_bytes, session.frames_published, session.frame)
        return session, source, frozen, after

    session, source, frozen, after = asyncio.run(scenario())

    assert frozen == after
    assert session.stop_reason == "requested"
    assert session.state is CaptureState.STOPPED
    assert source.is_open is False


def test_stop_is_idempotent(events):
    stops: list[str] = []

    async def scenario():
        session = CaptureSession(
            source=tone_source(100, realtime=True),
            send_binary=Sink().send,
            on_stop=stops.append,
        )
        await session.start()
        session.stop()
        session.stop(reason="again")
        return session

    session = asyncio.run(scenario())

    assert session.stop_reason == "requested"
    assert stops == ["requested"]
    assert len(events("CAPTURE_STOPPED")) == 1


def test_stop_before_start_is_a_no_op():
    session = CaptureSession(source=tone_source(1), send_binary=Sink().send)

    session.stop()

    assert session.state is CaptureState.IDLE


def test_start_twice_rejected():
    async def scenario():
        session = CaptureSession(source=tone_source(100, realtime=True), send_binary=Sink().send)
        await session.start()
        try:
            with pytest.raises(RuntimeError):
                await session.start()
        finally:
            session.stop()

    asyncio.run(scenario())


def test_restart_resets_counters():
    async def scenario():
        session = CaptureSession(source=tone_source(2), send_binary=Sink().send)
        await session.start()
        await wait(session)
        await session.start()
        await wait(session)
        return session

    session = asyncio.run(scenario())

    assert session.total_bytes == 2 * CAPTURE_BLOCK_BYTES


def test_async_context_manager_stops_on_exit():
    async def scenario():
        session = CaptureSession(source=tone_source(100, realtime=True), send_binary=Sink().send)
        async with session:
            assert session.is_running
            await asyncio.sleep(0)
        return session

    session = asyncio.run(scenario())

    assert session.stop_reason == "scope_exit"


# ---------------------------------------------------------------------
# Auto-stop
# ---------------------------------------------------------------------

def test_max_duration_stops_capture():
    ticks: list[int] = []

    async def scenario():
        session = CaptureSession(
            source=tone_source(1000, realtime=True),
            send_binary=Sink().send,
            duration_tick_s=0.02,
            max_duration_s=0.05,
            on_duration=ticks.append,
        )
        await session.start()
        return session, await wait(session)

    session, reason = asyncio.run(scenario())

    assert reason == "max_duration"
    assert ticks and all(t == 0 for t in ticks)
    assert session.elapsed_s >= 0.05


def test_send_failure_stops_capture(events):
    async def scenario():
        session = CaptureSession(source=tone_source(5), send_binary=Sink(fail=True).send)
        await session.start()
        return session, await wait(session)

    session, reason = asyncio.run(scenario())

    assert reason == "send_failed"
    assert session.total_bytes == 0
    assert events("CAPTURE_SEND_FAILED")[0]["exception"] == "ConnectionError"


# ---------------------------------------------------------------------
# Start failures
# ---------------------------------------------------------------------

@pytest.mark.parametrize("error", [
    ResourceAcquisitionFailure("no microphone"),
    OSError("device busy"),
    ValueError("bad device"),
    KeyError("channels"),
])
def test_start_failure_releases_source(error, events):
    source = BrokenSource(error)
    before = active_timer_count()

    async def scenario():
        session = CaptureSession(source=source, send_binary=Sink().send)
        with pytest.raises(ResourceAcquisitionFailure):
            await session.start()
        return session

    session = asyncio.run(scenario())

    assert session.state is CaptureState.IDLE
    assert source.closed == 1
    assert active_timer_count() == before
    assert events("CAPTURE_START_FAILED")


def test_failed_start_can_be_retried():
    source = BrokenSource(ValueError("bad device"))

    async def scenario():
        session = CaptureSession(source=source, send_binary=Sink().send)
        for _ in range(2):
            with pytest.raises(ResourceAcquisitionFailure) as info:
                await session.start()
            assert isinstance(info.value.__cause__, ValueError)
        return session

    session = asyncio.run(scenario())

    assert session.state is CaptureState.IDLE
    assert source.closed == 2


def test_source_open_is_timed(events):
    async def scenario():
        session = CaptureSession(source=tone_source(1), send_binary=Sink().send)
        await session.start()
        await wait(session)

    asyncio.run(scenario())

    opens = [e for e in events("METRIC_TIMER") if e["metric"] == "source_open"]
    assert len(opens) == 1
    assert opens[0]["outcome"] == "ok"


def test_stop_during_pending_start_leaves_nothing_open(events):
    async def scenario():
        source = GatedSource()
        sink = Sink()
        session = CaptureSession(source=source, send_binary=sink.send)

        starting = asyncio.create_task(session.start())
        await asyncio.sleep(0)
        assert session.state is CaptureState.STARTING

        session.stop()
        source.release.set()
        await starting
        await asyncio.sleep(0.05)
        return session, source, sink

    session, source, sink = asyncio.run(scenario())

    assert session.state is CaptureState.STOPPED
    assert session.stop_reason == "requested"
    assert source.is_open is False
    assert source.closed >= 1
    assert source.reads == 0
    assert sink.frames == []
    assert session.total_bytes == 0
    assert session.frames_published == 0
    assert events("CAPTURE_STARTED") == []


# ---------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------

@pytest.mark.parametrize("kwargs", [
    {"bar_count": 63},
    {"block_samples": 0},
    {"frame_interval_s": 0},
    {"max_duration_s": -1},
])
def test_invalid_configuration_rejected(kwargs):
    with pytest.raises(ConfigurationError):
        CaptureSession(source=tone_source(1), send_binary=Sink().send, **kwargs)


def test_failing_observer_does_not_stop_capture(events):
    def boom(_frame: VisualizationFrame) -> None:
        raise ValueError("render failed")

    async def scenario():
        session = CaptureSession(source=tone_source(3), send_binary=Sink().send, on_frame=boom)
        await session.start()
        return session, await wait(session)

    session, reason = asyncio.run(scenario())

    assert reason == "source_exhausted"
    assert session.blocks_sent == 3
    assert events("OBSERVER_ERROR")
