# pylint: disable=missing-module-docstring,missing-function-docstring

import base64
from typing import Any

import pytest

from audio.errors import ConfigurationError, ProtocolAnomaly
from audio.frames import AssembledAsset, AudioFragment
from audio.reassembler import ChunkReassembler, ReassemblerState
from observability.metrics import active_timer_count


def b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


class Recorder:
    def __init__(self) -> None:
        self.fragments: list[AudioFragment] = []
        self.progress: list[tuple[float, int]] = []
        self.assets: list[AssembledAsset] = []
        self.anomalies: list[ProtocolAnomaly] = []

    def build(self, **kwargs: Any) -> ChunkReassembler:
        return ChunkReassembler(
            on_fragment_received=self.fragments.append,
            on_progress=lambda pct, total: self.progress.append((pct, total)),
            on_complete=self.assets.append,
            on_anomaly=self.anomalies.append,
            **kwargs,
        )


@pytest.fixture
def rec() -> Recorder:
    return Recorder()


# ---------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------

def test_three_fragments_assemble_in_order(rec: Recorder):
    r = rec.build()
    parts = [bytes([i]) * 10 for i in range(3)]

    r.on_stream_start(3)
    for i, part in enumerate(parts):
        assert r.on_fragment(AudioFragment(b64(part), i, is_final=(i == 2)))

    assert len(rec.assets) == 1
    asset = rec.assets[0]
    assert asset.data == b"".join(parts)
    assert len(asset) == 30
    assert asset.fragment_count == 3
    assert asset.mime_type == "audio/wav"

    assert [pct for pct, _ in rec.progress] == pytest.approx([100 / 3, 200 / 3, 100.0])
    assert all(total == 3 for _, total in rec.progress)
    assert len(rec.fragments) == 3

    assert r.state is ReassemblerState.COMPLETED
    assert r.progress == 1.0
    assert r.stream.fragments == []


def test_progress_is_monotonic_and_ends_at_one(rec: Recorder):
    r = rec.build()
    r.on_stream_start(5)
    for i in range(5):
        r.on_fragment(AudioFragment(b64(b"xy"), i, is_final=(i == 4)))

    values = [pct for pct, _ in rec.progress]
    assert values == sorted(values)
    assert values[-1] == 100.0


def test_unknown_total_reports_zero_until_final(rec: Recorder):
    r = rec.build()
    r.on_stream_start()
    r.on_fragment(AudioFragment(b64(b"a"), 0))
    r.on_fragment(AudioFragment(b64(b"b"), 1, is_final=True))

    assert [pct for pct, _ in rec.progress] == [0.0, 100.0]
    assert rec.assets[0].data == b"ab"


def test_observers_see_settled_state(rec: Recorder):
    seen: list[tuple[ReassemblerState, int]] = []
    r = ChunkReassembler(on_complete=lambda _asset: seen.append((r.state, r.produced_count)))

    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b64(b"z"), 0, is_final=True))

    assert seen == [(ReassemblerState.COMPLETED, 0)]


def test_gap_is_logged_but_arrival_order_kept(rec: Recorder, events):
    r = rec.build()
    r.on_stream_start(3)
    r.on_fragment(AudioFragment(b64(b"A"), 0))
    r.on_fragment(AudioFragment(b64(b"C"), 2))
    r.on_fragment(AudioFragment(b64(b"B"), 1, is_final=True))

    assert rec.assets[0].data == b"ACB"
    gaps = events("FRAGMENT_SEQ_GAP")
    assert gaps[0]["expected"] == 1
    assert gaps[0]["actual"] == 2


def test_identity_encoding_accepts_raw_bytes(rec: Recorder):
    r = rec.build(transport_encoding="identity", mime_type="audio/mpeg")
    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b"\x01\x02", 0, is_final=True))

    assert rec.assets[0].data == b"\x01\x02"
    assert rec.assets[0].extension == "mpeg"


def test_unknown_transport_encoding_rejected():
    with pytest.raises(ConfigurationError):
        ChunkReassembler(transport_encoding="hex")


# ---------------------------------------------------------------------
# Anomalies
# ---------------------------------------------------------------------

def test_fragment_before_start_is_dropped(rec: Recorder, events):
    r = rec.build()

    assert r.on_fragment(AudioFragment(b64(b"x"), 0)) is False

    assert r.state is ReassemblerState.IDLE
    assert r.produced_count == 0
    assert rec.anomalies[0].reason == "fragment_outside_stream"
    assert events("FRAGMENT_DROPPED")
    assert rec.progress == []


def test_malformed_base64_is_dropped_and_state_untouched(rec: Recorder):
    r = rec.build()
    r.on_stream_start(2)
    r.on_fragment(AudioFragment(b64(b"ok"), 0))

    assert r.on_fragment(AudioFragment("!!!not-base64!!!", 1)) is False

    assert r.state is ReassemblerState.RECEIVING
    assert r.produced_count == 1
    assert rec.anomalies[0].reason == "malformed_transport_encoding"
    assert r.anomaly_count == 1


def test_fragment_beyond_expected_total_is_dropped(rec: Recorder):
    r = rec.build()
    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b64(b"a"), 0))

    assert r.on_fragment(AudioFragment(b64(b"b"), 1)) is False

    assert r.produced_count == 1
    assert rec.anomalies[0].reason == "fragment_exceeds_expected_total"


def test_final_fragment_past_expected_total_stalls_stream(rec: Recorder, events):
    r = rec.build()
    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b64(b"a"), 0))

    assert r.on_fragment(AudioFragment(b64(b"b"), 1, is_final=True)) is False

    stalled = events("STREAM_STALLED")
    assert len(stalled) == 1
    assert stalled[0]["expected_total"] == 1
    assert stalled[0]["produced_count"] == 1
    assert r.state is ReassemblerState.RECEIVING
    assert rec.assets == []


def test_line_wrapped_base64_is_accepted(rec: Recorder):
    r = rec.build()
    raw = bytes(range(60))
    encoded = b64(raw)
    wrapped = encoded[:40] + "\n" + encoded[40:] + "\r\n"

    r.on_stream_start(1)
    assert r.on_fragment(AudioFragment(wrapped, 0, is_final=True))

    assert rec.assets[0].data == raw


def test_fragment_after_completion_is_dropped(rec: Recorder):
    r = rec.build()
    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b64(b"a"), 0, is_final=True))

    assert r.on_fragment(AudioFragment(b64(b"b"), 1)) is False
    assert len(rec.assets) == 1


def test_negative_expected_total_rejected(rec: Recorder):
    r = rec.build()

    with pytest.raises(ConfigurationError):
        r.on_stream_start(-1)
    assert r.state is ReassemblerState.IDLE


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------

@pytest.mark.parametrize("terminate", ["end", "error"])
def test_end_or_error_aborts_without_asset(rec: Recorder, terminate: str, events):
    r = rec.build()
    r.on_stream_start(3)
    r.on_fragment(AudioFragment(b64(b"a"), 0))

    if terminate == "end":
        r.on_stream_end()
    else:
        r.on_stream_error("synthesis failed")

    assert r.state is ReassemblerState.ABORTED
    assert r.stream.fragments == []
    assert rec.assets == []
    aborted = events("STREAM_ABORTED")
    assert aborted[0]["reason"] == terminate
    assert aborted[0]["discarded_fragments"] == 1


def test_end_outside_stream_returns_to_idle(rec: Recorder):
    r = rec.build()
    r.on_stream_end()

    assert r.state is ReassemblerState.IDLE


def test_restart_discards_previous_stream(rec: Recorder, events):
    r = rec.build()
    r.on_stream_start(3)
    r.on_fragment(AudioFragment(b64(b"old"), 0))

    r.on_stream_start(1)
    r.on_fragment(AudioFragment(b64(b"new"), 0, is_final=True))

    assert rec.assets[0].data == b"new"
    assert events("STREAM_RESTARTED")[0]["discarded_fragments"] == 1


def test_reset_is_idempotent(rec: Recorder):
    r = rec.build()
    r.on_stream_start(2)
    r.on_fragment(AudioFragment(b64(b"a"), 0))

    r.reset()
    first = (r.state, r.progress, r.produced_count, r.expected_total)
    r.reset()
    second = (r.state, r.progress, r.produced_count, r.expected_total)

    assert first == second == (ReassemblerState.IDLE, 0.0, 0, 0)


def test_timers_do_not_leak():
    before = active_timer_count()
    r = ChunkReassembler()

    r.on_stream_start(2)
    r.on_stream_start(2)
    r.on_fragment(AudioFragment(b64(b"a"), 0, is_final=True))
    r.on_stream_start(2)
    r.on_stream_end()
    r.on_stream_start(2)
    r.reset()

    assert active_timer_count() == before


def test_partial_asset_only_while_receiving(rec: Recorder):
    r = rec.build()
    assert r.partial_asset() is None

    r.on_stream_start(3)
    assert r.partial_asset() is None
    r.on_fragment(AudioFragment(b64(b"ab"), 0))
    r.on_fragment(AudioFragment(b64(b"cd"), 1))

    partial = r.partial_asset()
    assert partial is not None
    assert partial.data == b"abcd"
    assert partial.fragment_count == 2
    assert r.state is ReassemblerState.RECEIVING


# ---------------------------------------------------------------------
# Observer faults
# ---------------------------------------------------------------------

def test_reentrant_observer_is_rejected_and_logged(events):
    holder: dict[str, ChunkReassembler] = {}

    def reenter(_fragment: AudioFragment) -> None:
        holder["r"].reset()

    r = ChunkReassembler(on_fragment_received=reenter)
    holder["r"] = r
    r.on_stream_start(2)

    assert r.on_fragment(AudioFragment(b64(b"a"), 0)) is True

    assert r.state is ReassemblerState.RECEIVING
    assert r.produced_count == 1
    errors = events("OBSERVER_ERROR")
    assert errors[0]["exception"] == "RuntimeError"


def test_failing_observer_does_not_block_later_fragments(events):
    def boom(_pct: float, _total: int) -> None:
        raise ValueError("render failed")

    assets: list[AssembledAsset] = []
    r = ChunkReassembler(on_progress=boom, on_complete=assets.append)
    r.on_stream_start(2)
    r.on_fragment(AudioFragment(b64(b"a"), 0))
    r.on_fragment(AudioFragment(b64(b"b"), 1, is_final=True))

    assert assets[0].data == b"ab"
    assert len(events("OBSERVER_ERROR")) == 2
