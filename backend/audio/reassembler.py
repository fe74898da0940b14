"""
Inbound audio stream reassembly.

Fragments of one audio asset arrive as base64 JSON messages between an
"audio_start" and a final chunk. ChunkReassembler accumulates them in
arrival order and emits one AssembledAsset when the final fragment lands.

States:

    IDLE ──start──> RECEIVING ──final fragment──> COMPLETED
                        │
                        └──end / error──> ABORTED

    start is accepted from any state; reset() returns to IDLE from any state.

Rules:
- Fragments outside RECEIVING are dropped as ProtocolAnomaly (non-fatal).
- Undecodable payloads are dropped as ProtocolAnomaly; state untouched.
- produced_count never exceeds a positive expected_total. A final fragment
  past that limit is dropped and logged as STREAM_STALLED; the stream stays
  RECEIVING until the caller resets or restarts it.
- Assembly follows arrival order. sequence_index gaps are logged, never
  used to reorder.
- Observers run synchronously; calling back into the same reassembler from
  an observer is rejected.
"""

from __future__ import annotations

import base64
import binascii
from enum import Enum
from typing import Callable, Optional

from audio.errors import ConfigurationError, ProtocolAnomaly
from audio.frames import AssembledAsset, AudioFragment, StreamState
from observability.logger import log_event, now_ms
from observability.metrics import cancel_timer, start_timer, stop_timer
from protocol.binary import check_sequence_gap
from spec import (
    DEFAULT_ASSET_MIME_TYPE,
    TRANSPORT_ENCODING_BASE64,
    TRANSPORT_ENCODING_IDENTITY,
)


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

FragmentObserver = Callable[[AudioFragment], None]
ProgressObserver = Callable[[float, int], None]  # (percent, expected_total)
CompleteObserver = Callable[[AssembledAsset], None]
AnomalyObserver = Callable[[ProtocolAnomaly], None]


class ReassemblerState(str, Enum):
    """Lifecycle of the current stream."""
    IDLE = "idle"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    ABORTED = "aborted"


# ---------------------------------------------------------------------
# ChunkReassembler
# ---------------------------------------------------------------------

class ChunkReassembler:
    """
    One instance == one inbound audio channel.

    Holds exactly one StreamState at a time; a new start marker replaces it.
    """

    def __init__(
        self,
        *,
        on_fragment_received: Optional[FragmentObserver] = None,
        on_progress: Optional[ProgressObserver] = None,
        on_complete: Optional[CompleteObserver] = None,
        on_anomaly: Optional[AnomalyObserver] = None,
        mime_type: str = DEFAULT_ASSET_MIME_TYPE,
        transport_encoding: str = TRANSPORT_ENCODING_BASE64,
    ) -> None:
        if transport_encoding not in (TRANSPORT_ENCODING_BASE64, TRANSPORT_ENCODING_IDENTITY):
            raise ConfigurationError(f"Unknown transport encoding: {transport_encoding!r}")

        self._on_fragment_received = on_fragment_received
        self._on_progress = on_progress
        self._on_complete = on_complete
        self._on_anomaly = on_anomaly
        self._mime_type = mime_type
        self._transport_encoding = transport_encoding

        self._state = ReassemblerState.IDLE
        self._stream = StreamState()
        self._progress = 0.0
        self._last_index: int | None = None
        self._timer_id: str | None = None
        self._stream_id = 0
        self._in_callback = False

        self.anomaly_count = 0

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ReassemblerState:
        return self._state

    @property
    def stream(self) -> StreamState:
        return self._stream

    @property
    def progress(self) -> float:
        """Fraction in [0, 1]; exactly 1.0 only after the final fragment."""
        return self._progress

    @property
    def expected_total(self) -> int:
        return self._stream.expected_total

    @property
    def produced_count(self) -> int:
        return self._stream.produced_count

    @property
    def is_receiving(self) -> bool:
        return self._state is ReassemblerState.RECEIVING

    # ------------------------------------------------------------------
    # Stream lifecycle
    # ------------------------------------------------------------------

    def on_stream_start(self, expected_total: int = 0) -> None:
        """
        Begin a new stream, discarding whatever the previous one left behind.

        Raises:
            ConfigurationError if expected_total is negative (nothing changes).
        """
        self._check_not_reentrant()
        if expected_total < 0:
            raise ConfigurationError(f"expected_total must be >= 0, got {expected_total}")

        if self._state is ReassemblerState.RECEIVING:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "STREAM_RESTARTED",
                "stream_id": self._stream_id,
                "discarded_fragments": self._stream.produced_count,
            })
            cancel_timer(self._timer_id)

        self._stream_id += 1
        self._stream = StreamState(is_active=True, expected_total=expected_total)
        self._state = ReassemblerState.RECEIVING
        self._progress = 0.0
        self._last_index = None
        self._timer_id = start_timer("stream_assembly")

        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_START",
            "stream_id": self._stream_id,
            "expected_total": expected_total,
        })

    def on_fragment(self, fragment: AudioFragment) -> bool:
        """
        Ingest one fragment.

        Returns:
            True if the fragment was accepted
            False if it was dropped (anomaly already reported)
        """
        self._check_not_reentrant()

        if self._state is not ReassemblerState.RECEIVING:
            self._report_anomaly(
                ProtocolAnomaly("fragment_outside_stream", detail=f"state={self._state.value}"),
                fragment,
            )
            return False

        stream = self._stream
        if 0 < stream.expected_total <= stream.produced_count:
            if fragment.is_final:
                # Sender undercounted totalChunks: no asset can complete now
                log_event({
                    "ts_ms": now_ms(),
                    "event_type": "STREAM_STALLED",
                    "stream_id": self._stream_id,
                    "expected_total": stream.expected_total,
                    "produced_count": stream.produced_count,
                })
            self._report_anomaly(
                ProtocolAnomaly(
                    "fragment_exceeds_expected_total",
                    detail=f"expected_total={stream.expected_total}",
                ),
                fragment,
            )
            return False

        try:
            payload = self._decode(fragment.data)
        except ProtocolAnomaly as anomaly:
            self._report_anomaly(anomaly, fragment)
            return False

        gap = check_sequence_gap(last_seq=self._last_index, current_seq=fragment.sequence_index)
        if gap.gap:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "FRAGMENT_SEQ_GAP",
                "stream_id": self._stream_id,
                "expected": gap.expected,
                "actual": gap.actual,
                "gap_size": gap.gap_size,
            })
        self._last_index = fragment.sequence_index

        stream.fragments.append(payload)
        stream.produced_count += 1

        if fragment.is_final:
            self._progress = 1.0
        elif stream.expected_total > 0:
            self._progress = stream.produced_count / stream.expected_total
        else:
            self._progress = 0.0

        asset = self._complete() if fragment.is_final else None

        # Observers see settled state
        self._notify(self._on_fragment_received, fragment)
        self._notify(self._on_progress, self._progress * 100.0, stream.expected_total)
        if asset is not None:
            self._notify(self._on_complete, asset)

        return True

    def on_stream_end(self) -> None:
        """Sender ended the stream without a final fragment."""
        self._abort(reason="end")

    def on_stream_error(self, message: str | None = None) -> None:
        """Sender reported a failure mid-stream."""
        self._abort(reason="error", message=message)

    def reset(self) -> None:
        """
        Force IDLE and drop everything buffered. Safe to call from any state;
        calling it twice leaves the same empty state as calling it once.
        """
        self._check_not_reentrant()
        cancel_timer(self._timer_id)
        self._timer_id = None
        self._stream = StreamState()
        self._state = ReassemblerState.IDLE
        self._progress = 0.0
        self._last_index = None

    def partial_asset(self) -> AssembledAsset | None:
        """
        Asset built from the fragments received so far.

        Only meaningful while RECEIVING; returns None otherwise or when
        nothing has arrived yet. Does not change state.
        """
        if self._state is not ReassemblerState.RECEIVING or not self._stream.fragments:
            return None
        return AssembledAsset(
            data=b"".join(self._stream.fragments),
            mime_type=self._mime_type,
            fragment_count=self._stream.produced_count,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _complete(self) -> AssembledAsset:
        stream = self._stream
        asset = AssembledAsset(
            data=b"".join(stream.fragments),
            mime_type=self._mime_type,
            fragment_count=stream.produced_count,
        )

        stop_timer(
            self._timer_id or "",
            component="chunk_reassembler",
            outcome="completed",
            details={"bytes": len(asset.data), "fragments": asset.fragment_count},
        )
        self._timer_id = None

        # Ownership moves to the observer; keep no reference
        self._stream = StreamState(expected_total=stream.expected_total)
        self._state = ReassemblerState.COMPLETED

        log_event({
            "ts_ms": now_ms(),
            "event_type": "STREAM_COMPLETE",
            "stream_id": self._stream_id,
            "fragments": asset.fragment_count,
            "bytes": len(asset.data),
            "expected_total": stream.expected_total,
        })
        return asset

    def _abort(self, *, reason: str, message: str | None = None) -> None:
        self._check_not_reentrant()

        if self._state is ReassemblerState.RECEIVING:
            discarded = self._stream.produced_count
            stop_timer(
                self._timer_id or "",
                component="chunk_reassembler",
                outcome="aborted",
                details={"reason": reason, "discarded_fragments": discarded},
            )
            self._state = ReassemblerState.ABORTED
            log_event({
                "ts_ms": now_ms(),
                "event_type": "STREAM_ABORTED",
                "stream_id": self._stream_id,
                "reason": reason,
                "message": message,
                "discarded_fragments": discarded,
            })
        else:
            self._state = ReassemblerState.IDLE

        self._timer_id = None
        self._stream = StreamState()
        self._last_index = None

    def _decode(self, data: str | bytes) -> bytes:
        if self._transport_encoding == TRANSPORT_ENCODING_IDENTITY:
            if not isinstance(data, (bytes, bytearray)):
                raise ProtocolAnomaly("malformed_transport_encoding", detail="expected raw bytes")
            return bytes(data)

        try:
            # Line-wrapped base64 is still valid; anything else non-alphabet is not
            compact = "".join(data.split()) if isinstance(data, str) else b"".join(data.split())
            return base64.b64decode(compact, validate=True)
        except (binascii.Error, ValueError, TypeError, AttributeError) as e:
            raise ProtocolAnomaly("malformed_transport_encoding", detail=str(e)) from e

    def _report_anomaly(self, anomaly: ProtocolAnomaly, fragment: AudioFragment | None) -> None:
        self.anomaly_count += 1
        log_event({
            "ts_ms": now_ms(),
            "event_type": "FRAGMENT_DROPPED",
            "stream_id": self._stream_id,
            "state": self._state.value,
            "reason": anomaly.reason,
            "detail": anomaly.detail,
            "sequence_index": fragment.sequence_index if fragment is not None else None,
        })
        self._notify(self._on_anomaly, anomaly)

    def _notify(self, observer: Optional[Callable[..., None]], *args: object) -> None:
        if observer is None:
            return
        self._in_callback = True
        try:
            observer(*args)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # A faulty observer must not break assembly of later fragments
            log_event({
                "ts_ms": now_ms(),
                "event_type": "OBSERVER_ERROR",
                "component": "chunk_reassembler",
                "stream_id": self._stream_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })
        finally:
            self._in_callback = False

    def _check_not_reentrant(self) -> None:
        if self._in_callback:
            raise RuntimeError("ChunkReassembler called from inside its own observer")
