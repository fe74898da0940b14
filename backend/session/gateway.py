"""
Audio channel gateway.

Responsibilities:
- Tracks connection_status for one WebSocket connection
- Routes inbound JSON audio_* messages -> ChunkReassembler
- Owns at most one CaptureSession, wired to the connection's binary send
- Tears capture and reassembly down on disconnect
- Logs every dropped or unexpected message

NOT responsible for:
- Reading or writing the socket (the client loop does that)
- Rendering frames or saving assets (observers do that)
- Messages other than audio_* (handed to on_unhandled_message)
"""

from __future__ import annotations

from typing import Any, Callable, Optional, TYPE_CHECKING

from uuid import uuid4

from audio.analyser import SpectrumAnalyser
from audio.errors import ProtocolAnomaly, ResourceAcquisitionFailure
from audio.frames import AudioFragment
from audio.reassembler import (
    ChunkReassembler,
    CompleteObserver,
    FragmentObserver,
    ProgressObserver,
)
from audio.sources import LiveSource
from observability.logger import log_event, now_ms
from protocol.messages import (
    AudioChunk,
    AudioEnd,
    AudioError,
    AudioMessage,
    AudioStart,
    parse_json,
)
from session.capture_session import (
    CaptureSession,
    DurationObserver,
    FrameObserver,
    SendBinary,
)
from session.connection_status import ConnectionStatus
from spec import LOG_PAYLOAD_PREVIEW_CHARS

if TYPE_CHECKING:
    from config import AppConfig


def _new_connection_id() -> str:
    return f"conn_{uuid4().hex[:12]}"


class AudioGateway:
    """
    One gateway == one channel connection.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        on_asset: Optional[CompleteObserver] = None,
        on_progress: Optional[ProgressObserver] = None,
        on_fragment: Optional[FragmentObserver] = None,
        on_frame: Optional[FrameObserver] = None,
        on_duration: Optional[DurationObserver] = None,
        on_unhandled_message: Optional[Callable[[dict[str, Any]], None]] = None,
    ) -> None:
        self._config = config
        self._on_frame = on_frame
        self._on_duration = on_duration
        self._on_unhandled_message = on_unhandled_message
        self._send_binary: SendBinary | None = None

        self.connection_id: str | None = None
        self.connection_status = ConnectionStatus.DOWN
        self.capture: CaptureSession | None = None
        self.reassembler = ChunkReassembler(
            on_fragment_received=on_fragment,
            on_progress=on_progress,
            on_complete=on_asset,
            mime_type=config.audio_mime_type,
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def on_ws_connecting(self) -> None:
        self.connection_status = ConnectionStatus.CONNECTING

    def on_ws_connect(self, send_binary: SendBinary) -> None:
        """Called once the WebSocket handshake has completed."""
        self.connection_id = _new_connection_id()
        self.connection_status = ConnectionStatus.UP
        self._send_binary = send_binary
        self.reassembler.reset()

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_CONNECTED",
            **self.log_context(),
        })

    def on_ws_disconnect(self, reason: str | None = None) -> None:
        """Stop capture, drop any half-received stream, mark DOWN."""
        if self.connection_status is ConnectionStatus.DOWN and self.connection_id is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "WS_DISCONNECT_WITHOUT_CONNECTION",
                "reason": reason,
            })
            return

        self.stop_capture(reason="disconnect")

        if self.reassembler.is_receiving:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "STREAM_DISCARDED_ON_DISCONNECT",
                "fragments": self.reassembler.produced_count,
                **self.log_context(),
            })
        self.reassembler.reset()

        self.connection_status = ConnectionStatus.DOWN
        self._send_binary = None

        log_event({
            "ts_ms": now_ms(),
            "event_type": "WS_DISCONNECTED",
            "reason": reason,
            **self.log_context(),
        })
        self.connection_id = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_json_message(self, payload: str) -> AudioMessage | None:
        """
        Route one inbound text frame.

        Returns:
            The parsed audio message, or None if the frame was dropped or
            belongs to another collaborator.
        """
        if self.connection_status is not ConnectionStatus.UP:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MESSAGE_WITHOUT_CONNECTION",
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
            })
            return None

        try:
            data, message = parse_json(payload)
        except ProtocolAnomaly as e:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "MESSAGE_DROPPED",
                "reason": e.reason,
                "detail": e.detail,
                "payload_preview": payload[:LOG_PAYLOAD_PREVIEW_CHARS],
                **self.log_context(),
            })
            return None

        if message is None:
            log_event({
                "ts_ms": now_ms(),
                "event_type": "UNHANDLED_MESSAGE_TYPE",
                "msg_type": data.get("type"),
                **self.log_context(),
            })
            if self._on_unhandled_message is not None:
                try:
                    self._on_unhandled_message(data)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    # A faulty collaborator must not end the connection
                    log_event({
                        "ts_ms": now_ms(),
                        "event_type": "OBSERVER_ERROR",
                        "component": "audio_gateway",
                        "exception": type(exc).__name__,
                        "message": str(exc),
                        **self.log_context(),
                    })
            return None

        self._route(message)
        return message

    def on_binary_message(self, payload: bytes) -> None:
        """Inbound audio arrives as JSON fragments; raw binary is not expected."""
        log_event({
            "ts_ms": now_ms(),
            "event_type": "BINARY_MESSAGE_IGNORED",
            "payload_len": len(payload),
            **self.log_context(),
        })

    # ------------------------------------------------------------------
    # Capture
    # ------------------------------------------------------------------

    async def start_capture(self, source: LiveSource) -> CaptureSession:
        """
        Start streaming `source` over this connection.

        Raises:
            RuntimeError if not connected or a capture is already running.
            ResourceAcquisitionFailure if the source cannot be opened.
        """
        if self.connection_status is not ConnectionStatus.UP or self._send_binary is None:
            raise RuntimeError("Cannot start capture without an open connection")
        if self.capture is not None and self.capture.is_running:
            raise RuntimeError("Capture already running on this connection")

        session = CaptureSession(
            source=source,
            send_binary=self._send_binary,
            analyser=SpectrumAnalyser(
                sample_rate_hz=source.sample_rate_hz,
                fft_size=self._config.analyser_fft_size,
            ),
            block_samples=self._config.capture_block_samples,
            bar_count=self._config.visualizer_bar_count,
            max_duration_s=self._config.max_recording_s,
            on_frame=self._on_frame,
            on_duration=self._on_duration,
        )

        try:
            await session.start()
        except ResourceAcquisitionFailure:
            self.capture = None
            raise

        self.capture = session
        return session

    def stop_capture(self, reason: str = "requested") -> None:
        if self.capture is not None:
            self.capture.stop(reason=reason)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        """Standard logging context for this connection."""
        return {
            "connection_id": self.connection_id,
            "connection_status": self.connection_status.value,
            "stream_state": self.reassembler.state.value,
        }

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _route(self, message: AudioMessage) -> None:
        reassembler = self.reassembler

        if isinstance(message, AudioStart):
            reassembler.on_stream_start(message.total_chunks)
        elif isinstance(message, AudioChunk):
            index = (
                message.chunk_index
                if message.chunk_index is not None
                else reassembler.produced_count
            )
            reassembler.on_fragment(
                AudioFragment(
                    data=message.data,
                    sequence_index=index,
                    is_final=message.is_final_chunk,
                )
            )
        elif isinstance(message, AudioEnd):
            reassembler.on_stream_end()
        elif isinstance(message, AudioError):
            reassembler.on_stream_error(message.message)
