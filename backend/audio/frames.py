"""
Audio pipeline data primitives.

Pure data containers only.
No queues, no timing logic, no IO (except AssembledAsset.save()).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from pathlib import Path

from spec import DEFAULT_ASSET_MIME_TYPE


@dataclass(frozen=True)
class AudioFragment:
    """
    One unit of a streamed audio asset, as received from the channel.

    data:
        Transport-encoded payload (base64 text on the JSON channel).
        Decoded by ChunkReassembler, never by the sender side.

    sequence_index:
        Sender-provided position in the stream. Used for gap detection
        and diagnostics only; assembly follows arrival order.

    is_final:
        True on the last fragment of the stream.
    """
    data: str | bytes
    sequence_index: int
    is_final: bool = False


@dataclass
class StreamState:
    """
    Accumulation state for one logical stream.

    Invariants:
    - produced_count == len(fragments)
    - produced_count <= expected_total whenever expected_total > 0
    """
    is_active: bool = False
    fragments: list[bytes] = field(default_factory=list)
    expected_total: int = 0
    produced_count: int = 0

    @property
    def buffered_bytes(self) -> int:
        return sum(len(f) for f in self.fragments)


@dataclass(frozen=True)
class AssembledAsset:
    """
    Immutable, contiguous audio buffer produced at stream completion.

    No container header is synthesized; `mime_type` only declares what the
    sender claims the bytes are.
    """
    data: bytes
    mime_type: str = DEFAULT_ASSET_MIME_TYPE
    fragment_count: int = 0

    def __len__(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        """File extension derived from the MIME subtype ("audio/wav" -> "wav")."""
        _, _, subtype = self.mime_type.partition("/")
        return subtype or "wav"

    def suggest_filename(self, *, now: float | None = None) -> str:
        """
        Timestamped download name, e.g. "audio-2024-05-01T12-30-00.wav".
        """
        ts = time.gmtime(time.time() if now is None else now)
        stamp = time.strftime("%Y-%m-%dT%H-%M-%S", ts)
        return f"audio-{stamp}.{self.extension}"

    def save(self, directory: str | Path, filename: str | None = None) -> Path:
        """Write the asset bytes as-is and return the path written."""
        path = Path(directory) / (filename or self.suggest_filename())
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


@dataclass(frozen=True)
class VisualizationFrame:
    """
    One redraw worth of bar heights, each in [0, 1].

    Length is always even. The two center bars carry the lowest in-band
    frequency; the two outermost bars carry the highest.
    """
    heights: tuple[float, ...]
    ts_ms: int = 0

    def __len__(self) -> int:
        return len(self.heights)

    def __getitem__(self, index: int) -> float:
        return self.heights[index]

    def __iter__(self):
        return iter(self.heights)

    @property
    def half(self) -> int:
        return len(self.heights) // 2
