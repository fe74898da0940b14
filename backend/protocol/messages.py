"""
Inbound JSON control messages for the audio stream.

Tagged union keyed by "type":

    {"type": "audio_start", "totalChunks"?: int}
    {"type": "audio_chunk", "data": base64, "chunkIndex"?: int, "isFinalChunk"?: bool}
    {"type": "audio_end"}
    {"type": "audio_error"}

Parsing is strict about field types and lenient about absence: optional
fields fall back to the defaults the sender would have meant.
Any other "type" is not ours; parse_message returns None for it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping, Union

from audio.errors import ProtocolAnomaly
from spec import (
    MSG_AUDIO_CHUNK,
    MSG_AUDIO_END,
    MSG_AUDIO_ERROR,
    MSG_AUDIO_START,
)


@dataclass(frozen=True)
class AudioStart:
    total_chunks: int = 0


@dataclass(frozen=True)
class AudioChunk:
    """chunk_index is None when the sender omitted it."""
    data: str
    chunk_index: int | None = None
    is_final_chunk: bool = False


@dataclass(frozen=True)
class AudioEnd:
    pass


@dataclass(frozen=True)
class AudioError:
    message: str | None = None


AudioMessage = Union[AudioStart, AudioChunk, AudioEnd, AudioError]


def _optional_int(data: Mapping[str, Any], key: str) -> int | None:
    value = data.get(key)
    if value is None:
        return None
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolAnomaly("invalid_field", detail=f"{key} must be an integer")
    if value < 0:
        raise ProtocolAnomaly("invalid_field", detail=f"{key} must be >= 0")
    return value


def parse_message(data: Mapping[str, Any]) -> AudioMessage | None:
    """
    Convert a decoded JSON object into a typed audio message.

    Returns:
        The message, or None if "type" is not an audio stream type.

    Raises:
        ProtocolAnomaly if an audio message is malformed.
    """
    if not isinstance(data, Mapping):
        raise ProtocolAnomaly("not_an_object", detail=type(data).__name__)

    msg_type = data.get("type")

    if msg_type == MSG_AUDIO_START:
        return AudioStart(total_chunks=_optional_int(data, "totalChunks") or 0)

    if msg_type == MSG_AUDIO_CHUNK:
        payload = data.get("data")
        if not isinstance(payload, str) or not payload:
            raise ProtocolAnomaly("missing_chunk_data")

        is_final = data.get("isFinalChunk", False)
        if is_final is None:
            is_final = False
        if not isinstance(is_final, bool):
            raise ProtocolAnomaly("invalid_field", detail="isFinalChunk must be a boolean")

        return AudioChunk(
            data=payload,
            chunk_index=_optional_int(data, "chunkIndex"),
            is_final_chunk=is_final,
        )

    if msg_type == MSG_AUDIO_END:
        return AudioEnd()

    if msg_type == MSG_AUDIO_ERROR:
        message = data.get("error") or data.get("message")
        return AudioError(message=str(message) if message is not None else None)

    return None


def parse_json(payload: str) -> tuple[dict[str, Any], AudioMessage | None]:
    """
    Decode a text frame and parse it.

    Returns:
        (raw_object, message_or_None) so callers can log or forward
        messages that are not audio stream messages.

    Raises:
        ProtocolAnomaly for invalid JSON or a malformed audio message.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolAnomaly("json_decode_error", detail=str(e)) from e

    if not isinstance(data, dict):
        raise ProtocolAnomaly("not_an_object", detail=type(data).__name__)

    return data, parse_message(data)
