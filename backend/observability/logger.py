"""
JSONL event logger.

- Write one JSON object per line
- Output to stdout
- No buffering, no batching
- No side effects beyond logging
- Can be switched off (ENABLE_JSON_LOGS=0) without touching call sites
"""

from __future__ import annotations

import json
import sys
import time
from typing import Any, Mapping, Callable


# ------------------------------------------------------------------
# Explicit output sink (patchable in tests)
# ------------------------------------------------------------------

def _stdout_print(line: str) -> None:
    sys.stdout.write(line + "\n")
    sys.stdout.flush()

_print: Callable[[str], None] = _stdout_print
_enabled: bool = True


def set_enabled(enabled: bool) -> None:
    """Turn JSONL output on or off process-wide."""
    global _enabled  # pylint: disable=global-statement
    _enabled = enabled


def now_ms() -> int:
    """Wall-clock milliseconds for the ts_ms field."""
    return time.time_ns() // 1_000_000


def log_event(event: Mapping[str, Any]) -> None:
    """
    Write a single JSONL event to stdout.

    The caller is responsible for:
    - Supplying a fully-formed event dict
    - Including ts_ms, event_type and component context

    This function:
    - Serializes to JSON (numpy scalars and other oddities via str())
    - Writes exactly one line
    - Flushes immediately (no buffering)
    - Never raises
    """
    if not _enabled:
        return

    try:
        line = json.dumps(event, ensure_ascii=False, separators=(",", ":"), default=str)
    except (TypeError, ValueError) as e:
        # Last-resort fallback: logging must never crash the capture loop
        fallback: dict[str, Any] = {
            "ts_ms": event.get("ts_ms"),
            "event_type": "LOGGER_SERIALIZATION_ERROR",
            "error": str(e),
            "original_event_repr": repr(event),
        }
        line = json.dumps(fallback, ensure_ascii=False, separators=(",", ":"))

    _print(line)
