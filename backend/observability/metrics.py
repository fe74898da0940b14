"""
Metrics and timing helpers for observability.

Responsibilities:
- Measure durations using monotonic time (immune to clock changes)
- Emit metrics as JSONL events via observability.logger
- Never aggregate: one metric = one log event
- Provide safe APIs that prevent timer leaks

Design notes:
- Durations use monotonic time for correctness
- Event timestamps (ts_ms) use wall-clock time for human readability
- Prefer the `timed()` context manager when the measured span is a block;
  capture sessions and streams span callbacks, so they hold a timer id
"""

from __future__ import annotations

import time
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

from observability.logger import log_event, now_ms


# -----------------------------------------------------------------------------
# Internal timer storage
# -----------------------------------------------------------------------------
# timer_id -> (metric_name, start_time_ns)
_active_timers: dict[str, tuple[str, int]] = {}


# -----------------------------------------------------------------------------
# Public API
# -----------------------------------------------------------------------------

def start_timer(name: str) -> str:
    """
    Start a monotonic timer.

    Returns:
        timer_id (str): Opaque ID required to stop the timer later.

    IMPORTANT:
        Callers MUST eventually call stop_timer() or cancel_timer()
        unless using the `timed()` context manager.
    """
    timer_id = f"timer_{uuid.uuid4().hex[:12]}"
    _active_timers[timer_id] = (name, time.monotonic_ns())
    return timer_id


def stop_timer(
    timer_id: str,
    *,
    component: str | None = None,
    outcome: str | None = None,
    details: dict[str, Any] | None = None,
) -> int | None:
    """
    Stop a previously started timer and emit a metric event.

    Args:
        timer_id: ID returned by start_timer()
        component: Emitting component (e.g. "capture_session")
        outcome: How the measured span ended ("completed", "aborted", ...)
        details: Optional structured metadata

    Returns:
        duration_ms if the timer existed, else None
    """
    entry = _active_timers.pop(timer_id, None)
    if entry is None:
        return None

    name, start_ns = entry
    duration_ms = (time.monotonic_ns() - start_ns) // 1_000_000

    log_event({
        # Wall-clock timestamp for log correlation / readability
        # Duration correctness relies on monotonic time above
        "ts_ms": now_ms(),
        "event_type": "METRIC_TIMER",
        "metric": name,
        "value_ms": duration_ms,
        "component": component,
        "outcome": outcome,
        "details": details or {},
    })

    return duration_ms


def cancel_timer(timer_id: str | None) -> None:
    """Discard a timer without emitting anything."""
    if timer_id is not None:
        _active_timers.pop(timer_id, None)


def active_timer_count() -> int:
    """Number of timers started and not yet stopped (leak checks in tests)."""
    return len(_active_timers)


# -----------------------------------------------------------------------------
# Safe API: context manager
# -----------------------------------------------------------------------------

@contextmanager
def timed(
    name: str,
    *,
    component: str | None = None,
    details: dict[str, Any] | None = None,
) -> Iterator[None]:
    """
    Context manager for measuring durations safely.

    Guarantees:
    - Timer is ALWAYS stopped (no leaks)
    - Metric is emitted exactly once
    - Exceptions inside the block do NOT suppress timing

    Usage:
        with timed("source_open", component="capture_session"):
            await source.open(block_samples)
    """
    timer_id = start_timer(name)
    outcome = "error"
    try:
        yield
        outcome = "ok"
    finally:
        stop_timer(
            timer_id,
            component=component,
            outcome=outcome,
            details=details,
        )
