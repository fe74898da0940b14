# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any, Callable

import pytest

from observability import logger


@pytest.fixture(autouse=True)
def log_lines(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Keep JSONL output off stdout and available for assertions."""
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


@pytest.fixture
def events(log_lines: list[str]) -> Callable[[str | None], list[dict[str, Any]]]:
    """events("STREAM_START") -> decoded log events of that type."""
    def _events(event_type: str | None = None) -> list[dict[str, Any]]:
        decoded = [json.loads(line) for line in log_lines]
        if event_type is None:
            return decoded
        return [e for e in decoded if e.get("event_type") == event_type]
    return _events
