"""Shared pytest fixtures for log parsing and analysis tests."""

import itertools
import json
from collections.abc import Callable
from pathlib import Path
from typing import Any, Final

import pytest

from logstream.models import LogRecord
from logstream.normalize import normalize_line

USER_ROW: Final[dict[str, Any]] = {
    "timestamp": "2024-01-15T10:30:00Z",
    "sessionId": "s1",
    "messageId": "m1",
    "conversationId": "c1",
    "content": "Please read the config file.",
    "role": "user",
}

ASSISTANT_ROW: Final[dict[str, Any]] = {
    "timestamp": "2024-01-15T10:31:00Z",
    "sessionId": "s1",
    "messageId": "m2",
    "conversationId": "c1",
    "content": "Reading it now.",
    "role": "assistant",
    "model": "claude-opus",
    "tokenCount": 120,
    "costUsd": 0.0045,
}

TOOL_ROW: Final[dict[str, Any]] = {
    "timestamp": "2024-01-15T10:31:30Z",
    "sessionId": "s1",
    "messageId": "m3",
    "conversationId": "c1",
    "toolName": "Read",
    "toolInput": {"filePath": "config.json"},
    "toolOutput": '{"debug": true}',
    "tokenCount": 40,
}


def write_jsonl(path: Path, rows: list[dict[str, Any] | str]) -> Path:
    """Write rows as JSONL; string rows are written verbatim."""
    with path.open("w", encoding="utf-8") as handle:
        for row in rows:
            line = row if isinstance(row, str) else json.dumps(row)
            handle.write(line + "\n")
    return path


@pytest.fixture
def sample_rows() -> list[dict[str, Any]]:
    """User, assistant and tool-usage rows for one 90 second session."""
    return [dict(USER_ROW), dict(ASSISTANT_ROW), dict(TOOL_ROW)]


@pytest.fixture
def sample_log(tmp_path: Path, sample_rows: list[dict[str, Any]]) -> Path:
    return write_jsonl(tmp_path / "session.jsonl", sample_rows)


@pytest.fixture
def sample_records(sample_rows: list[dict[str, Any]]) -> list[LogRecord]:
    return [
        normalize_line(json.dumps(row), line_number)
        for line_number, row in enumerate(sample_rows, start=1)
    ]


@pytest.fixture
def make_record() -> Callable[..., LogRecord]:
    """Build a classified record from camelCase fields, numbering lines in call order."""
    line_numbers = itertools.count(1)

    def _make(**fields: Any) -> LogRecord:
        record = normalize_line(json.dumps(fields), next(line_numbers))
        assert record is not None
        return record

    return _make
