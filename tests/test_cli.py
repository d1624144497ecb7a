"""Tests for the logstream command line."""

import json
import sys
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Final

import pytest
from jsonschema import Draft202012Validator
from loguru import logger
from typer.testing import CliRunner

from logstream.cli import app

from conftest import write_jsonl

runner = CliRunner()

RESULT_SCHEMA: Final[dict[str, Any]] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "Analysis result dump",
    "type": "object",
    "required": ["summary", "sessions", "conversations", "tools", "tokens", "costs", "temporal"],
    "properties": {
        "summary": {
            "type": "object",
            "required": ["total_messages", "valid_messages", "invalid_messages"],
            "properties": {
                "total_messages": {"type": "integer", "minimum": 0},
                "valid_messages": {"type": "integer", "minimum": 0},
                "invalid_messages": {"type": "integer", "minimum": 0},
            },
        },
        "sessions": {
            "type": "array",
            "items": {"type": "object", "required": ["session_id", "message_count"]},
        },
        "temporal": {
            "type": "object",
            "properties": {
                "time_distribution": {
                    "type": "object",
                    "propertyNames": {"pattern": r"^\d{4}-\d{2}-\d{2}-\d{2}$"},
                    "additionalProperties": {"type": "integer"},
                }
            },
        },
    },
}


@pytest.fixture(autouse=True)
def restore_logging() -> Iterator[None]:
    yield
    logger.remove()
    logger.add(sys.stderr)
    logger.enable("logstream")


def test_analyze_prints_summary(sample_log: Path) -> None:
    result = runner.invoke(app, ["analyze", str(sample_log)])

    assert result.exit_code == 0, result.output
    assert "Total Messages: 3" in result.output
    assert "Sessions: 1" in result.output
    assert "Read: 1 uses across 1 sessions (100.0% success)" in result.output
    assert "claude-opus: $0.00 (1 messages)" in result.output


def test_analyze_json_output_matches_schema(sample_log: Path) -> None:
    result = runner.invoke(app, ["analyze", str(sample_log), "--json"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    errors = list(Draft202012Validator(RESULT_SCHEMA).iter_errors(payload))
    assert errors == []
    assert payload["summary"]["total_messages"] == 3
    assert payload["temporal"]["time_distribution"] == {"2024-01-15-10": 3}


def test_analyze_writes_output_file(sample_log: Path, tmp_path: Path) -> None:
    output_path = tmp_path / "reports" / "analysis.json"

    result = runner.invoke(app, ["analyze", str(sample_log), "--output", str(output_path)])

    assert result.exit_code == 0, result.output
    payload = json.loads(output_path.read_text(encoding="utf-8"))
    assert payload["summary"]["unique_sessions"] == 1


def test_analyze_counts_invalid_lines(tmp_path: Path, sample_rows: list[dict[str, Any]]) -> None:
    path = write_jsonl(tmp_path / "mixed.jsonl", [sample_rows[0], "{ invalid json"])

    result = runner.invoke(app, ["analyze", str(path)])

    assert result.exit_code == 0, result.output
    assert "Total Messages: 2" in result.output
    assert "Invalid Messages: 1" in result.output


def test_analyze_missing_file_exits_with_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["analyze", str(tmp_path / "nope.jsonl")])

    assert result.exit_code == 1
    assert "ERROR:" in result.output


def test_stream_prints_batches_and_total(sample_log: Path) -> None:
    result = runner.invoke(app, ["stream", str(sample_log), "--batch-size", "2"])

    assert result.exit_code == 0, result.output
    assert "=== Batch 1 ===" in result.output
    assert "=== Batch 2 ===" in result.output
    assert "=== Stream Total (2 batches) ===" in result.output
    assert result.output.rstrip().endswith("(100.0% success)")


def test_stream_rejects_bad_batch_size(sample_log: Path) -> None:
    result = runner.invoke(app, ["stream", str(sample_log), "--batch-size", "0"])

    assert result.exit_code == 2


def test_stream_empty_file(tmp_path: Path) -> None:
    path = tmp_path / "empty.jsonl"
    path.write_text("", encoding="utf-8")

    result = runner.invoke(app, ["stream", str(path)])

    assert result.exit_code == 0
    assert "No records found to analyze." in result.output


def test_stream_missing_file_exits_with_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["stream", str(tmp_path / "nope.jsonl")])

    assert result.exit_code == 1
    assert "ERROR:" in result.output
