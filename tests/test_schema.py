"""Tests for message-type inference and required-field validation."""

import json
from typing import Any

import pytest

from logstream.models import IssueKind, MessageType
from logstream.normalize import normalize_keys, normalize_line
from logstream.schema import REQUIRED_FIELDS, build_schema, infer_message_type, validate_fields

COMMON = {
    "timestamp": "2024-01-15T10:30:00Z",
    "sessionId": "s1",
    "conversationId": "c1",
}

VALID_ROWS: dict[MessageType, dict[str, Any]] = {
    MessageType.USER: {**COMMON, "messageId": "m1", "content": "hello", "role": "user"},
    MessageType.ASSISTANT: {
        **COMMON,
        "messageId": "m2",
        "content": "hi",
        "role": "assistant",
        "model": "claude-opus",
        "tokenCount": 12,
        "costUsd": 0.001,
    },
    MessageType.SYSTEM: {**COMMON, "messageId": "m3", "content": "context reset", "role": "system"},
    MessageType.TOOL_USAGE: {
        **COMMON,
        "messageId": "m4",
        "toolName": "Bash",
        "toolInput": {"command": "ls"},
    },
    MessageType.SUMMARY: {**COMMON, "summary": "Discussed config loading."},
}


@pytest.mark.parametrize("message_type", list(VALID_ROWS))
def test_valid_rows_classify_as_their_variant(message_type: MessageType) -> None:
    record = normalize_line(json.dumps(VALID_ROWS[message_type]), 1)

    assert record is not None
    assert record.valid, record.errors
    assert record.message_type is message_type


@pytest.mark.parametrize(
    ("message_type", "field"),
    [
        (message_type, field)
        for message_type, fields in REQUIRED_FIELDS.items()
        for field in fields
    ],
)
def test_missing_required_field_is_named(message_type: MessageType, field: str) -> None:
    payload = normalize_keys(VALID_ROWS[message_type])
    payload.pop(field)

    issues = validate_fields(payload, message_type)

    assert any(issue.kind is IssueKind.MISSING and issue.field == field for issue in issues)


def test_null_counts_as_missing() -> None:
    payload = normalize_keys(VALID_ROWS[MessageType.ASSISTANT])
    payload["model"] = None

    issues = validate_fields(payload, MessageType.ASSISTANT)

    assert [(issue.kind, issue.field) for issue in issues] == [(IssueKind.MISSING, "model")]


def test_common_fields_are_required_for_every_variant() -> None:
    payload = normalize_keys(VALID_ROWS[MessageType.SUMMARY])
    del payload["session-id"]

    issues = validate_fields(payload, MessageType.SUMMARY)

    assert [issue.field for issue in issues] == ["session-id"]


def test_tool_name_wins_over_role() -> None:
    payload = normalize_keys({**VALID_ROWS[MessageType.TOOL_USAGE], "role": "assistant"})

    assert infer_message_type(payload) is MessageType.TOOL_USAGE


def test_null_tool_name_falls_through_to_role() -> None:
    payload = normalize_keys({**VALID_ROWS[MessageType.USER], "toolName": None})

    assert infer_message_type(payload) is MessageType.USER


def test_unrecognized_role_is_unknown() -> None:
    payload = normalize_keys({**VALID_ROWS[MessageType.USER], "role": "moderator"})

    assert infer_message_type(payload) is MessageType.UNKNOWN


def test_conversation_with_message_id_and_no_role_is_unknown() -> None:
    payload = normalize_keys({**COMMON, "messageId": "m9"})

    assert infer_message_type(payload) is MessageType.UNKNOWN


def test_unknown_records_are_always_invalid() -> None:
    record = normalize_line(json.dumps({"hello": "world"}), 1)

    assert record is not None
    assert record.message_type is MessageType.UNKNOWN
    assert not record.valid
    assert IssueKind.UNKNOWN_TYPE in {issue.kind for issue in record.errors}


def test_tool_input_must_be_an_object() -> None:
    payload = normalize_keys({**VALID_ROWS[MessageType.TOOL_USAGE], "toolInput": "ls -la"})

    issues = validate_fields(payload, MessageType.TOOL_USAGE)

    assert [(issue.kind, issue.field) for issue in issues] == [(IssueKind.MISTYPED, "tool-input")]


def test_build_schema_lists_common_and_variant_fields() -> None:
    schema = build_schema(MessageType.ASSISTANT)

    assert schema["required"] == [
        "timestamp",
        "session-id",
        "conversation-id",
        "message-id",
        "content",
        "role",
        "model",
    ]
