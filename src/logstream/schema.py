"""Message-type inference and required-field validation.

Classification is a single ordered decision table: the first rule whose
predicate matches a canonical-keyed payload decides its ``MessageType``.
Validation is driven by ``REQUIRED_FIELDS``; each row is compiled into a JSON
Schema once and checked with ``jsonschema``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any, Final

from jsonschema import Draft202012Validator

from .models import IssueKind, MessageType, RecordIssue

COMMON_REQUIRED_FIELDS: Final[tuple[str, ...]] = ("timestamp", "session-id", "conversation-id")

REQUIRED_FIELDS: Final[dict[MessageType, tuple[str, ...]]] = {
    MessageType.USER: ("message-id", "content", "role"),
    MessageType.ASSISTANT: ("message-id", "content", "role", "model"),
    MessageType.SYSTEM: ("message-id", "content", "role"),
    MessageType.TOOL_USAGE: ("message-id", "tool-name", "tool-input"),
    MessageType.SUMMARY: (),
}

# Type constraints applied to any of these fields when present.
FIELD_TYPES: Final[dict[str, dict[str, Any]]] = {
    "session-id": {"type": "string"},
    "message-id": {"type": "string"},
    "conversation-id": {"type": "string"},
    "content": {"type": "string"},
    "role": {"type": "string"},
    "tool-name": {"type": "string"},
    "tool-input": {"type": "object"},
    "token-count": {"type": "integer", "exclusiveMinimum": 0},
    "model": {"type": "string"},
    "cost-usd": {"type": "number"},
}

ROLE_TYPES: Final[dict[str, MessageType]] = {
    "user": MessageType.USER,
    "assistant": MessageType.ASSISTANT,
    "system": MessageType.SYSTEM,
}


def _present(data: Mapping[str, Any], key: str) -> bool:
    return data.get(key) is not None


def _role_type(data: Mapping[str, Any]) -> MessageType:
    role = data.get("role")
    if isinstance(role, str):
        return ROLE_TYPES.get(role, MessageType.UNKNOWN)
    return MessageType.UNKNOWN


Rule = tuple[Callable[[Mapping[str, Any]], bool], Callable[[Mapping[str, Any]], MessageType]]

# (predicate, resolver) pairs in precedence order.
CLASSIFICATION_RULES: Final[tuple[Rule, ...]] = (
    (lambda data: _present(data, "tool-name"), lambda _: MessageType.TOOL_USAGE),
    (lambda data: _present(data, "role"), _role_type),
    (
        lambda data: _present(data, "conversation-id") and not _present(data, "message-id"),
        lambda _: MessageType.SUMMARY,
    ),
)


def infer_message_type(data: Mapping[str, Any]) -> MessageType:
    """Infer the message variant of a canonical-keyed payload.

    A key counts as present when it holds a non-null value.
    """
    for matches, resolve in CLASSIFICATION_RULES:
        if matches(data):
            return resolve(data)
    return MessageType.UNKNOWN


def build_schema(message_type: MessageType) -> dict[str, Any]:
    """Return the JSON Schema for a message type's required-field row."""
    required = [*COMMON_REQUIRED_FIELDS, *REQUIRED_FIELDS.get(message_type, ())]
    return {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "title": f"{message_type} message",
        "type": "object",
        "required": required,
        "properties": dict(FIELD_TYPES),
    }


_TYPES_ONLY_VALIDATOR = Draft202012Validator(
    {"type": "object", "properties": dict(FIELD_TYPES)}
)
_VALIDATORS: dict[MessageType, Draft202012Validator] = {
    message_type: Draft202012Validator(build_schema(message_type))
    for message_type in REQUIRED_FIELDS
}


def validate_fields(data: Mapping[str, Any], message_type: MessageType) -> list[RecordIssue]:
    """Check a canonical-keyed payload against its message type.

    Returns one issue per missing or mistyped field; an empty list means valid.
    Null values count as missing. ``unknown`` payloads are always invalid.
    """
    # JSON null is treated as absent for the required check.
    present = {key: value for key, value in data.items() if value is not None}

    if message_type not in _VALIDATORS:
        issues = _type_issues(_TYPES_ONLY_VALIDATOR, present)
        issues.append(
            RecordIssue(
                kind=IssueKind.UNKNOWN_TYPE,
                message="record shape does not match any known message type",
            )
        )
        return issues

    validator = _VALIDATORS[message_type]
    issues: list[RecordIssue] = []
    for error in validator.iter_errors(present):
        if error.validator == "required":
            for field in error.validator_value:
                if field not in present:
                    issues.append(
                        RecordIssue(
                            kind=IssueKind.MISSING,
                            field=field,
                            message=f"'{field}' is required for {message_type} messages",
                        )
                    )
            continue
        issues.extend(_as_type_issue(error))
    return _dedupe(issues)


def _type_issues(validator: Draft202012Validator, data: Mapping[str, Any]) -> list[RecordIssue]:
    issues: list[RecordIssue] = []
    for error in validator.iter_errors(data):
        issues.extend(_as_type_issue(error))
    return issues


def _as_type_issue(error: Any) -> list[RecordIssue]:
    if not error.path:
        return []
    field = str(error.path[0])
    return [RecordIssue(kind=IssueKind.MISTYPED, field=field, message=error.message)]


def _dedupe(issues: list[RecordIssue]) -> list[RecordIssue]:
    seen: set[tuple[IssueKind, str | None]] = set()
    unique: list[RecordIssue] = []
    for issue in issues:
        key = (issue.kind, issue.field)
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


def mistyped_fields(issues: list[RecordIssue]) -> set[str]:
    """Return the field names flagged as mistyped."""
    return {issue.field for issue in issues if issue.kind == IssueKind.MISTYPED and issue.field}
