"""Line normalization: JSON decoding, key canonicalization and timestamps."""

from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Final

from loguru import logger
from pydantic import ValidationError

from .models import IssueKind, LogRecord, RecordIssue
from .schema import infer_message_type, mistyped_fields, validate_fields

_WORD_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_SEPARATORS = re.compile(r"[\s_\-]+")

# Canonical payload keys copied onto LogRecord (timestamp is parsed separately).
PAYLOAD_FIELDS: Final[tuple[str, ...]] = (
    "session-id",
    "message-id",
    "conversation-id",
    "role",
    "content",
    "tool-name",
    "tool-input",
    "tool-output",
    "token-count",
    "model",
    "cost-usd",
)


def to_kebab_case(key: str) -> str:
    """Convert a boundary field name (``sessionId``) to canonical form (``session-id``)."""
    spaced = _WORD_BOUNDARY.sub("-", key)
    return _SEPARATORS.sub("-", spaced).strip("-").lower()


def normalize_keys(data: Mapping[str, Any]) -> dict[str, Any]:
    """Rename top-level keys to canonical form. Nested values are left as-is."""
    return {to_kebab_case(key): value for key, value in data.items()}


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return datetime.fromisoformat(text)
    raise TypeError(f"unsupported timestamp type {type(value).__name__}")


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 instant into an aware UTC datetime.

    Naive values are read as UTC. Returns None (and logs a warning) when the
    value cannot be parsed or falls outside the representable UTC range.
    """
    try:
        parsed = _as_datetime(value)
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=UTC)
        return parsed.astimezone(UTC)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Failed to parse timestamp: {value!r}", value=value)
        return None


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number {name} is not valid JSON")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"number {text} is out of range")
    return value


def normalize_line(line: str, line_number: int) -> LogRecord | None:
    """Turn one raw line into a classified record.

    Blank lines yield None. Undecodable lines yield an invalid record carrying
    a parse issue and the raw text. Never raises for bad input.
    """
    if not line.strip():
        return None

    try:
        data = json.loads(line, parse_constant=_reject_constant, parse_float=_finite_float)
    except (ValueError, RecursionError) as exc:
        logger.warning(
            "Skipping malformed JSON at line {line}: {error}",
            line=line_number,
            error=exc,
        )
        return parse_failure(line, line_number, str(exc))

    if not isinstance(data, dict):
        message = f"expected a JSON object, got {type(data).__name__}"
        logger.warning(
            "Skipping non-object JSON at line {line}: {error}",
            line=line_number,
            error=message,
        )
        return parse_failure(line, line_number, message)

    return build_record(normalize_keys(data), line_number)


def parse_failure(line: str, line_number: int, message: str) -> LogRecord:
    """Build the placeholder record for a line that could not be decoded."""
    return LogRecord(
        line_number=line_number,
        valid=False,
        errors=(RecordIssue(kind=IssueKind.PARSE, message=message),),
        raw_line=line.rstrip("\r\n"),
    )


def build_record(canonical: Mapping[str, Any], line_number: int) -> LogRecord:
    """Classify, validate and freeze a canonical-keyed payload."""
    message_type = infer_message_type(canonical)
    errors = validate_fields(canonical, message_type)

    warnings: list[RecordIssue] = []
    timestamp: datetime | None = None
    raw_timestamp = canonical.get("timestamp")
    if raw_timestamp is not None:
        timestamp = parse_timestamp(raw_timestamp)
        if timestamp is None:
            warnings.append(
                RecordIssue(
                    kind=IssueKind.TIMESTAMP,
                    field="timestamp",
                    message=f"unparseable timestamp {raw_timestamp!r}; set to null",
                )
            )

    # Mistyped values are reported as issues and left off the typed record.
    dropped = mistyped_fields(errors)
    fields: dict[str, Any] = {
        **{key: canonical.get(key) for key in PAYLOAD_FIELDS if key not in dropped},
        "line_number": line_number,
        "message_type": message_type,
        "timestamp": timestamp,
        "warnings": tuple(warnings),
    }

    try:
        record = LogRecord.model_validate({**fields, "valid": not errors, "errors": tuple(errors)})
    except ValidationError as exc:
        # Values jsonschema accepts but the typed record cannot hold (e.g. an
        # integer too large for a float) are treated like mistyped fields.
        rejected = _rejected_fields(exc)
        errors = [*errors, *rejected]
        for issue in rejected:
            fields[issue.field] = None
        record = LogRecord.model_validate({**fields, "valid": False, "errors": tuple(errors)})

    if errors:
        logger.warning(
            "Invalid {message_type} record at line {line}: {problems}",
            message_type=message_type,
            line=line_number,
            problems="; ".join(issue.message for issue in errors),
        )
    return record


def _rejected_fields(exc: ValidationError) -> list[RecordIssue]:
    issues: list[RecordIssue] = []
    for error in exc.errors():
        field = to_kebab_case(str(error["loc"][0])) if error["loc"] else None
        if field not in PAYLOAD_FIELDS:
            raise exc
        if any(issue.field == field for issue in issues):
            continue
        issues.append(RecordIssue(kind=IssueKind.MISTYPED, field=field, message=f"{field}: {error['msg']}"))
    return issues
