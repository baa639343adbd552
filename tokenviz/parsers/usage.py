"""Normalize one transcript line into a UsageRecord."""
from __future__ import annotations

import json
import math
from dataclasses import dataclass
from typing import Any, Literal, Union

from tokenviz.models import UsageRecord

RejectReason = Literal["malformed", "not_object", "no_usage"]

MAX_TOKEN_COUNT = 2**63 - 1

# usage key -> UsageRecord field
_USAGE_FIELDS: tuple[tuple[str, str], ...] = (
    ("input_tokens", "inputTokens"),
    ("output_tokens", "outputTokens"),
    ("cache_creation_input_tokens", "cacheCreatedTokens"),
    ("cache_read_input_tokens", "cacheReadTokens"),
)


@dataclass(frozen=True)
class Parsed:
    record: UsageRecord


@dataclass(frozen=True)
class Rejected:
    reason: RejectReason
    line_number: int = 0
    detail: str = ""

    @property
    def is_malformed(self) -> bool:
        """True for lines that failed to decode, as opposed to non-usage entries."""
        return self.reason == "malformed"


ParseResult = Union[Parsed, Rejected]


def make_record_id(session_id: str, ordinal: int, scope: str = "") -> str:
    """``<session>:<ordinal>``, or ``<session>:<scope>/<ordinal>`` for a scoped file."""
    if scope:
        return f"{session_id}:{scope}/{ordinal}"
    return f"{session_id}:{ordinal}"


def _coerce_tokens(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if not math.isfinite(number) or number <= 0:
        return 0
    # SQLite INTEGER is a signed 64-bit value.
    return min(int(number), MAX_TOKEN_COUNT)


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_line(
    line: str,
    session_id: str,
    *,
    ordinal: int = 0,
    line_number: int = 0,
    working_directory: str = "",
) -> ParseResult:
    """Parse one raw JSONL line.

    A line becomes a record only when it decodes to an object carrying a
    ``message.usage`` mapping. Anything else is rejected with a reason; this
    function never raises on bad input.
    """
    try:
        entry = json.loads(line)
    except (json.JSONDecodeError, TypeError, ValueError) as exc:
        return Rejected("malformed", line_number, str(exc))

    if not isinstance(entry, dict):
        return Rejected("not_object", line_number)

    message = entry.get("message")
    if not isinstance(message, dict):
        return Rejected("no_usage", line_number)
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return Rejected("no_usage", line_number)

    tokens = {field: _coerce_tokens(usage.get(key)) for key, field in _USAGE_FIELDS}
    timestamp = entry.get("timestamp")

    record = UsageRecord(
        recordId=make_record_id(session_id, ordinal),
        sessionId=session_id,
        timestamp=timestamp.strip() if isinstance(timestamp, str) else "",
        model=_optional_text(message.get("model")) or "unknown",
        requestId=_optional_text(entry.get("requestId")),
        messageId=_optional_text(message.get("id")),
        role=_optional_text(message.get("role")),
        workingDirectory=_optional_text(entry.get("cwd")) or _optional_text(working_directory),
        **tokens,
    )
    return Parsed(record)
