"""Shared timestamp parsing and normalization helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt.isoformat().replace("+00:00", "Z")


def parse_iso_ts(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None for anything unparsable.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None
    token = value.strip()
    if not token:
        return None
    if _DATE_ONLY_RE.match(token):
        try:
            return datetime.fromisoformat(token).replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    try:
        parsed = datetime.fromisoformat(token.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def normalize_iso_date(value: Any) -> str:
    """Convert mixed date inputs into comparable UTC ISO strings."""
    if value is None:
        return ""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    parsed = parse_iso_ts(value)
    if parsed is None:
        return ""
    if isinstance(value, str) and _DATE_ONLY_RE.match(value.strip()):
        return parsed.date().isoformat()
    return _format_datetime_utc(parsed)


def to_local(value: Any, tz: Any) -> datetime | None:
    """Parse ``value`` and convert it into ``tz`` (a tzinfo)."""
    parsed = parse_iso_ts(value)
    if parsed is None:
        return None
    return parsed.astimezone(tz)
