"""Calendar ranges and zero-filled chart buckets for usage records."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import Iterable, Protocol, TypeVar

from tokenviz.date_utils import parse_iso_ts, to_local
from tokenviz.models import ChartBucket, TimeRange

DAY_LABEL = "%m/%d"
MONTH_LABEL = "%Y/%m"

_RANGES = ("day", "week", "month", "year")


class _Usage(Protocol):
    timestamp: str
    inputTokens: int
    outputTokens: int
    cacheCreatedTokens: int
    cacheReadTokens: int


U = TypeVar("U", bound=_Usage)


def _resolve_now(now: datetime | None) -> tuple[datetime, tzinfo | None]:
    """``(now, zone)``; a zone of None means the system local zone, DST included."""
    if now is None or now.tzinfo is None:
        current = (now or datetime.now()).astimezone()
        return current, None
    return now, now.tzinfo


def _start_of(day: date, tz: tzinfo | None) -> datetime:
    if tz is None:
        return datetime.combine(day, time.min).astimezone()
    return datetime.combine(day, time.min, tzinfo=tz)


def _first_of_next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


def date_range(time_range: TimeRange, now: datetime | None = None) -> tuple[datetime, datetime]:
    """Inclusive ``(start, end)`` of the calendar range containing ``now``.

    Weeks start on Monday. Bounds use ``now``'s timezone, or the system
    local zone when ``now`` is omitted or naive.
    """
    if time_range not in _RANGES:
        raise ValueError(f"Unknown time range: {time_range!r}")
    current, tz = _resolve_now(now)
    today = current.date()

    if time_range == "day":
        first, after = today, today + timedelta(days=1)
    elif time_range == "week":
        first = today - timedelta(days=today.weekday())
        after = first + timedelta(days=7)
    elif time_range == "month":
        first = today.replace(day=1)
        after = _first_of_next_month(first)
    else:
        first = date(today.year, 1, 1)
        after = date(today.year + 1, 1, 1)

    return _start_of(first, tz), _start_of(after, tz) - timedelta(microseconds=1)


def filter_by_range(records: Iterable[U], time_range: TimeRange, now: datetime | None = None) -> list[U]:
    """Records whose timestamp falls inside the range. Unparsable ones are dropped."""
    start, end = date_range(time_range, now)
    kept = []
    for record in records:
        ts = parse_iso_ts(record.timestamp)
        if ts is not None and start <= ts <= end:
            kept.append(record)
    return kept


def _bucket_starts(time_range: TimeRange, start: datetime, end: datetime) -> list[date]:
    if time_range == "year":
        months = []
        cursor = start.date().replace(day=1)
        while cursor <= end.date():
            months.append(cursor)
            cursor = _first_of_next_month(cursor)
        return months
    days = []
    cursor = start.date()
    while cursor <= end.date():
        days.append(cursor)
        cursor += timedelta(days=1)
    return days


def bucket_usage(records: Iterable[_Usage], time_range: TimeRange, now: datetime | None = None) -> list[ChartBucket]:
    """One zero-filled bucket per day (per month for ``year``), chronological.

    A record lands in the bucket whose label matches its timestamp in
    ``now``'s timezone (system local by default). No range filtering
    happens here.
    """
    _, tz = _resolve_now(now)
    start, end = date_range(time_range, now)
    fmt = MONTH_LABEL if time_range == "year" else DAY_LABEL

    buckets: dict[str, ChartBucket] = {}
    for first in _bucket_starts(time_range, start, end):
        label = first.strftime(fmt)
        buckets[label] = ChartBucket(label=label, start=_start_of(first, tz).isoformat())

    for record in records:
        local = to_local(record.timestamp, tz)
        if local is None:
            continue
        bucket = buckets.get(local.strftime(fmt))
        if bucket is None:
            continue
        bucket.inputTokens += record.inputTokens
        bucket.outputTokens += record.outputTokens
        bucket.totalTokens += (
            record.inputTokens + record.outputTokens + record.cacheCreatedTokens + record.cacheReadTokens
        )
    return list(buckets.values())
